"""
Protocol definitions (interfaces) for the Perception Node.

These define the contracts that adapters must implement, enabling
dependency injection and easy testing/swapping. The pipeline graph
only ever talks to stages, engines, sources and sinks through these.
"""
from typing import Protocol, Optional, Sequence, List, Any, runtime_checkable
import numpy as np

from core.events import Frame, FrameRegion, DetectionResult, InferenceResults


@runtime_checkable
class FrameSource(Protocol):
    """Interface for any frame-producing component (camera, video file, image)."""

    def start(self) -> bool:
        """Initialize and begin frame acquisition. Returns True on success."""
        ...

    def read_frame(self) -> Optional[np.ndarray]:
        """
        Read the next available frame.

        Returns:
            A BGR numpy array (OpenCV format), or None if no frame is available.
        """
        ...

    def stop(self) -> None:
        """Release resources and stop frame acquisition."""
        ...


@runtime_checkable
class ComputeEngine(Protocol):
    """Interface for a device backend that executes batched requests asynchronously."""

    device: str

    def load(self, model: Any) -> None:
        """
        Load the model onto the device.

        Raises:
            ModelLoadError: missing/malformed model or unavailable device.
        """
        ...

    def run(self, batch: Sequence[np.ndarray]) -> Any:
        """Start inference on a batch of images. Returns a request handle immediately."""
        ...

    def poll_completed(self, handle: Any) -> bool:
        """Non-blocking: has the request finished (successfully or not)?"""
        ...

    def collect(self, handle: Any) -> np.ndarray:
        """
        Return the raw output of a completed request.

        Raises:
            EngineError: the request failed on the device.
        """
        ...

    def wait(self, handle: Any, timeout: Optional[float] = None) -> bool:
        """Block until the request finishes. Returns False on timeout."""
        ...

    def abort(self, handle: Any) -> bool:
        """Cancel a request that has not started executing."""
        ...

    def release(self) -> None:
        """Free the device handle."""
        ...


@runtime_checkable
class InferenceStage(Protocol):
    """Common capability set of every inference task."""

    name: str
    last_error: Optional[Exception]

    def load_network(self, model: Any, engine: ComputeEngine) -> None:
        ...

    def enqueue(self, frame: Frame, region: FrameRegion) -> bool:
        ...

    def submit_request(self) -> bool:
        ...

    def fetch_results(self) -> bool:
        ...

    def get_results_length(self) -> int:
        ...

    def get_location_result(self, idx: int) -> DetectionResult:
        ...

    def get_result_frame(self, idx: int) -> Frame:
        ...

    def get_batch_frames(self) -> List[Frame]:
        """Distinct frames of the last fetched batch, in slot order."""
        ...

    def has_pending(self) -> bool:
        ...

    def pending_count(self) -> int:
        ...

    def is_outstanding(self) -> bool:
        ...

    def drain(self, timeout: Optional[float] = None) -> bool:
        ...

    def release(self) -> None:
        ...


@runtime_checkable
class ResultSink(Protocol):
    """Interface for terminal consumers of inference results."""

    name: str

    def consume(self, event: InferenceResults) -> None:
        """Handle all results one stage produced for one frame."""
        ...

    def close(self) -> None:
        """Release windows, sockets or queues held by the sink."""
        ...
