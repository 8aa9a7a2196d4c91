"""
Inference Stage — the generic enqueue / submit / fetch lifecycle.

A stage buffers frame regions until the pipeline submits them as one
batched request to its compute engine, then polls for completion on
later calls. Capture never waits for inference: while a request is in
flight the stage simply refuses new regions (one outstanding request
per stage) and the pipeline keeps cycling.

    Idle ──enqueue──▶ Queuing ──submit_request──▶ Submitted
      ▲                  ▲                            │ fetch_results (done)
      │                  └────────enqueue─────────── Ready
      └──────────── engine failure ──────────────────┘

Subclasses implement decode() for their task's output tensor.
"""
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from core.events import Frame, FrameRegion, DetectionResult
from utils.failures import (
    PipelineError, CapacityError, ModelLoadError, EngineError, DecodeError,
)
from utils.logger import Logger

Slot = Tuple[Frame, FrameRegion]


class StageState(Enum):
    IDLE = "idle"
    QUEUING = "queuing"
    SUBMITTED = "submitted"
    READY = "ready"


class BaseInference:
    """
    Shared state machine for every inference task.

    Holds the pending queue (capacity = batch size), the slots of the
    request in flight, and the results buffer of the last completed fetch.
    Frames referenced by pending or in-flight slots are kept alive by the
    stage until the request is fetched or drained.
    """

    task = "base"
    model_class: Any = None

    def __init__(
        self,
        name: str,
        batch: int = 1,
        confidence_threshold: float = 0.5,
        enable_roi_constraint: bool = False,
    ):
        if batch < 1:
            raise ValueError(f"Stage '{name}': batch must be positive, got {batch}")
        self.name = name
        self.batch_size = batch
        self.confidence_threshold = confidence_threshold
        self.enable_roi_constraint = enable_roi_constraint

        self.model: Any = None
        self.engine: Any = None
        self.state = StageState.IDLE
        self.last_error: Optional[PipelineError] = None

        self._pending: List[Slot] = []
        self._inflight: List[Slot] = []
        self._request: Any = None
        self._results: List[Tuple[Frame, DetectionResult]] = []
        self._batch_frames: List[Frame] = []

        self.logger = Logger(f"{type(self).__name__}[{name}]")

    # ── Setup / teardown ─────────────────────────────────────────────

    def load_network(self, model: Any, engine: Any) -> None:
        """
        Load labels and weights, acquiring the engine for this stage.

        Raises:
            ModelLoadError: propagated from the label table or the engine.
        """
        model.load_labels()
        engine.load(model)
        if not model.labels and engine.labels:
            model.labels = list(engine.labels)

        limit = engine.max_batch_size
        if limit is not None and self.batch_size > limit:
            self.logger.warning(
                f"Configured batch {self.batch_size} exceeds the model limit {limit}, clamping"
            )
            self.batch_size = limit
        model.max_batch_size = self.batch_size

        self.model = model
        self.engine = engine
        self.logger.info(
            f"Network ready: {model} on {engine.device} "
            f"(batch={self.batch_size}, threshold={self.confidence_threshold}, "
            f"roi_constraint={self.enable_roi_constraint})"
        )

    @property
    def loaded(self) -> bool:
        return self.model is not None and self.engine is not None

    def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Finish the outstanding request before resources go away.

        Waits up to timeout for completion; a request that has not even
        started by then is aborted. Returns True if results were fetched.
        """
        if self._request is None:
            return False
        if not self.engine.wait(self._request, timeout):
            if self.engine.abort(self._request):
                self.logger.warning("Outstanding request aborted before it started")
            else:
                self.logger.warning(f"Outstanding request still running after {timeout}s")
                return False
        return self.fetch_results()

    def release(self) -> None:
        """Drain, drop buffered regions and release the engine."""
        if self._request is not None:
            self.drain()
        self._pending.clear()
        self._inflight.clear()
        if self.engine is not None:
            self.engine.release()
            self.engine = None
        self.state = StageState.IDLE

    # ── Lifecycle ────────────────────────────────────────────────────

    def enqueue(self, frame: Frame, region: FrameRegion) -> bool:
        """Buffer one region for the next request. Non-blocking."""
        if not self.loaded:
            return self._reject(ModelLoadError(f"Stage '{self.name}' has no model loaded"))
        if self.state is StageState.SUBMITTED:
            return self._reject(CapacityError(
                f"Stage '{self.name}' is waiting on request, region of frame "
                f"{region.sequence_id} rejected"
            ))
        if len(self._pending) >= self.batch_size:
            return self._reject(CapacityError(
                f"Stage '{self.name}' queue full ({self.batch_size}), region of frame "
                f"{region.sequence_id} rejected"
            ))
        if region.clip(frame.width, frame.height).is_empty:
            return self._reject(PipelineError(
                f"Stage '{self.name}': region {region.to_xyxy()} lies outside frame "
                f"{frame.sequence_id}"
            ))

        self._pending.append((frame, region))
        self.state = StageState.QUEUING
        return True

    def submit_request(self) -> bool:
        """Hand the pending batch to the engine without waiting for it."""
        if self._request is not None:
            return self._reject(CapacityError(
                f"Stage '{self.name}' already has an unfetched request"
            ))
        if not self._pending:
            return self._reject(PipelineError(f"Stage '{self.name}' has nothing to submit"))

        batch = [region.crop(frame) for frame, region in self._pending]
        slots, self._pending = self._pending, []
        try:
            self._request = self.engine.run(batch)
        except EngineError as e:
            self.state = StageState.IDLE
            return self._reject(e)

        self._inflight = slots
        self.state = StageState.SUBMITTED
        self.logger.debug(f"Submitted {len(slots)} region(s)")
        return True

    def fetch_results(self) -> bool:
        """
        Poll the outstanding request; on completion, decode it into the
        results buffer. True exactly once per completed request.
        """
        if self._request is None or not self.engine.poll_completed(self._request):
            return False

        request, slots = self._request, self._inflight
        self._request, self._inflight = None, []
        self._results = []
        self._batch_frames = self._distinct_frames(slots)

        try:
            raw = self.engine.collect(request)
        except EngineError as e:
            self.state = StageState.IDLE
            self._reject(e)
            return False

        self.state = StageState.READY
        try:
            self._results = self.decode(raw, slots)
        except DecodeError as e:
            self._reject(e)
            return True

        self.last_error = None
        self.logger.debug(f"Fetched {len(self._results)} result(s) for {len(slots)} region(s)")
        return True

    def decode(self, raw: np.ndarray, slots: Sequence[Slot]) -> List[Tuple[Frame, DetectionResult]]:
        raise NotImplementedError

    # ── Accessors ────────────────────────────────────────────────────

    def get_results_length(self) -> int:
        return len(self._results)

    def get_location_result(self, idx: int) -> DetectionResult:
        return self._results[self._check_index(idx)][1]

    def get_result_frame(self, idx: int) -> Frame:
        return self._results[self._check_index(idx)][0]

    def get_batch_frames(self) -> List[Frame]:
        """Distinct frames of the last fetched batch, in slot order."""
        return list(self._batch_frames)

    def has_pending(self) -> bool:
        return bool(self._pending)

    def pending_count(self) -> int:
        return len(self._pending)

    def is_outstanding(self) -> bool:
        return self._request is not None

    # ── Helpers ──────────────────────────────────────────────────────

    def accepts(self, confidence: float) -> bool:
        return confidence >= self.confidence_threshold

    def constrain(self, region: FrameRegion, frame: Frame) -> FrameRegion:
        """Clip into the frame when the ROI constraint is on; never drop."""
        if self.enable_roi_constraint:
            return region.clip(frame.width, frame.height)
        return region

    def _check_index(self, idx: int) -> int:
        if not 0 <= idx < len(self._results):
            raise IndexError(
                f"Result index {idx} out of range for stage '{self.name}' "
                f"({len(self._results)} results)"
            )
        return idx

    def _reject(self, error: PipelineError) -> bool:
        self.last_error = error
        self.logger.debug(error.message)
        return False

    @staticmethod
    def _distinct_frames(slots: Sequence[Slot]) -> List[Frame]:
        seen = set()
        frames = []
        for frame, _ in slots:
            if id(frame) not in seen:
                seen.add(id(frame))
                frames.append(frame)
        return frames

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name}, state={self.state.value}, "
            f"pending={len(self._pending)}/{self.batch_size}, results={len(self._results)})"
        )
