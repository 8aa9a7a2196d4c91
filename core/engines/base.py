"""
Asynchronous engine base.

Every engine owns one single-worker executor: requests on a device run
in the background, one at a time, and the caller gets an InferenceRequest
handle back immediately. Completion is observed by polling the handle,
never through a callback, so the pipeline thread stays in control of
when results are consumed and can drain on shutdown.
"""
import itertools
import time
from concurrent.futures import ThreadPoolExecutor, Future, wait as wait_futures
from pathlib import Path
from typing import Any, List, Optional, Sequence

import numpy as np

from utils.constants import DEFAULT_DEVICE
from utils.failures import EngineError, ModelLoadError
from utils.logger import Logger


class InferenceRequest:
    """Pollable handle for one batched request."""

    _ids = itertools.count(1)

    def __init__(self, future: Future, batch_size: int):
        self.request_id = next(InferenceRequest._ids)
        self.future = future
        self.batch_size = batch_size
        self.submitted_at = time.monotonic()

    def done(self) -> bool:
        return self.future.done()

    def __repr__(self) -> str:
        state = "done" if self.future.done() else "running"
        return f"InferenceRequest(id={self.request_id}, batch={self.batch_size}, {state})"


class AsyncEngine:
    """
    Base class for compute engines.

    Subclasses implement:
        _load(model)   -> None        load weights onto self.device
        _infer(batch)  -> np.ndarray  blocking inference, runs on the worker thread
        _release()     -> None        free device resources
    """

    backend = "base"
    supported_devices: Sequence[str] = ()

    def __init__(self, device: str = DEFAULT_DEVICE):
        self.device = str(device).upper()
        self.model: Any = None
        self.labels: List[str] = []
        self.max_batch_size: Optional[int] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self.logger = Logger(type(self).__name__)

    @property
    def loaded(self) -> bool:
        return self._executor is not None

    def load(self, model: Any) -> None:
        """Load the described model onto the device. Raises ModelLoadError."""
        if self.supported_devices and self.device not in self.supported_devices:
            raise ModelLoadError(
                f"Device '{self.device}' is not supported by the {self.backend} engine "
                f"(supported: {', '.join(self.supported_devices)})"
            )
        if not Path(model.model_path).is_file():
            raise ModelLoadError(f"Model file not found: {model.model_path}")

        try:
            self._load(model)
        except ModelLoadError:
            raise
        except Exception as e:
            raise ModelLoadError(f"Failed to load {model.model_path} on {self.device}: {e}")

        self.model = model
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"{self.backend}-{self.device}"
        )
        self.logger.info(f"Model loaded on {self.device} ({self.backend}): {model.model_path}")

    def run(self, batch: Sequence[np.ndarray]) -> InferenceRequest:
        """Dispatch a batch to the worker thread. Never blocks on execution."""
        if not self.loaded:
            raise EngineError(f"No model loaded on {self.device}")
        if not batch:
            raise EngineError("Cannot run an empty batch")
        try:
            future = self._executor.submit(self._infer, list(batch))
        except RuntimeError as e:
            raise EngineError(f"Engine on {self.device} is shut down: {e}")
        request = InferenceRequest(future, len(batch))
        self.logger.debug(f"Dispatched {request}")
        return request

    def poll_completed(self, handle: InferenceRequest) -> bool:
        return handle.future.done()

    def collect(self, handle: InferenceRequest) -> np.ndarray:
        """Raw output of a finished request. Raises EngineError on failure or abort."""
        future = handle.future
        if not future.done():
            raise EngineError(f"Request {handle.request_id} has not completed")
        if future.cancelled():
            raise EngineError(f"Request {handle.request_id} was aborted")
        error = future.exception()
        if error is not None:
            raise EngineError(f"Inference failed on {self.device}: {error}")
        return future.result()

    def wait(self, handle: InferenceRequest, timeout: Optional[float] = None) -> bool:
        done, _ = wait_futures([handle.future], timeout=timeout)
        return bool(done)

    def abort(self, handle: InferenceRequest) -> bool:
        """Only requests still queued on the worker can be cancelled."""
        return handle.future.cancel()

    def release(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        if self.model is not None:
            self._release()
            self.logger.info(f"Released {self.backend} engine on {self.device}")
        self.model = None

    # ── Subclass hooks ───────────────────────────────────────────────

    def _load(self, model: Any) -> None:
        raise NotImplementedError

    def _infer(self, batch: List[np.ndarray]) -> np.ndarray:
        raise NotImplementedError

    def _release(self) -> None:
        pass
