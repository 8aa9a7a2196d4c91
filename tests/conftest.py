"""Shared fakes: a scripted compute engine, list-backed inputs and recording sinks."""
from typing import List, Optional

import numpy as np
import pytest

from core.events import Frame
from core.models import ObjectDetectionModel
from core.stages import ObjectDetectionStage
from utils.failures import EngineError

LABELS = ["background", "person", "car"]
TERMINATOR = [-1, 0, 0, 0, 0, 0, 0]


def proposals(*rows) -> np.ndarray:
    """SSD-style output: the given rows followed by a terminating row."""
    return np.array([*rows, TERMINATOR], dtype=np.float32)


def make_frame(width: int = 640, height: int = 480, sequence_id: int = 0, source: str = "test") -> Frame:
    return Frame.wrap(np.zeros((height, width, 3), dtype=np.uint8), sequence_id, source=source)


class FakeRequest:
    def __init__(self, batch):
        self.batch = batch
        self.done = False
        self.cancelled = False
        self.output = None


class FakeEngine:
    """ComputeEngine double; outputs are consumed one per request."""

    def __init__(self, outputs=None, auto_complete: bool = True, labels=None,
                 max_batch_size: Optional[int] = None, fail_load: Exception = None,
                 fail_run: Exception = None, complete_on_wait: bool = True, device: str = "CPU"):
        self.device = device
        self.outputs = list(outputs or [])
        self.auto_complete = auto_complete
        self.labels = list(LABELS if labels is None else labels)
        self.max_batch_size = max_batch_size
        self.fail_load = fail_load
        self.fail_run = fail_run
        self.complete_on_wait = complete_on_wait
        self.requests: List[FakeRequest] = []
        self.model = None
        self.released = False

    def load(self, model):
        if self.fail_load is not None:
            raise self.fail_load
        self.model = model

    def run(self, batch):
        if self.fail_run is not None:
            raise self.fail_run
        request = FakeRequest(list(batch))
        self.requests.append(request)
        if self.auto_complete:
            self._finish(request)
        return request

    def _finish(self, request):
        request.output = self.outputs.pop(0) if self.outputs else proposals()
        request.done = True

    def complete(self):
        for request in self.requests:
            if not request.done:
                self._finish(request)

    def poll_completed(self, handle):
        return handle.done

    def collect(self, handle):
        if handle.cancelled:
            raise EngineError("aborted")
        if isinstance(handle.output, Exception):
            raise handle.output
        return handle.output

    def wait(self, handle, timeout=None):
        if not handle.done and self.complete_on_wait:
            self._finish(handle)
        return handle.done

    def abort(self, handle):
        if handle.done:
            return False
        handle.cancelled = True
        handle.done = True
        return True

    def release(self):
        self.released = True


class ListSource:
    """FrameSource over a fixed list of images."""

    def __init__(self, images=None, count: int = 1, width: int = 640, height: int = 480):
        if images is None:
            images = [np.zeros((height, width, 3), dtype=np.uint8) for _ in range(count)]
        self.images = list(images)
        self.exhausted = False
        self.started = False
        self.stopped = False

    def start(self):
        self.started = True
        return True

    def read_frame(self):
        if not self.images:
            self.exhausted = True
            return None
        return self.images.pop(0)

    def stop(self):
        self.stopped = True


class RecordingSink:
    """ResultSink that appends (name, event) to a log shared between sinks."""

    def __init__(self, name: str, log: list = None, fail: bool = False):
        self.name = name
        self.log = log if log is not None else []
        self.events = []
        self.fail = fail
        self.closed = False

    def consume(self, event):
        if self.fail:
            raise RuntimeError(f"{self.name} exploded")
        self.events.append(event)
        self.log.append((self.name, event))

    def close(self):
        self.closed = True

    @property
    def results(self):
        return [r for event in self.events for r in event.results]


def make_stage(engine: FakeEngine, batch: int = 1, confidence_threshold: float = 0.5,
               enable_roi_constraint: bool = False, name: str = "ObjectDetection") -> ObjectDetectionStage:
    stage = ObjectDetectionStage(
        name,
        batch=batch,
        confidence_threshold=confidence_threshold,
        enable_roi_constraint=enable_roi_constraint,
    )
    stage.load_network(ObjectDetectionModel("unused.xml", max_batch_size=batch), engine)
    return stage


@pytest.fixture
def frame():
    return make_frame()
