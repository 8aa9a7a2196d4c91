"""Viewer Queue Handler — feeds annotated frames to the Qt frame viewer.

Implements the ResultSink protocol for the "RViz" output. The sink runs
on the pipeline thread and never touches Qt: it only pushes annotated
frames into a bounded queue that the FrameViewerHandler window polls.
"""
from dataclasses import dataclass
from queue import Queue, Full

import numpy as np

from core.events import InferenceResults
from Handlers.Detection_Visuals_Handler import DetectionVisualsHandler
from utils.constants import VIEWER_QUEUE_SIZE
from utils.logger import Logger


@dataclass(frozen=True)
class ViewerFrame:
    """One annotated frame plus what the status line shows about it."""
    image: np.ndarray
    stage: str
    sequence_id: int
    objects: int


class ViewerQueueHandler:
    """Drop-on-full producer side of the frame viewer."""

    def __init__(self, name: str, viewer_queue: Queue = None):
        self.name = name
        self.viewer_queue: Queue = viewer_queue if viewer_queue is not None else Queue(maxsize=VIEWER_QUEUE_SIZE)
        self.visuals = DetectionVisualsHandler()
        self.dropped = 0
        self.logger = Logger("ViewerQueueHandler")

    def consume(self, event: InferenceResults) -> None:
        item = ViewerFrame(
            image=self.visuals.visualize(event),
            stage=event.stage,
            sequence_id=event.frame.sequence_id,
            objects=len(event.results),
        )
        try:
            self.viewer_queue.put_nowait(item)
        except Full:
            self.dropped += 1  # viewer is behind, drop

    def close(self) -> None:
        self.logger.info(f"Viewer feed '{self.name}' closed ({self.dropped} frame(s) dropped)")
