"""Frame Viewer Handler — Qt window for the "RViz" output of one pipeline.

ViewerQueueHandler pushes ViewerFrame items from the pipeline thread; this
window lives on the Qt main thread, polls the queue, shows the newest
annotated frame and keeps a status line (stage, frame, objects, rate).
"""
import time
from queue import Queue, Empty
from typing import Optional

import numpy as np
from PyQt6.QtCore import QTimer, Qt
from PyQt6.QtGui import QImage, QPixmap
from PyQt6.QtWidgets import QLabel, QMainWindow

from Handlers.Viewer_Queue_Handler import ViewerFrame
from utils.logger import Logger

POLL_INTERVAL_MS = 33


def to_pixmap(image: np.ndarray) -> QPixmap:
    """BGR (or grayscale) ndarray to QPixmap. The pixels are copied."""
    image = np.ascontiguousarray(image)
    h, w = image.shape[:2]
    if image.ndim == 2:
        q_img = QImage(image.data, w, h, image.strides[0], QImage.Format.Format_Grayscale8)
    else:
        q_img = QImage(image.data, w, h, image.strides[0], QImage.Format.Format_BGR888)
    return QPixmap.fromImage(q_img.copy())


class FrameViewerHandler(QMainWindow):
    """Shows the latest result frame of a pipeline; stale frames are skipped."""

    def __init__(self, viewer_queue: Queue, title: str = "Perception | Viewer"):
        super().__init__()
        self.viewer_queue = viewer_queue
        self.logger = Logger("FrameViewer")
        self.shown = 0
        self.skipped = 0
        self._last_shown_at: Optional[float] = None
        self._rate = 0.0

        self.setWindowTitle(title)
        self.resize(960, 540)
        self.canvas = QLabel("No results yet")
        self.canvas.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.canvas.setMinimumSize(320, 240)
        self.setCentralWidget(self.canvas)
        self.statusBar().showMessage("waiting for the pipeline")

        self._timer = QTimer(self)
        self._timer.timeout.connect(self._poll_queue)
        self._timer.start(POLL_INTERVAL_MS)
        self.logger.info(f"Viewer '{title}' opened")

    def _poll_queue(self) -> None:
        latest: Optional[ViewerFrame] = None
        while True:
            try:
                item = self.viewer_queue.get_nowait()
            except Empty:
                break
            if latest is not None:
                self.skipped += 1
            latest = item

        if latest is not None:
            self._show(latest)

    def _show(self, item: ViewerFrame) -> None:
        now = time.monotonic()
        if self._last_shown_at is not None and now > self._last_shown_at:
            # Exponential moving average of the display rate
            self._rate = 0.9 * self._rate + 0.1 / (now - self._last_shown_at)
        self._last_shown_at = now
        self.shown += 1

        self.canvas.setPixmap(to_pixmap(item.image).scaled(
            self.canvas.size(),
            Qt.AspectRatioMode.KeepAspectRatio,
            Qt.TransformationMode.SmoothTransformation,
        ))
        self.statusBar().showMessage(
            f"{item.stage} | frame {item.sequence_id} | {item.objects} object(s) | "
            f"{self._rate:.1f} fps | {self.skipped} skipped"
        )

    def stop(self) -> None:
        self._timer.stop()
        self.close()
        self.logger.info(f"Viewer closed after {self.shown} frame(s), {self.skipped} skipped")
