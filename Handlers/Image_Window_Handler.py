"""Image Window Handler — shows annotated frames in an OpenCV window.

Implements the ResultSink protocol for the "ImageWindow" output.
"""
import cv2

from core.events import InferenceResults
from Handlers.Detection_Visuals_Handler import DetectionVisualsHandler
from utils.logger import Logger


class ImageWindowHandler:
    """Overlay window: one per pipeline, refreshed on every delivered frame."""

    def __init__(self, window_name: str, headless: bool = False):
        """
        Args:
            window_name: Title of the OpenCV window.
            headless: Annotate but never open a window (servers, tests).
        """
        self.name = window_name
        self.headless = headless
        self.visuals = DetectionVisualsHandler()
        self.window_open = False
        self.frames_shown = 0
        self.logger = Logger("ImageWindowHandler")

    def consume(self, event: InferenceResults) -> None:
        annotated = self.visuals.visualize(event)
        self.frames_shown += 1
        if self.headless:
            return

        if not self.window_open:
            cv2.namedWindow(self.name, cv2.WINDOW_NORMAL)
            self.window_open = True
            self.logger.info(f"Window '{self.name}' opened")
        cv2.imshow(self.name, annotated)
        cv2.waitKey(1)

    def close(self) -> None:
        if self.window_open:
            cv2.destroyWindow(self.name)
            self.window_open = False
            self.logger.info(f"Window '{self.name}' closed after {self.frames_shown} frame(s)")
