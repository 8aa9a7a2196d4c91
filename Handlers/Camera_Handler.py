"""
Camera Handler - Reads frames from a local camera (USB/V4L2/webcam) via OpenCV.

Implements the FrameSource protocol. Frames are pulled synchronously by
the pipeline graph, one per cycle; a camera that keeps returning empty
frames is reopened.
"""
import cv2
import numpy as np
from typing import Optional
from utils.logger import Logger

# Max consecutive empty frames before attempting a camera restart
MAX_EMPTY_FRAMES = 50


class CameraHandler:
    """Handles interaction with a standard camera through cv2.VideoCapture.

    Implements the FrameSource protocol:
        start() -> bool
        read_frame() -> Optional[np.ndarray]
        stop() -> None
    """

    exhausted = False  # a camera never runs out of frames

    def __init__(self, device_index: int = 0, width: int = 640, height: int = 480):
        """
        Args:
            device_index: OpenCV camera index.
            width: Requested capture width.
            height: Requested capture height.
        """
        self.device_index = device_index
        self.width = width
        self.height = height
        self.cap: Optional[cv2.VideoCapture] = None
        self.empty_frame_count = 0
        self.logger = Logger("CameraHandler")

    def start(self) -> bool:
        """Open the camera device."""
        self.cap = cv2.VideoCapture(self.device_index)
        if not self.cap.isOpened():
            self.logger.error(f"Failed to open camera {self.device_index}")
            self.cap = None
            return False

        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self.logger.info(f"Camera {self.device_index} opened at {self.width}x{self.height}")
        return True

    def read_frame(self) -> Optional[np.ndarray]:
        """Grab the next frame; None while the camera glitches."""
        if self.cap is None:
            return None

        ret, frame = self.cap.read()
        if not ret or not self._is_valid_frame(frame):
            self.empty_frame_count += 1
            if self.empty_frame_count == 1:
                self.logger.warning("Captured empty frame, waiting for camera stream...")
            if self.empty_frame_count >= MAX_EMPTY_FRAMES:
                self.logger.warning(
                    f"{MAX_EMPTY_FRAMES} consecutive empty frames. Restarting camera..."
                )
                self.stop()
                self.start()
                self.empty_frame_count = 0
            return None

        if self.empty_frame_count > 0:
            self.logger.info(f"Camera stream recovered after {self.empty_frame_count} empty frame(s)")
            self.empty_frame_count = 0
        return frame

    def stop(self) -> None:
        """Release the camera device."""
        if self.cap is not None:
            self.cap.release()
            self.cap = None
            self.logger.info("Camera released")

    @staticmethod
    def _is_valid_frame(frame) -> bool:
        """Check whether a captured frame contains actual image data."""
        if frame is None or not isinstance(frame, np.ndarray) or frame.size == 0:
            return False
        # Reject fully black frames (sensor not streaming yet)
        return frame.max() > 0
