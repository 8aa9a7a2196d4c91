"""Video Input Handler — the "Video" pipeline input.

Decodes a video file with cv2.VideoCapture, one frame per pipeline cycle.
At end of file the input either rewinds (loop=True) or reports itself
exhausted so the pipeline can drain and finish.
"""
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from utils.logger import Logger


class VideoInputHandler:
    """FrameSource over a video file."""

    def __init__(self, video_path: str, loop: bool = False):
        """
        Args:
            video_path: Path to the video file (input_path of the pipeline).
            loop: Rewind to the first frame at end of file instead of finishing.
        """
        self.video_path = video_path
        self.loop = loop
        self.exhausted = False
        self.frames_read = 0
        self.loops = 0
        self.frame_count = 0
        self.native_fps = 0.0
        self.cap: Optional[cv2.VideoCapture] = None
        self.logger = Logger("VideoInputHandler")

    def start(self) -> bool:
        if not Path(self.video_path).is_file():
            self.logger.error(f"Video file not found: {self.video_path}")
            return False

        cap = cv2.VideoCapture(self.video_path)
        if not cap.isOpened():
            self.logger.error(f"Cannot decode video: {self.video_path}")
            cap.release()
            return False

        self.cap = cap
        self.exhausted = False
        self.frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
        self.native_fps = float(cap.get(cv2.CAP_PROP_FPS) or 0.0)
        self.logger.info(
            f"Playing {self.video_path}: {self.frame_count} frame(s) at {self.native_fps:.1f} fps"
            f"{' (looping)' if self.loop else ''}"
        )
        return True

    def read_frame(self) -> Optional[np.ndarray]:
        if self.cap is None or self.exhausted:
            return None

        ok, image = self.cap.read()
        if not ok and self.loop and self.frames_read:
            self.cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
            self.loops += 1
            self.logger.debug(f"Rewound {self.video_path} (loop {self.loops})")
            ok, image = self.cap.read()

        if not ok:
            self.exhausted = True
            self.logger.info(f"End of {self.video_path} after {self.frames_read} frame(s)")
            return None

        self.frames_read += 1
        return image

    def stop(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None
            self.logger.info(f"Video input released ({self.frames_read} frame(s) read)")
