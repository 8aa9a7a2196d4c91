"""Image Input Handler - Serves one still image as a frame every cycle."""
import cv2
import numpy as np
from typing import Optional
from pathlib import Path
from utils.logger import Logger


class ImageInputHandler:
    """FrameSource over a single image file.

    repeat=True yields the image every cycle; otherwise it is produced
    once and the input reports itself exhausted.
    """

    def __init__(self, image_path: str, repeat: bool = True):
        self.image_path = image_path
        self.repeat = repeat
        self.exhausted = False
        self.image: Optional[np.ndarray] = None
        self.logger = Logger("ImageInputHandler")

    def start(self) -> bool:
        if not Path(self.image_path).is_file():
            self.logger.error(f"Image file not found: {self.image_path}")
            return False

        self.image = cv2.imread(self.image_path, cv2.IMREAD_COLOR)
        if self.image is None:
            self.logger.error(f"Failed to decode image: {self.image_path}")
            return False

        self.exhausted = False
        self.logger.info(f"Image loaded: {self.image_path} {self.image.shape[1]}x{self.image.shape[0]}")
        return True

    def read_frame(self) -> Optional[np.ndarray]:
        if self.image is None or self.exhausted:
            return None
        if not self.repeat:
            self.exhausted = True
        # Each frame owns its own buffer
        return self.image.copy()

    def stop(self) -> None:
        self.image = None
