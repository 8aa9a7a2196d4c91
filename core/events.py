"""
Typed value types and event definitions for the Perception Node.

Frames and regions flow from inputs into inference stages; detection
results flow from stages to sinks and downstream stages. All fan-out goes
through the event bus, scoped by producer topic, so no producer holds a
direct reference to its consumers.
"""
from dataclasses import dataclass, field
from typing import Tuple
import time
import numpy as np


# ─── Pipeline Values ─────────────────────────────────────────────────────

@dataclass(frozen=True, eq=False)
class Frame:
    """A captured frame. The image is read-only once wrapped. Compared by identity."""
    image: np.ndarray
    sequence_id: int
    source: str = "unknown"
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def wrap(cls, image: np.ndarray, sequence_id: int, source: str = "unknown") -> "Frame":
        """Take ownership of a freshly captured image and freeze its pixels."""
        image = np.asarray(image)
        image.setflags(write=False)
        return cls(image=image, sequence_id=sequence_id, source=source)

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])


@dataclass(frozen=True)
class FrameRegion:
    """Rectangle (x, y, width, height) in the coordinate space of one Frame."""
    x: int
    y: int
    width: int
    height: int
    sequence_id: int

    @classmethod
    def full(cls, frame: Frame) -> "FrameRegion":
        return cls(0, 0, frame.width, frame.height, frame.sequence_id)

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def to_xyxy(self) -> Tuple[int, int, int, int]:
        return (self.x, self.y, self.x + self.width, self.y + self.height)

    def clip(self, width: int, height: int) -> "FrameRegion":
        """Intersect with [0, width] x [0, height]. May produce an empty region."""
        x1 = min(max(self.x, 0), width)
        y1 = min(max(self.y, 0), height)
        x2 = min(max(self.x + self.width, 0), width)
        y2 = min(max(self.y + self.height, 0), height)
        return FrameRegion(x1, y1, max(x2 - x1, 0), max(y2 - y1, 0), self.sequence_id)

    def crop(self, frame: Frame) -> np.ndarray:
        """View of the frame pixels covered by this region (clipped to the frame)."""
        x1, y1, x2, y2 = self.clip(frame.width, frame.height).to_xyxy()
        return frame.image[y1:y2, x1:x2]


@dataclass(frozen=True)
class DetectionResult:
    """One decoded detection. confidence == -1 means unset."""
    region: FrameRegion
    label: str = ""
    confidence: float = -1.0


# ─── Event Bus Events ────────────────────────────────────────────────────

@dataclass(frozen=True)
class FrameCaptured:
    """Published on the input's topic for every frame it produces."""
    source: str
    frame: Frame


@dataclass(frozen=True)
class InferenceResults:
    """Published on the stage's topic: all results one fetch produced for one frame."""
    stage: str
    frame: Frame
    results: Tuple[DetectionResult, ...] = ()

    def __len__(self) -> int:
        return len(self.results)


@dataclass
class StageFailed:
    """Published when a stage operation fails at runtime."""
    pipeline: str
    stage: str
    error: Exception
    timestamp: float = field(default_factory=time.time)


@dataclass
class PipelineStopped:
    """Published once a pipeline has drained and released its resources."""
    pipeline: str
    reason: str = "stopped"
    timestamp: float = field(default_factory=time.time)
