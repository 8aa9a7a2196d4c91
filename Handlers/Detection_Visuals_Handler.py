"""Detection Visuals Handler — draws result regions and labels on frames.

Uses supervision's BoxAnnotator + LabelAnnotator (modern API).
Annotators are created once and reused for every frame.
"""
from typing import Dict, Sequence

import numpy as np
import supervision as sv

from core.events import DetectionResult, InferenceResults
from utils.logger import Logger


def to_detections(results: Sequence[DetectionResult], class_ids: Dict[str, int]) -> sv.Detections:
    """Convert results to sv.Detections; labels get stable class ids (for colors)."""
    if not results:
        return sv.Detections.empty()

    xyxy = np.array([r.region.to_xyxy() for r in results], dtype=np.float32)
    confidence = np.array([max(r.confidence, 0.0) for r in results], dtype=np.float32)
    class_id = np.array(
        [class_ids.setdefault(r.label, len(class_ids)) for r in results], dtype=int
    )
    return sv.Detections(xyxy=xyxy, confidence=confidence, class_id=class_id)


class DetectionVisualsHandler:
    """Annotates OpenCV frames with detection result regions and labels."""

    def __init__(self, thickness: int = 2, text_scale: float = 0.5, text_thickness: int = 1):
        self.logger = Logger("DetectionVisualsHandler")
        self.box_annotator = sv.BoxAnnotator(thickness=thickness)
        self.label_annotator = sv.LabelAnnotator(
            text_scale=text_scale,
            text_thickness=text_thickness,
        )
        self.class_ids: Dict[str, int] = {}

    def visualize(self, event: InferenceResults) -> np.ndarray:
        """
        Draw the results of one stage on a copy of their frame.

        Args:
            event: The results of one stage for one frame.

        Returns:
            A new BGR frame with the results drawn on it.
        """
        annotated = event.frame.image.copy()
        if not event.results:
            return annotated

        detections = to_detections(event.results, self.class_ids)
        labels = [
            f"{r.label}: {r.confidence:.2f}" if r.confidence >= 0 else r.label
            for r in event.results
        ]

        annotated = self.box_annotator.annotate(scene=annotated, detections=detections)
        annotated = self.label_annotator.annotate(
            scene=annotated, detections=detections, labels=labels
        )

        self.logger.debug(f"Visualized {len(detections)} detections on frame {event.frame.sequence_id}.")
        return annotated
