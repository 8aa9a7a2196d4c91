"""
Object Detection Stage — decodes SSD-style proposal tensors.

Each output row is [image_id, label_id, confidence, x1, y1, x2, y2] with
coordinates normalized to the region that was enqueued in batch slot
image_id. Decoded boxes are mapped back into frame coordinates so every
result stays anchored to the frame it came from.
"""
from typing import List, Sequence, Tuple

import numpy as np

from core.events import Frame, FrameRegion, DetectionResult
from core.models import ObjectDetectionModel
from core.stages.inference import BaseInference, Slot
from utils.failures import DecodeError


class ObjectDetectionStage(BaseInference):
    """Object detection over one or more regions per request."""

    task = "ObjectDetection"
    model_class = ObjectDetectionModel

    def decode(self, raw: np.ndarray, slots: Sequence[Slot]) -> List[Tuple[Frame, DetectionResult]]:
        object_size = self.model.object_size
        data = np.asarray(raw, dtype=np.float32)
        if data.size == 0 or data.size % object_size != 0:
            raise DecodeError(
                f"Stage '{self.name}': output of shape {data.shape} is not a "
                f"[N, {object_size}] proposal tensor"
            )

        rows = data.reshape(-1, object_size)[:self.model.max_proposal_count]
        if not np.isfinite(rows).all():
            raise DecodeError(f"Stage '{self.name}': output contains non-finite values")

        results = []
        discarded = 0
        for row in rows:
            image_id = int(row[0])
            if image_id < 0:
                break
            if image_id >= len(slots):
                discarded += 1
                continue

            confidence = float(row[2])
            if not 0.0 <= confidence <= 1.0:
                discarded += 1
                continue
            if not self.accepts(confidence):
                continue

            frame, region = slots[image_id]
            box = self._to_frame_coords(row[3:7], region, frame)
            if box is None:
                discarded += 1
                continue

            results.append((frame, DetectionResult(
                region=self.constrain(box, frame),
                label=self.model.label_for(int(row[1])),
                confidence=confidence,
            )))

        if discarded:
            self.logger.debug(f"Discarded {discarded} proposal(s) with mismatched slot, invalid confidence or inverted box")
        return results

    @staticmethod
    def _to_frame_coords(coords: np.ndarray, region: FrameRegion, frame: Frame):
        """Scale normalized coords by the pixels the engine actually saw."""
        seen = region.clip(frame.width, frame.height)
        x1 = seen.x + int(round(float(coords[0]) * seen.width))
        y1 = seen.y + int(round(float(coords[1]) * seen.height))
        x2 = seen.x + int(round(float(coords[2]) * seen.width))
        y2 = seen.y + int(round(float(coords[3]) * seen.height))
        if x2 < x1 or y2 < y1:
            return None
        return FrameRegion(x1, y1, x2 - x1, y2 - y1, frame.sequence_id)
