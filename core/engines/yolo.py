"""
Ultralytics YOLO engine.

Wraps a YOLO model loaded with torch on CPU or CUDA and converts each
prediction into the proposal tensor layout shared by every detector:
[image_id, label_id, confidence, x1, y1, x2, y2] with normalized coords.
"""
from typing import List, Optional

import numpy as np
import torch
from ultralytics import YOLO

from core.engines.base import AsyncEngine
from utils.constants import PROPOSAL_OBJECT_SIZE
from utils.failures import ModelLoadError


class YoloEngine(AsyncEngine):
    """Handler for loading a YOLO model and running batched predictions."""

    backend = "yolo"
    supported_devices = ("CPU", "GPU", "CUDA", "MPS")

    def __init__(self, device: str = "CPU", min_confidence: float = 0.01):
        super().__init__(device)
        self.min_confidence = min_confidence
        self.torch_device: Optional[str] = None
        self.yolo: Optional[YOLO] = None

    def _resolve_device(self) -> str:
        if self.device == "CPU":
            return "cpu"
        if self.device in ("GPU", "CUDA"):
            if not torch.cuda.is_available():
                raise ModelLoadError(f"Device '{self.device}' requested but CUDA is not available")
            return "cuda:0"
        if not torch.backends.mps.is_available():
            raise ModelLoadError("Device 'MPS' requested but MPS is not available")
        return "mps"

    def _load(self, model) -> None:
        self.torch_device = self._resolve_device()
        yolo = YOLO(model.model_path)
        yolo.to(self.torch_device)
        self.yolo = yolo
        names = getattr(yolo, "names", None) or {}
        self.labels = [names[k] for k in sorted(names)] if isinstance(names, dict) else list(names)

    def _infer(self, batch: List[np.ndarray]) -> np.ndarray:
        predictions = self.yolo.predict(
            batch,
            device=self.torch_device,
            conf=self.min_confidence,
            verbose=False,
        )

        rows = []
        for slot, prediction in enumerate(predictions):
            boxes = prediction.boxes
            if boxes is None or len(boxes) == 0:
                continue
            xyxyn = boxes.xyxyn.cpu().numpy()
            conf = boxes.conf.cpu().numpy()
            cls = boxes.cls.cpu().numpy()
            slot_ids = np.full(len(conf), slot, dtype=np.float32)
            rows.append(np.column_stack([slot_ids, cls, conf, xyxyn]).astype(np.float32))

        # Terminating row, same convention as SSD outputs
        rows.append(np.full((1, PROPOSAL_OBJECT_SIZE), -1.0, dtype=np.float32))
        return np.concatenate(rows, axis=0)

    def _release(self) -> None:
        self.yolo = None
        if self.torch_device and self.torch_device.startswith("cuda"):
            torch.cuda.empty_cache()
