"""
OpenCV DNN engine.

Runs SSD-style detectors (Caffe, ONNX, TensorFlow, OpenVINO IR) whose
output is the [1, 1, N, 7] proposal tensor. The batch is packed into one
blob, so image_id in each output row is the batch slot.
"""
import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import List, Optional, Tuple

import cv2
import numpy as np

from core.engines.base import AsyncEngine
from utils.failures import ModelLoadError

# device id -> (backend, target)
DEVICE_TARGETS = {
    "CPU": (cv2.dnn.DNN_BACKEND_OPENCV, cv2.dnn.DNN_TARGET_CPU),
    "GPU": (cv2.dnn.DNN_BACKEND_OPENCV, cv2.dnn.DNN_TARGET_OPENCL),
    "GPU_FP16": (cv2.dnn.DNN_BACKEND_OPENCV, cv2.dnn.DNN_TARGET_OPENCL_FP16),
    "MYRIAD": (cv2.dnn.DNN_BACKEND_INFERENCE_ENGINE, cv2.dnn.DNN_TARGET_MYRIAD),
    "CUDA": (cv2.dnn.DNN_BACKEND_CUDA, cv2.dnn.DNN_TARGET_CUDA),
}

# weights suffix -> companion topology/config suffix
COMPANION_SUFFIXES = {
    ".xml": ".bin",
    ".caffemodel": ".prototxt",
    ".pb": ".pbtxt",
}


def companion_file(model_path: str) -> Optional[str]:
    """Find the second file some formats need (IR weights, Caffe prototxt)."""
    path = Path(model_path)
    suffix = COMPANION_SUFFIXES.get(path.suffix.lower())
    if suffix is None:
        return None
    candidate = path.with_suffix(suffix)
    return str(candidate) if candidate.is_file() else None


_PROTOTXT_BATCH = (
    re.compile(r"input_dim\s*:\s*(-?\d+)"),
    re.compile(r"shape\s*:?\s*\{\s*dim\s*:\s*(-?\d+)"),
)


def declared_batch_size(model_path: str, config_path: Optional[str] = None) -> Optional[int]:
    """
    Batch dimension the model file fixes for its first input, if any.

    Reads the first Parameter/Input layer of an OpenVINO IR topology or the
    input declaration of a Caffe prototxt. Dynamic (-1, ?) or unreadable
    dimensions return None.
    """
    suffix = Path(model_path).suffix.lower()
    if suffix == ".xml":
        try:
            root = ET.parse(model_path).getroot()
        except (ET.ParseError, OSError):
            return None
        for layer in root.iter("layer"):
            if layer.get("type") not in ("Parameter", "Input"):
                continue
            dim = layer.find(".//output/port/dim")
            if dim is not None:
                return _positive(dim.text)
            data = layer.find("data")
            shape = data.get("shape", "") if data is not None else ""
            return _positive(shape.split(",")[0])
        return None

    if suffix == ".caffemodel" and config_path:
        try:
            text = Path(config_path).read_text(errors="ignore")
        except OSError:
            return None
        for pattern in _PROTOTXT_BATCH:
            match = pattern.search(text)
            if match:
                return _positive(match.group(1))
    return None


def _positive(value: Optional[str]) -> Optional[int]:
    try:
        number = int(str(value).strip())
    except ValueError:
        return None
    return number if number > 0 else None


class DnnEngine(AsyncEngine):
    """cv2.dnn backed engine."""

    backend = "dnn"
    supported_devices = tuple(DEVICE_TARGETS)

    def __init__(
        self,
        device: str = "CPU",
        scale: float = 1.0,
        mean: Tuple[float, float, float] = (0.0, 0.0, 0.0),
        swap_rb: bool = False,
    ):
        super().__init__(device)
        self.scale = scale
        self.mean = tuple(mean)
        self.swap_rb = swap_rb
        self.net: Optional[cv2.dnn.Net] = None
        self.input_size: Tuple[int, int] = (300, 300)

    def _load(self, model) -> None:
        backend, target = DEVICE_TARGETS[self.device]
        if target not in cv2.dnn.getAvailableTargets(backend):
            raise ModelLoadError(f"Device '{self.device}' is not available in this OpenCV build")

        config_path = companion_file(model.model_path)
        if Path(model.model_path).suffix.lower() in (".xml", ".caffemodel") and config_path is None:
            raise ModelLoadError(f"Missing companion file for {model.model_path}")

        try:
            net = cv2.dnn.readNet(model.model_path, config_path or "")
        except cv2.error as e:
            raise ModelLoadError(f"Malformed model {model.model_path}: {e}")
        if net.empty():
            raise ModelLoadError(f"Model has no layers: {model.model_path}")

        net.setPreferableBackend(backend)
        net.setPreferableTarget(target)
        self.net = net
        self.input_size = tuple(model.input_size)
        self.max_batch_size = declared_batch_size(model.model_path, config_path)
        if self.max_batch_size is not None:
            self.logger.info(f"{model.model_path} fixes the batch size at {self.max_batch_size}")

    def _infer(self, batch: List[np.ndarray]) -> np.ndarray:
        blob = cv2.dnn.blobFromImages(
            [np.ascontiguousarray(image) for image in batch],
            scalefactor=self.scale,
            size=self.input_size,
            mean=self.mean,
            swapRB=self.swap_rb,
            crop=False,
        )
        self.net.setInput(blob)
        return self.net.forward()

    def _release(self) -> None:
        self.net = None
