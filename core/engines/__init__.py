"""
Compute engines for the Perception Node.

    create_engine("models/ssd.xml", "GPU")   -> DnnEngine  (cv2.dnn)
    create_engine("models/yolo11n.pt", "CPU") -> YoloEngine (ultralytics)

Backends are imported lazily so a pipeline that only uses cv2.dnn never
pulls in torch.
"""
from pathlib import Path
from typing import Optional

from core.engines.base import AsyncEngine, InferenceRequest
from utils.failures import ConfigError

YOLO_SUFFIXES = (".pt", ".pth", ".torchscript")
BACKENDS = ("dnn", "yolo")


def engine_backend_for(model_path: str, backend: Optional[str] = None) -> str:
    """Pick a backend: explicit choice wins, otherwise decide by weights suffix."""
    if backend:
        backend = backend.lower()
        if backend not in BACKENDS:
            raise ConfigError(f"Unknown engine backend '{backend}' (expected one of {BACKENDS})")
        return backend
    if Path(model_path).suffix.lower() in YOLO_SUFFIXES:
        return "yolo"
    return "dnn"


def create_engine(model_path: str, device: str, backend: Optional[str] = None) -> AsyncEngine:
    """Instantiate (but do not load) the engine for one stage."""
    kind = engine_backend_for(model_path, backend)
    if kind == "yolo":
        from core.engines.yolo import YoloEngine
        return YoloEngine(device)
    from core.engines.dnn import DnnEngine
    return DnnEngine(device)


__all__ = ["AsyncEngine", "InferenceRequest", "create_engine", "engine_backend_for"]
