"""
Input and output handlers for the Perception Node.

create_source / create_sink map the input and output names of a pipeline
document onto concrete handlers. Handlers are imported lazily so that a
headless pipeline never loads a GUI toolkit.

Recognized options (from main.py):
    headless      bool   no windows for ImageWindow
    loop_video    bool   restart Video inputs at end of file
    server_url    str    Socket.IO server for RosTopic
    viewer_queue  Queue  frame queue polled by the Qt viewer (RViz)
"""
from typing import Any, Dict

from utils.constants import (
    INPUT_VIDEO, INPUT_CAMERA, INPUT_IMAGE,
    OUTPUT_IMAGE_WINDOW, OUTPUT_TOPIC, OUTPUT_VIEWER, DEFAULT_SERVER_URL,
)
from utils.failures import ConfigError


def create_source(kind: str, spec, options: Dict[str, Any]):
    """Build the FrameSource for one pipeline input."""
    if kind == INPUT_VIDEO:
        from Handlers.Video_Input_Handler import VideoInputHandler
        return VideoInputHandler(spec.input_path, loop=options.get("loop_video", False))

    if kind == INPUT_CAMERA:
        from Handlers.Camera_Handler import CameraHandler
        index = spec.input_path or 0
        try:
            index = int(index)
        except ValueError:
            raise ConfigError(f"Pipeline '{spec.name}': camera index must be an integer, got {index!r}")
        return CameraHandler(
            index,
            width=options.get("camera_width", 640),
            height=options.get("camera_height", 480),
        )

    if kind == INPUT_IMAGE:
        from Handlers.Image_Input_Handler import ImageInputHandler
        return ImageInputHandler(spec.input_path, repeat=options.get("repeat_image", True))

    raise ConfigError(f"Pipeline '{spec.name}': unknown input '{kind}'")


def create_sink(kind: str, spec, options: Dict[str, Any]):
    """Build the ResultSink for one pipeline output."""
    if kind == OUTPUT_IMAGE_WINDOW:
        from Handlers.Image_Window_Handler import ImageWindowHandler
        return ImageWindowHandler(
            f"{spec.name} | {kind}", headless=options.get("headless", False)
        )

    if kind == OUTPUT_TOPIC:
        from Handlers.Socket_Handler import SocketHandler
        return SocketHandler(
            kind, spec.name, options.get("server_url", DEFAULT_SERVER_URL)
        )

    if kind == OUTPUT_VIEWER:
        from Handlers.Viewer_Queue_Handler import ViewerQueueHandler
        return ViewerQueueHandler(kind, options.get("viewer_queue"))

    raise ConfigError(f"Pipeline '{spec.name}': unknown output '{kind}'")


__all__ = ["create_source", "create_sink"]
