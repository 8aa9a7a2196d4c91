"""
Inference stages for the Perception Node.

Every task implements the same enqueue / submit_request / fetch_results
lifecycle (BaseInference); the pipeline graph dispatches through that
capability set only and looks task classes up by name here.
"""
from .inference import BaseInference, StageState
from .object_detection import ObjectDetectionStage

STAGE_TYPES = {
    ObjectDetectionStage.task: ObjectDetectionStage,
}

__all__ = ["BaseInference", "StageState", "ObjectDetectionStage", "STAGE_TYPES"]
