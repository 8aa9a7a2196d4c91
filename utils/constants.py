"""
Global constants for the Perception Node application.
"""
from pathlib import Path

# Project Structure
BASE_DIR = Path(__file__).parent.parent
CONFIGS_DIR = BASE_DIR / "configs"
LOGS_DIR = BASE_DIR / "logs"
LOG_FILE_NAME = "perception.log"

# Runtime
DEFAULT_FPS = 30
DEFAULT_DRAIN_TIMEOUT = 5.0

# Inference stage defaults
DEFAULT_DEVICE = "CPU"
DEFAULT_BATCH = 1
DEFAULT_CONFIDENCE_THRESHOLD = 0.5
DEFAULT_MAX_PROPOSAL_COUNT = 200
DEFAULT_INPUT_SIZE = (300, 300)
PROPOSAL_OBJECT_SIZE = 7  # image_id, label_id, confidence, x1, y1, x2, y2

# Input kinds
INPUT_VIDEO = "Video"
INPUT_CAMERA = "StandardCamera"
INPUT_IMAGE = "Image"
INPUT_KINDS = (INPUT_VIDEO, INPUT_CAMERA, INPUT_IMAGE)

# Output kinds
OUTPUT_IMAGE_WINDOW = "ImageWindow"
OUTPUT_TOPIC = "RosTopic"
OUTPUT_VIEWER = "RViz"
OUTPUT_KINDS = (OUTPUT_IMAGE_WINDOW, OUTPUT_TOPIC, OUTPUT_VIEWER)

# Topic sink
DEFAULT_SERVER_URL = "http://localhost:5000"
EVENT_DETECTIONS = "detected_objects"
VIEWER_QUEUE_SIZE = 2
