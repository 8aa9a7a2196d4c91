"""
Detection model descriptions.

A model description carries everything a stage needs to feed an engine
and decode its output: where the weights live, the label table, the
input size, the proposal tensor layout and the batch limit. The engine
owns the loaded network itself.
"""
from pathlib import Path
from typing import List, Optional, Tuple

from utils.constants import (
    DEFAULT_INPUT_SIZE, DEFAULT_MAX_PROPOSAL_COUNT, PROPOSAL_OBJECT_SIZE,
)
from utils.failures import ModelLoadError
from utils.logger import Logger


def load_labels(label_path: Optional[str]) -> List[str]:
    """
    Read a label table: one label per line, blank lines ignored.

    Raises:
        ModelLoadError: the path is set but cannot be read.
    """
    if not label_path:
        return []
    path = Path(label_path)
    if not path.is_file():
        raise ModelLoadError(f"Label file not found: {label_path}")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return [line.strip() for line in f if line.strip()]
    except (OSError, UnicodeDecodeError) as e:
        raise ModelLoadError(f"Failed to read label file {label_path}: {e}")


class ObjectDetectionModel:
    """SSD-style detector: one [N, 7] proposal tensor per request."""

    task = "object_detection"

    def __init__(
        self,
        model_path: str,
        label_path: Optional[str] = None,
        max_batch_size: int = 1,
        max_proposal_count: int = DEFAULT_MAX_PROPOSAL_COUNT,
        input_size: Tuple[int, int] = DEFAULT_INPUT_SIZE,
    ):
        self.model_path = model_path
        self.label_path = label_path
        self.max_batch_size = max_batch_size
        self.max_proposal_count = max_proposal_count
        self.object_size = PROPOSAL_OBJECT_SIZE
        self.input_size = tuple(input_size)
        self.labels: List[str] = []
        self.logger = Logger("ObjectDetectionModel")

    def load_labels(self) -> List[str]:
        self.labels = load_labels(self.label_path)
        if self.labels:
            self.logger.info(f"Loaded {len(self.labels)} labels from {self.label_path}")
        return self.labels

    def label_for(self, label_id: int) -> str:
        if 0 <= label_id < len(self.labels):
            return self.labels[label_id]
        return f"label #{label_id}"

    def __repr__(self) -> str:
        return (
            f"ObjectDetectionModel(path={self.model_path}, batch<={self.max_batch_size}, "
            f"proposals={self.max_proposal_count}, input={self.input_size})"
        )
