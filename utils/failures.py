"""
Structured error handling and failure tracking for the Perception Node.
"""
import threading
import time
from typing import Dict, List, Optional
from utils.logger import Logger


class PipelineError(Exception):
    """Base class for all Perception Node exceptions."""
    def __init__(self, message: str, critical: bool = False):
        super().__init__(message)
        self.message = message
        self.critical = critical
        self.timestamp = time.time()


class ConfigError(PipelineError):
    """Malformed or contradictory pipeline wiring. Fatal at build time."""
    def __init__(self, message: str):
        super().__init__(message, critical=True)


class ModelLoadError(PipelineError):
    """Model file missing/malformed or target device unavailable."""
    def __init__(self, message: str):
        super().__init__(message, critical=True)


class CapacityError(PipelineError):
    """Raised when a stage cannot accept another region this cycle."""
    pass


class EngineError(PipelineError):
    """Device execution failure for one request."""
    pass


class DecodeError(PipelineError):
    """Engine output could not be decoded into results."""
    pass


class FailureManager:
    """Tracks and manages recurring failures to improve system resilience."""

    def __init__(self, settings: Optional[dict] = None):
        """
        Initialize the failure manager.

        Args:
            settings: Dictionary containing failure thresholds ('threshold', 'window_seconds')
        """
        self.logger = Logger("FailureManager")

        self.settings = settings or {}
        self.threshold = self.settings.get('threshold', 5)
        self.window_seconds = self.settings.get('window_seconds', 300)

        self.failures: Dict[str, List[float]] = {}
        self.history: List[PipelineError] = []
        self._max_history = 100
        self._lock = threading.Lock()

    def record_failure(self, error: Exception, origin: str = ""):
        """
        Record a failure incident (thread-safe).

        Args:
            error: The exception that occurred.
            origin: Name of the stage/input/sink the failure belongs to.
        """
        with self._lock:
            error_type = type(error).__name__
            now = time.time()

            self.failures.setdefault(error_type, []).append(now)

            # Prune old entries beyond the time window
            cutoff = now - self.window_seconds
            self.failures[error_type] = [
                t for t in self.failures[error_type] if t > cutoff
            ]

            prefix = f"[{origin}] " if origin else ""
            if isinstance(error, PipelineError):
                self.history.append(error)
                msg = f"{prefix}Failure detected: {error_type} - {error.message}"
                if error.critical:
                    self.logger.error(f"CRITICAL: {msg}")
                else:
                    self.logger.warning(msg)
            else:
                self.logger.error(f"{prefix}Unexpected failure: {error_type} - {error}")

            if len(self.history) > self._max_history:
                self.history = self.history[-self._max_history:]

            if len(self.failures[error_type]) >= self.threshold:
                self.logger.warning(
                    f"Resilience Alert: '{error_type}' exceeded threshold "
                    f"({self.threshold} in {self.window_seconds}s)"
                )

    def is_threshold_exceeded(self, error_type: str) -> bool:
        """Check if a specific error type has exceeded the frequency threshold."""
        with self._lock:
            if error_type not in self.failures:
                return False

            now = time.time()
            self.failures[error_type] = [
                t for t in self.failures[error_type] if (now - t) < self.window_seconds
            ]
            return len(self.failures[error_type]) >= self.threshold

    def count(self, error_type: str) -> int:
        """Number of failures of this type inside the current window."""
        with self._lock:
            return len(self.failures.get(error_type, []))

    def get_recent_history(self, count: int = 10) -> List[PipelineError]:
        """Return the most recent failures."""
        with self._lock:
            return self.history[-count:]

    def clear(self):
        """Reset all tracked failures."""
        with self._lock:
            self.failures = {}
            self.history = []
        self.logger.info("Failure history cleared.")
