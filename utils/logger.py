import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from utils.constants import LOGS_DIR, LOG_FILE_NAME


def _parse_size(value, default: int) -> int:
    """Parse a rotation size string such as "5MB" or "512KB" into bytes."""
    size = str(value).strip().upper()
    try:
        if size.endswith('MB'):
            return int(size[:-2]) * 1024 * 1024
        if size.endswith('KB'):
            return int(size[:-2]) * 1024
        return int(size)
    except ValueError:
        return default


class Logger:
    """Enhanced logger with console and rotating file output."""

    _configured = False

    @classmethod
    def setup(cls, settings: dict):
        """
        Global configuration for all Logger instances.

        Args:
            settings: Dictionary containing 'level', 'rotation', 'backup_count',
                      and optionally 'file' (set to false to disable the log file)
        """
        if cls._configured:
            return

        level_name = str(settings.get('level', 'INFO')).upper()
        level = getattr(logging, level_name, logging.INFO)

        root = logging.getLogger()
        root.setLevel(level)

        if not root.handlers:
            formatter = logging.Formatter(
                '[%(asctime)s] [%(levelname)s] [%(threadName)s] [%(name)s] %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )

            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(formatter)
            root.addHandler(console_handler)

            if settings.get('file', True):
                try:
                    log_dir = Path(settings.get('dir', LOGS_DIR))
                    log_dir.mkdir(parents=True, exist_ok=True)

                    file_handler = RotatingFileHandler(
                        log_dir / LOG_FILE_NAME,
                        maxBytes=_parse_size(settings.get('rotation', '5MB'), 5 * 1024 * 1024),
                        backupCount=settings.get('backup_count', 5)
                    )
                    file_handler.setFormatter(formatter)
                    root.addHandler(file_handler)
                except OSError as e:
                    root.warning(f"Failed to initialize file logger: {e}")

        cls._configured = True

    def __init__(self, name: str = "Perception"):
        self.logger = logging.getLogger(name)

    def info(self, message: str):
        self.logger.info(message)

    def warning(self, message: str):
        self.logger.warning(message)

    def error(self, message: str):
        self.logger.error(message)

    def debug(self, message: str):
        self.logger.debug(message)

    def critical(self, message: str):
        self.logger.critical(message)

    def exception(self, message: str):
        self.logger.exception(message)
