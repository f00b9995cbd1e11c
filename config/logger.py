"""Session-based logging for suitey."""

import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from loguru import logger


class SessionLogger:
    """Manages per-invocation logging with timestamp-based separation."""

    def __init__(self, config):
        self.config = config
        self.session_id = self._generate_session_id()
        self.base_log_dir = Path(config.log_dir)
        self.session_log_dir = self.base_log_dir / f"session_{self.session_id}"

        self.base_log_dir.mkdir(parents=True, exist_ok=True)
        self.session_log_dir.mkdir(exist_ok=True)

        self._setup_loggers()

        logger.debug(f"Session logging initialized. Session ID: {self.session_id}")

    def _generate_session_id(self) -> str:
        return datetime.now().strftime("%Y%m%d_%H%M%S")

    def _setup_loggers(self):
        logger.remove()

        console_level = "DEBUG" if self.config.verbose else self.config.log_level.value
        logger.add(
            sys.stderr,
            level=console_level,
            format=self._get_console_format(),
            colorize=True,
            filter=self._console_filter,
        )

        # Build and test workers log from threads, hence enqueue
        logger.add(
            str(self.session_log_dir / "main.log"),
            level="DEBUG",
            format=self._get_file_format(),
            rotation=self.config.log_rotation,
            retention=self.config.log_retention,
            compression="gz",
            enqueue=True,
        )

        logger.add(
            str(self.session_log_dir / "errors.log"),
            level="ERROR",
            format=self._get_file_format(),
            rotation="10 MB",
            retention="90 days",
            enqueue=True,
        )

        if self.config.verbose:
            logger.add(
                str(self.session_log_dir / "debug_verbose.log"),
                level="TRACE",
                format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra} | {message}",
                rotation="200 MB",
                retention="3 days",
                enqueue=True,
                filter=lambda record: "VERBOSE" in record["extra"] or record["level"].no <= 10,
            )

        if self.config.log_file:
            log_path = Path(self.config.log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            logger.add(
                str(log_path),
                level="INFO",
                format=self._get_file_format(),
                rotation=self.config.log_rotation,
                retention=self.config.log_retention,
                compression="gz",
                enqueue=True,
            )

    def _get_console_format(self) -> str:
        if self.config.verbose:
            return ("<green>{time:HH:mm:ss.SSS}</green> | "
                    "<level>{level: <8}</level> | "
                    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                    "<level>{message}</level>")
        return ("<green>{time:HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<level>{message}</level>")

    def _get_file_format(self) -> str:
        return "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"

    def _console_filter(self, record):
        if record["level"].no >= 20:
            return True
        return self.config.verbose and record["level"].no >= 10

    def create_verbose_logger(self, name: str):
        """Create a logger that only lands in the verbose debug log."""
        return logger.bind(VERBOSE=True, logger_name=name)

    def create_step_logger(self, step: str):
        """Create a logger bound to a build step or test suite."""
        return logger.bind(step=step)

    def get_session_summary(self) -> dict:
        log_files = list(self.session_log_dir.glob("*.log"))
        return {
            "session_id": self.session_id,
            "session_dir": str(self.session_log_dir),
            "verbose_enabled": self.config.verbose,
            "log_level": self.config.log_level.value,
            "log_files": [
                {"name": f.name, "size": f.stat().st_size if f.exists() else 0, "path": str(f)}
                for f in log_files
            ],
        }


_session_logger: Optional[SessionLogger] = None


def setup_session_logging(config) -> SessionLogger:
    """Setup session-based logging system."""
    global _session_logger
    _session_logger = SessionLogger(config)
    return _session_logger


def get_session_logger() -> Optional[SessionLogger]:
    return _session_logger


def create_verbose_logger(name: str):
    if _session_logger:
        return _session_logger.create_verbose_logger(name)
    return logger.bind(VERBOSE=True, logger_name=name)


def create_step_logger(step: str):
    if _session_logger:
        return _session_logger.create_step_logger(step)
    return logger.bind(step=step)
