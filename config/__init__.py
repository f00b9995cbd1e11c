"""Configuration module for suitey."""

from typing import Optional

from .logger import (
    create_step_logger,
    create_verbose_logger,
    get_session_logger,
    setup_session_logging,
)
from .settings import Config, LogLevel


def setup_logging(config: Config):
    """Setup logging configuration using the session-based system."""
    return setup_session_logging(config)


# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
        setup_logging(_config)
    return _config


def set_config(config: Config, configure_logging: bool = True) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
    if configure_logging:
        setup_logging(config)


__all__ = [
    "Config",
    "LogLevel",
    "get_config",
    "set_config",
    "setup_logging",
    "create_step_logger",
    "create_verbose_logger",
    "get_session_logger",
]
