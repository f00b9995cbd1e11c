"""Configuration settings for suitey."""

import os
from enum import Enum
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

ENV_PREFIX = "SUITEY_"

# Bounds for the first-interrupt graceful stop window, in seconds
MIN_GRACE_TIMEOUT = 10
MAX_GRACE_TIMEOUT = 30


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


def _env(name: str, default: str) -> str:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


def _env_bool(name: str, default: str = "false") -> bool:
    return _env(name, default).lower() in ("true", "1", "yes")


class Config(BaseModel):
    """Main configuration class."""

    # Logging configuration
    log_level: LogLevel = Field(default=LogLevel.INFO)
    log_file: Optional[str] = Field(default="logs/suitey.log")
    log_dir: str = Field(default="logs")
    verbose: bool = Field(default=False)
    log_rotation: str = Field(default="50 MB")
    log_retention: str = Field(default="30 days")

    # Container layout
    build_workspace: str = Field(default="/workspace")
    artifact_mount: str = Field(default="/tmp/build-artifacts")
    test_workdir: str = Field(default="/app")
    container_prefix: str = Field(default="suitey")

    # Scheduling
    max_parallel: int = Field(default=0)  # 0 means one container per CPU core
    cpu_cores: int = Field(default=0)  # 0 means all available cores
    grace_timeout: int = Field(default=MIN_GRACE_TIMEOUT)
    memory_headroom: float = Field(default=0.2)
    min_container_memory_gb: float = Field(default=0.1)

    # Host filesystem
    temp_root: Optional[str] = Field(default=None)

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        env_file = Path(".env")
        if env_file.exists():
            load_dotenv(env_file)

        return cls(
            log_level=LogLevel(_env("LOG_LEVEL", "INFO").upper()),
            log_file=_env("LOG_FILE", "logs/suitey.log") or None,
            log_dir=_env("LOG_DIR", "logs"),
            verbose=_env_bool("VERBOSE"),
            log_rotation=_env("LOG_ROTATION", "50 MB"),
            log_retention=_env("LOG_RETENTION", "30 days"),
            build_workspace=_env("BUILD_WORKSPACE", "/workspace"),
            artifact_mount=_env("ARTIFACT_MOUNT", "/tmp/build-artifacts"),
            test_workdir=_env("TEST_WORKDIR", "/app"),
            container_prefix=_env("CONTAINER_PREFIX", "suitey"),
            max_parallel=int(_env("MAX_PARALLEL", "0")),
            cpu_cores=int(_env("CPU_CORES", "0")),
            grace_timeout=int(_env("GRACE_TIMEOUT", str(MIN_GRACE_TIMEOUT))),
            memory_headroom=float(_env("MEMORY_HEADROOM", "0.2")),
            min_container_memory_gb=float(_env("MIN_CONTAINER_MEMORY_GB", "0.1")),
            temp_root=_env("TEMP_ROOT", "") or None,
        )

    def effective_grace_timeout(self) -> int:
        """Graceful stop window clamped to the supported range."""
        return max(MIN_GRACE_TIMEOUT, min(MAX_GRACE_TIMEOUT, self.grace_timeout))
