"""Container runtime access."""

from .orch import LOG_DRAIN_TIMEOUT, ContainerRuntime

__all__ = ["ContainerRuntime", "LOG_DRAIN_TIMEOUT"]
