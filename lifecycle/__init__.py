"""Container lifecycle, interrupts and host resources."""

from .controller import ContainerHandle, ContainerStatus, LifecycleController, ShutdownState
from .resources import (
    available_cores,
    check_environment,
    max_concurrent_containers,
    memory_per_container_gb,
    total_memory_gb,
)

__all__ = [
    "ContainerHandle",
    "ContainerStatus",
    "LifecycleController",
    "ShutdownState",
    "available_cores",
    "check_environment",
    "max_concurrent_containers",
    "memory_per_container_gb",
    "total_memory_gb",
]
