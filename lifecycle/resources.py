"""Host resource limits and runtime environment checks."""

import os
import shutil
from typing import Optional

from loguru import logger

from errors import RuntimeUnavailableError
from protocol import Record

MIN_MEMORY_GB = 0.1


def available_cores() -> int:
    if hasattr(os, "sched_getaffinity"):
        return max(1, len(os.sched_getaffinity(0)))
    return max(1, os.cpu_count() or 1)


def max_concurrent_containers(explicit_limit: Optional[int] = None, cores: Optional[int] = None) -> Record:
    """Concurrency bound: the CPU count, or a smaller positive explicit limit."""
    cores = max(1, cores or available_cores())
    limit = cores
    limited_by_cpu = False
    if explicit_limit is not None and explicit_limit > 0:
        if explicit_limit > cores:
            limited_by_cpu = True
        else:
            limit = explicit_limit
    return Record({
        "max_containers": max(1, limit),
        "available_cores": cores,
        "limited_by_cpu": limited_by_cpu,
    })


def total_memory_gb() -> Optional[float]:
    try:
        pages = os.sysconf("SC_PHYS_PAGES")
        page_size = os.sysconf("SC_PAGE_SIZE")
    except (ValueError, OSError, AttributeError):
        return None
    return pages * page_size / (1024 ** 3)


def memory_per_container_gb(total_gb: float, jobs: int, headroom: float = 0.2,
                            minimum: float = MIN_MEMORY_GB) -> float:
    """``total * (1 - headroom) / jobs``, never below ``minimum``."""
    if total_gb <= 0:
        raise ValueError(f"Invalid total memory: {total_gb}")
    if jobs <= 0:
        raise ValueError(f"Invalid parallel jobs: {jobs}")
    if not 0 <= headroom < 1:
        raise ValueError(f"Invalid memory headroom: {headroom} (must be 0.0-0.99)")
    per_container = round(total_gb * (1 - headroom) / jobs, 2)
    if per_container < minimum:
        logger.warning(f"Memory per container limited to minimum: {minimum}GB")
        return minimum
    return per_container


def check_environment(runtime_factory) -> object:
    """Verify the docker CLI is installed and the daemon answers.

    Returns the runtime built by ``runtime_factory``; raises
    ``RuntimeUnavailableError`` with remediation hints otherwise.
    """
    if shutil.which("docker") is None:
        raise RuntimeUnavailableError(
            "Docker is not installed or not on PATH",
            suggestions=["Install Docker: https://docs.docker.com/get-docker/"],
            error_code="DOCKER_NOT_INSTALLED",
        )
    return runtime_factory()
