"""Test execution and the status buffers the presentation layer reads."""

from .executor import TestExecutor, write_atomic
from .status import RunStatus, StatusBoard, StatusBuffer, StatusKind, StatusUpdate, TERMINAL_STATUSES

__all__ = [
    "RunStatus",
    "StatusBoard",
    "StatusBuffer",
    "StatusKind",
    "StatusUpdate",
    "TERMINAL_STATUSES",
    "TestExecutor",
    "write_atomic",
]
