"""Module registry and the built-in modules."""

from .base import DEFAULT_PRIORITIES, REQUIRED_METHODS, CommandRunner, Module, ModuleType
from .registry import ModuleRegistry

__all__ = [
    "CommandRunner",
    "DEFAULT_PRIORITIES",
    "Module",
    "ModuleRegistry",
    "ModuleType",
    "REQUIRED_METHODS",
]
