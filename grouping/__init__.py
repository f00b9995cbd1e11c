"""Suite grouping: explicit configuration and adaptive fallbacks."""

from .grouper import (
    AdaptiveGrouper,
    GroupingResult,
    GroupingStrategy,
    configured_suites,
    group_by_convention,
    group_by_directory,
    group_by_file,
    group_by_subdirectory,
)
from .suite_config import SuiteDefinition, load_suite_config, parse_suite_config

__all__ = [
    "AdaptiveGrouper",
    "GroupingResult",
    "GroupingStrategy",
    "SuiteDefinition",
    "configured_suites",
    "group_by_convention",
    "group_by_directory",
    "group_by_file",
    "group_by_subdirectory",
    "load_suite_config",
    "parse_suite_config",
]
