"""Adaptive suite grouping.

When a module has no framework-specific notion of a suite, its test files are
split into suites by the first strategy in this chain that meets its own
criterion:

1. configuration  - ``suitey.toml`` / ``.suiteyrc`` declarations
2. convention     - ``unit``, ``integration``, ``e2e``, ``performance`` directories
3. subdirectory   - full relative directory path, for nested layouts
4. directory      - immediate parent directory name
5. file           - one suite per file
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from loguru import logger

from protocol import Record

from .suite_config import SuiteDefinition, load_suite_config

CONVENTIONAL_DIRECTORIES = {
    "unit": "unit",
    "units": "unit",
    "integration": "integration",
    "integrations": "integration",
    "e2e": "e2e",
    "end-to-end": "e2e",
    "end_to_end": "e2e",
    "performance": "performance",
    "perf": "performance",
}

ROOT_SUITE = "root"
DEFAULT_SUITE = "default"


class GroupingStrategy(str, Enum):
    CONFIGURATION = "configuration"
    CONVENTION = "convention"
    SUBDIRECTORY = "subdirectory"
    DIRECTORY = "directory"
    FILE = "file"


@dataclass
class GroupingResult:
    strategy: GroupingStrategy
    suites: Record


def _relative(project_root: Path, file: str) -> PurePosixPath:
    path = PurePosixPath(Path(file).as_posix())
    root = PurePosixPath(Path(project_root).as_posix())
    if path.is_absolute():
        try:
            return path.relative_to(root)
        except ValueError:
            return path
    return path


def _to_record(groups: Dict[str, List[str]]) -> Record:
    record = Record().set("suites_count", 0)
    for name, files in groups.items():
        record = record.append_item("suites", Record({"name": name}).replace_array("files", files))
    return record


def _collect(files: Iterable[str], key: Callable[[str], str]) -> Dict[str, List[str]]:
    groups: Dict[str, List[str]] = {}
    for file in files:
        groups.setdefault(key(file), []).append(file)
    return groups


def conventional_name(directory: PurePosixPath) -> Optional[str]:
    for part in directory.parts:
        if part in CONVENTIONAL_DIRECTORIES:
            return CONVENTIONAL_DIRECTORIES[part]
    return None


def group_by_convention(project_root: Path, files: Sequence[str]) -> Record:
    """Group by conventional directory segment.

    Returns an empty record unless at least one file sits under a conventional
    directory; the remaining files fall back to their parent directory name.
    """
    matched = False

    def key(file: str) -> str:
        nonlocal matched
        directory = _relative(project_root, file).parent
        name = conventional_name(directory)
        if name:
            matched = True
            return name
        return directory.name or DEFAULT_SUITE

    groups = _collect(files, key)
    return _to_record(groups) if matched else Record().set("suites_count", 0)


def group_by_subdirectory(project_root: Path, files: Sequence[str]) -> Record:
    """Group by the full relative directory, only for nested layouts.

    A file counts as nested when it sits at least two directories below the
    project root; a flat ``src/`` layout is left to directory grouping.
    """
    relative = [_relative(project_root, f) for f in files]
    if not any(len(r.parent.parts) > 1 for r in relative):
        return Record().set("suites_count", 0)

    def key(file: str) -> str:
        directory = _relative(project_root, file).parent
        if not directory.parts:
            return ROOT_SUITE
        return "_".join(directory.parts)

    return _to_record(_collect(files, key))


def group_by_directory(project_root: Path, files: Sequence[str]) -> Record:
    def key(file: str) -> str:
        return _relative(project_root, file).parent.name or ROOT_SUITE

    return _to_record(_collect(files, key))


def group_by_file(project_root: Path, files: Sequence[str]) -> Record:
    record = Record().set("suites_count", 0)
    for index, file in enumerate(files):
        name = PurePosixPath(Path(file).as_posix()).stem or f"test_{index}"
        record = record.append_item("suites", Record({"name": name}).replace_array("files", [file]))
    return record


def suites_from_definitions(
    project_root: Path,
    definitions: Sequence[SuiteDefinition],
    files: Sequence[str],
    platform: Optional[str] = None,
    framework: Optional[str] = None,
) -> Record:
    """Turn explicit declarations into a suites record.

    Declarations restricted to another platform or framework are skipped.
    Unrestricted declarations keep only files the caller discovered, so the
    same suite is not claimed by every platform.
    """
    candidates = {_relative(project_root, f).as_posix() for f in files}
    record = Record().set("suites_count", 0)
    for definition in definitions:
        if not definition.applies_to(platform, framework):
            continue
        resolved = definition.resolve_files(project_root)
        explicit = definition.platform is not None or definition.framework is not None
        if candidates and not explicit:
            resolved = [f for f in resolved if f in candidates]
        if not resolved:
            continue

        suite = (
            Record({"name": definition.name, "parallel": definition.parallel})
            .replace_array("files", resolved)
            .replace_array("patterns", definition.files)
            .replace_array("exclude", definition.exclude)
        )
        if definition.timeout:
            suite = suite.set("timeout", definition.timeout)
        for key, value in definition.env.items():
            suite = suite.append_to_array("environment", f"{key}={value}")
        record = record.append_item("suites", suite)
    return record


def configured_suites(
    project_root: Path,
    files: Sequence[str],
    platform: Optional[str] = None,
    framework: Optional[str] = None,
) -> Optional[Record]:
    """Suites from the project's declarations, or ``None`` to fall back."""
    definitions = load_suite_config(Path(project_root))
    if not definitions:
        return None
    suites = suites_from_definitions(Path(project_root), definitions, files, platform, framework)
    return suites if suites.array_count("suites") > 0 else None


STRATEGY_CHAIN = (
    (GroupingStrategy.CONVENTION, group_by_convention),
    (GroupingStrategy.SUBDIRECTORY, group_by_subdirectory),
    (GroupingStrategy.DIRECTORY, group_by_directory),
    (GroupingStrategy.FILE, group_by_file),
)


class AdaptiveGrouper:
    """Runs the strategy chain; the first strategy producing suites wins."""

    def group(
        self,
        project_root: Path,
        files: Sequence[str],
        platform: Optional[str] = None,
        framework: Optional[str] = None,
    ) -> GroupingResult:
        project_root = Path(project_root)

        suites = configured_suites(project_root, files, platform, framework)
        if suites is not None:
            logger.debug(f"Grouped {platform or 'tests'} by configuration: {suites.array_count('suites')} suites")
            return GroupingResult(GroupingStrategy.CONFIGURATION, suites)

        if not files:
            return GroupingResult(GroupingStrategy.FILE, Record().set("suites_count", 0))

        for strategy, func in STRATEGY_CHAIN:
            suites = func(project_root, files)
            if suites.array_count("suites") > 0:
                logger.debug(f"Grouped {len(files)} files by {strategy.value}: {suites.array_count('suites')} suites")
                return GroupingResult(strategy, suites)

        return GroupingResult(GroupingStrategy.FILE, Record().set("suites_count", 0))
