"""Static test counting for suite summaries."""

import re
from pathlib import Path
from typing import Iterable

from loguru import logger

_BATS_TEST = re.compile(r"^\s*@test\b")
_RUST_TEST = re.compile(r"^\s*#\[test\]")
_RUST_CFG_TEST = re.compile(r"^\s*#\[cfg\(test\)\]")


def _read_lines(path: Path):
    try:
        return path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError as e:
        logger.debug(f"Cannot read {path} for test counting: {e}")
        return []


def count_bats_tests(path: Path) -> int:
    return sum(1 for line in _read_lines(path) if _BATS_TEST.match(line))


def count_rust_tests(path: Path, integration: bool = False) -> int:
    """Count ``#[test]`` functions.

    Integration test files count every test; other sources only count tests
    after a ``#[cfg(test)]`` marker.
    """
    in_test_module = integration
    count = 0
    for line in _read_lines(path):
        if _RUST_CFG_TEST.match(line):
            in_test_module = True
        elif in_test_module and _RUST_TEST.match(line):
            count += 1
    return count


def count_tests_in_file(project_root: Path, rel_path: str) -> int:
    path = Path(project_root) / rel_path
    if rel_path.endswith(".bats"):
        return count_bats_tests(path)
    if rel_path.endswith(".rs"):
        return count_rust_tests(path, integration=rel_path.startswith("tests/"))
    return 0


def count_tests_in_files(project_root: Path, files: Iterable[str]) -> int:
    return sum(count_tests_in_file(project_root, f) for f in files)
