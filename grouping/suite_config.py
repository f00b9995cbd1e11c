"""Reader for project-supplied suite declarations (``suitey.toml`` / ``.suiteyrc``).

The file is TOML; only the ``suites`` array of tables is read::

    [[suites]]
    name = "unit"
    files = ["tests/unit/**/*.rs"]
    platform = "rust"
    framework = "cargo"
    exclude = ["tests/unit/slow_*.rs"]
    parallel = true
    timeout = 300
    env = { RUST_LOG = "debug" }
"""

from __future__ import annotations

import fnmatch
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from errors import SuiteConfigError

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

CONFIG_FILENAMES = ("suitey.toml", ".suiteyrc")

_KNOWN_FIELDS = {"name", "files", "platform", "framework", "exclude", "parallel", "timeout", "env"}


@dataclass
class SuiteDefinition:
    """One ``[[suites]]`` table."""

    name: str
    files: List[str]
    platform: Optional[str] = None
    framework: Optional[str] = None
    exclude: List[str] = field(default_factory=list)
    parallel: bool = True
    timeout: Optional[int] = None
    env: Dict[str, str] = field(default_factory=dict)

    def applies_to(self, platform: Optional[str], framework: Optional[str]) -> bool:
        if self.platform and platform and self.platform != platform:
            return False
        if self.framework and framework and self.framework != framework:
            return False
        return True

    def resolve_files(self, project_root: Path) -> List[str]:
        """Expand the file globs relative to ``project_root``, minus excludes.

        Invalid patterns are skipped with a warning.
        """
        matched: List[str] = []
        seen = set()
        for pattern in self.files:
            try:
                candidates = sorted(project_root.glob(pattern))
            except (ValueError, NotImplementedError) as e:
                logger.warning(f"Skipping invalid file pattern '{pattern}' in suite '{self.name}': {e}")
                continue
            for path in candidates:
                if not path.is_file():
                    continue
                rel = path.relative_to(project_root).as_posix()
                if rel in seen or self._excluded(rel):
                    continue
                seen.add(rel)
                matched.append(rel)
        return matched

    def _excluded(self, rel_path: str) -> bool:
        return any(fnmatch.fnmatch(rel_path, pattern) for pattern in self.exclude)


def find_config_file(project_root: Path) -> Optional[Path]:
    for filename in CONFIG_FILENAMES:
        candidate = project_root / filename
        if candidate.is_file():
            return candidate
    return None


def _build_definition(raw: Dict[str, Any], index: int) -> SuiteDefinition:
    name = raw.get("name")
    files = raw.get("files")
    if not isinstance(name, str) or not name:
        raise SuiteConfigError(f"Suite #{index} is missing a name")
    if isinstance(files, str):
        files = [files]
    if not isinstance(files, list) or not files or not all(isinstance(f, str) for f in files):
        raise SuiteConfigError(f"Suite '{name}' must declare a non-empty list of file patterns")

    exclude = raw.get("exclude", [])
    if isinstance(exclude, str):
        exclude = [exclude]
    timeout = raw.get("timeout")
    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, int) or timeout <= 0):
        raise SuiteConfigError(f"Suite '{name}' has an invalid timeout: {timeout!r}")
    env = raw.get("env", {})
    if not isinstance(env, dict):
        raise SuiteConfigError(f"Suite '{name}' env must be a table")
    parallel = raw.get("parallel", True)
    if not isinstance(parallel, bool):
        raise SuiteConfigError(f"Suite '{name}' parallel must be true or false")

    return SuiteDefinition(
        name=name,
        files=files,
        platform=raw.get("platform"),
        framework=raw.get("framework"),
        exclude=[str(e) for e in exclude],
        parallel=parallel,
        timeout=timeout,
        env={str(k): str(v) for k, v in env.items()},
    )


def parse_suite_config(text: str) -> List[SuiteDefinition]:
    """Parse suite declarations, raising ``SuiteConfigError`` on anything unexpected."""
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise SuiteConfigError(f"Invalid TOML: {e}") from e

    tables = data.get("suites", [])
    if not isinstance(tables, list) or not all(isinstance(t, dict) for t in tables):
        raise SuiteConfigError("'suites' must be an array of tables ([[suites]])")

    definitions = []
    for index, raw in enumerate(tables):
        for key in set(raw) - _KNOWN_FIELDS:
            logger.debug(f"Ignoring unknown field '{key}' in suite #{index}")
        definitions.append(_build_definition(raw, index))
    return definitions


def load_suite_config(project_root: Path) -> Optional[List[SuiteDefinition]]:
    """Load declarations from the project, or ``None`` when absent or unusable."""
    config_file = find_config_file(project_root)
    if config_file is None:
        return None
    try:
        definitions = parse_suite_config(config_file.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, SuiteConfigError) as e:
        logger.warning(f"Ignoring suite configuration {config_file.name}: {e}")
        return None
    if not definitions:
        logger.warning(f"Suite configuration {config_file.name} declares no suites")
        return None
    logger.debug(f"Loaded {len(definitions)} suite definitions from {config_file.name}")
    return definitions
