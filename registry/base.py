"""Module contract shared by every language, framework and project backend."""

import os
import shutil
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from protocol import Record


class ModuleType(str, Enum):
    """Kinds of module, in ascending precedence."""

    LANGUAGE = "language"
    FRAMEWORK = "framework"
    PROJECT = "project"


DEFAULT_PRIORITIES = {
    ModuleType.LANGUAGE: 0,
    ModuleType.FRAMEWORK: 1,
    ModuleType.PROJECT: 2,
}

REQUIRED_METHODS = (
    "detect",
    "check_container_environment",
    "discover_test_suites",
    "detect_build_requirements",
    "get_build_steps",
    "execute_test_suite",
    "parse_test_results",
    "get_metadata",
)

# Runs a shell command inside the suite's test container and returns a dict
# with exit_code, stdout, stderr and duration.
CommandRunner = Callable[[str], Dict[str, object]]

SKIPPED_DIRECTORIES = {".git", "target", "node_modules", ".venv", "__pycache__", "build", "dist"}


class Module(ABC):
    """Base class for built-in and project-local modules.

    Subclasses are stateless: every method is a function of its arguments so a
    single registered instance can be called from several worker threads.
    """

    identifier: str = ""
    name: str = ""
    module_type: ModuleType = ModuleType.LANGUAGE
    language: str = ""
    frameworks: Tuple[str, ...] = ()
    capabilities: Tuple[str, ...] = ("testing",)
    required_binaries: Tuple[str, ...] = ()
    priority: Optional[int] = None
    version: str = "0.1.0"
    test_image: str = "ubuntu:22.04"

    @property
    def effective_priority(self) -> int:
        if self.priority is not None:
            return self.priority
        return DEFAULT_PRIORITIES[ModuleType(self.module_type)]

    @property
    def path(self) -> str:
        return f"{ModuleType(self.module_type).value}/{self.name}"

    @abstractmethod
    def detect(self, project_root: Path) -> Record:
        """Return ``detected``, ``confidence``, ``indicators`` and ``language``."""

    def check_container_environment(self, project_root: Path, platform: Record) -> Record:
        """Report the binaries the test image must provide.

        Tests run inside containers, so a missing host binary is informational.
        """
        record = Record({
            "available": True,
            "container_check": True,
            "image": self.test_image,
        }).replace_array("binaries", self.required_binaries)
        for binary in self.required_binaries:
            record = record.set(f"host_binary_{binary}", shutil.which(binary) is not None)
        return record

    @abstractmethod
    def discover_test_suites(self, project_root: Path, platform: Record) -> Record:
        """Return a ``suites`` array of structured items."""

    @abstractmethod
    def detect_build_requirements(self, project_root: Path, platform: Record) -> Record:
        """Return ``requires_build`` plus command, dependency and artifact arrays."""

    @abstractmethod
    def get_build_steps(self, project_root: Path, requirements: Record) -> Record:
        """Return a ``build_steps`` array of structured items."""

    @abstractmethod
    def execute_test_suite(self, suite: Record, test_image: str, run: CommandRunner) -> Record:
        """Run ``suite`` through ``run`` and return exit code, duration and output."""

    @abstractmethod
    def parse_test_results(self, output: str, exit_code: int) -> Record:
        """Return test totals and an overall ``status``."""

    def get_metadata(self) -> Record:
        return (
            Record({
                "module_type": ModuleType(self.module_type).value,
                "identifier": self.identifier,
                "language": self.language,
                "version": self.version,
                "priority": self.effective_priority,
            })
            .replace_array("frameworks", self.frameworks)
            .replace_array("capabilities", self.capabilities)
            .replace_array("required_binaries", self.required_binaries)
        )

    # Shared helpers for subclasses

    @staticmethod
    def not_detected(language: str, frameworks: Iterable[str] = ()) -> Record:
        return (
            Record({"detected": False, "confidence": "low", "language": language})
            .replace_array("indicators", [])
            .replace_array("frameworks", list(frameworks))
        )

    @staticmethod
    def detected(language: str, confidence: str, indicators: Iterable[str], frameworks: Iterable[str] = ()) -> Record:
        return (
            Record({"detected": True, "confidence": confidence, "language": language})
            .replace_array("indicators", list(indicators))
            .replace_array("frameworks", list(frameworks))
        )

    @staticmethod
    def find_files(project_root: Path, suffix: str, max_depth: Optional[int] = None,
                   under: Optional[Path] = None) -> List[str]:
        """Relative POSIX paths of files ending in ``suffix``, sorted."""
        base = Path(under or project_root)
        if not base.is_dir():
            return []
        found = []
        base_depth = len(base.parts)
        for dirpath, dirnames, filenames in os.walk(base):
            depth = len(Path(dirpath).parts) - base_depth
            dirnames[:] = sorted(d for d in dirnames if d not in SKIPPED_DIRECTORIES)
            if max_depth is not None and depth + 1 >= max_depth:
                dirnames[:] = []
            for filename in filenames:
                if filename.endswith(suffix):
                    found.append((Path(dirpath) / filename).relative_to(project_root).as_posix())
        return sorted(found)

    def finalize_suites(self, project_root: Path, suites: Record, framework: Optional[str] = None) -> Record:
        """Stamp ownership and static test counts onto every suite item."""
        from detection.counting import count_tests_in_files

        result = Record().set("suites_count", 0)
        for item in suites.get_items("suites"):
            item = item.merge(Record({
                "language": self.language,
                "framework": framework or (self.frameworks[0] if self.frameworks else ""),
                "module_id": self.identifier,
                "test_count": count_tests_in_files(project_root, item.get_array("files")),
            }))
            result = result.append_item("suites", item)
        return result

    @staticmethod
    def run_and_record(run: CommandRunner, command: str) -> Record:
        """Run ``command`` and describe the outcome as an execution record."""
        from protocol import escape_sentinel

        outcome = run(command)
        return Record({
            "test_command": command,
            "exit_code": outcome.get("exit_code", 1),
            "duration": f"{float(outcome.get('duration', 0.0)):.2f}",
            "execution_method": "docker",
            "stdout": escape_sentinel(str(outcome.get("stdout", "") or "")),
            "stderr": escape_sentinel(str(outcome.get("stderr", "") or "")),
        })

    @staticmethod
    def no_build() -> Record:
        return (
            Record({"requires_build": False})
            .replace_array("build_commands", [])
            .replace_array("build_dependencies", [])
            .replace_array("build_artifacts", [])
            .replace_array("depends_on", [])
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.identifier} ({self.path})>"
