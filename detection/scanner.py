"""Project scanner: platform, suite and build detection in sequence."""

from enum import Enum
from pathlib import Path
from typing import Optional

from loguru import logger

from protocol import Record
from registry import ModuleRegistry

from .build import BuildRequirementResolver
from .platform import PlatformDetector
from .suites import TestSuiteDetector


class ScanPhase(str, Enum):
    PENDING = "pending"
    VALIDATION = "validation"
    PLATFORM_DETECTION = "platform_detection"
    TEST_SUITE_DETECTION = "test_suite_detection"
    BUILD_REQUIREMENTS = "build_requirements"
    BUILD_STEPS = "build_steps"
    COMPLETE = "complete"


_PHASE_ORDER = list(ScanPhase)


class ProjectScanner:
    """Sequences detection phases with no re-entry.

    A failing phase marks the scan ``partial`` and later phases continue from
    safe defaults. Zero platforms is a successful scan with no suites.
    """

    def __init__(self, registry: ModuleRegistry, max_workers: int = 4):
        self.registry = registry
        self.platform_detector = PlatformDetector(registry, max_workers=max_workers)
        self.suite_detector = TestSuiteDetector(registry)
        self.build_resolver = BuildRequirementResolver(registry)
        self.phase = ScanPhase.PENDING

    def _advance(self, phase: ScanPhase) -> None:
        if _PHASE_ORDER.index(phase) <= _PHASE_ORDER.index(self.phase):
            raise RuntimeError(f"Scan phase {phase.value} cannot follow {self.phase.value}")
        self.phase = phase

    def scan(self, project_root: Path) -> Record:
        self.phase = ScanPhase.PENDING
        self._advance(ScanPhase.VALIDATION)

        root = Path(project_root)
        if not root.exists() or not root.is_dir():
            logger.error(f"Project root is not a directory: {root}")
            return Record({
                "scan_result": "error",
                "project_root": str(root),
                "error_message": f"Project root is not a directory: {root}",
                "validation_status": "failed",
            })
        root = root.resolve()

        result = Record({"scan_result": "success", "project_root": str(root), "validation_status": "success"})
        partial = False

        platforms, error = self._run_phase(
            ScanPhase.PLATFORM_DETECTION, lambda: self.platform_detector.detect(root)
        )
        if platforms is None:
            partial = True
            platforms = Record({"project_root": str(root)}).set("platforms_count", 0)
        result = result.merge(platforms).merge(self._status(ScanPhase.PLATFORM_DETECTION, error))

        suites, error = self._run_phase(
            ScanPhase.TEST_SUITE_DETECTION, lambda: self.suite_detector.discover(platforms)
        )
        if suites is None:
            partial = True
            suites = Record().set("suites_count", 0)
        result = result.merge(suites).merge(self._status(ScanPhase.TEST_SUITE_DETECTION, error))

        requirements, error = self._run_phase(
            ScanPhase.BUILD_REQUIREMENTS, lambda: self.build_resolver.resolve(platforms)
        )
        if requirements is None:
            partial = True
            requirements = Record({"requires_build": False}).set("build_requirements_count", 0)
        result = result.merge(requirements).merge(self._status(ScanPhase.BUILD_REQUIREMENTS, error))

        steps, error = self._run_phase(
            ScanPhase.BUILD_STEPS, lambda: self.build_resolver.build_steps(platforms, requirements)
        )
        if steps is None:
            partial = True
            steps = Record().set("build_steps_count", 0)
        result = result.merge(steps).merge(self._status(ScanPhase.BUILD_STEPS, error))

        self._advance(ScanPhase.COMPLETE)

        result = result.merge(Record({
            "scan_result": "partial" if partial else "success",
            "summary_platforms_detected": platforms.array_count("platforms"),
            "summary_test_suites_found": suites.array_count("suites"),
            "summary_build_required": requirements.get_bool("requires_build"),
            "summary_build_steps_defined": steps.array_count("build_steps"),
        }))
        logger.info(
            f"Scan of {root.name}: {platforms.array_count('platforms')} platforms, "
            f"{suites.array_count('suites')} suites, build required: {requirements.get_bool('requires_build')}"
        )
        return result

    def _run_phase(self, phase: ScanPhase, func):
        self._advance(phase)
        try:
            return func(), None
        except Exception as e:
            logger.error(f"Scan phase {phase.value} failed: {e}")
            return None, str(e)

    @staticmethod
    def _status(phase: ScanPhase, error: Optional[str]) -> Record:
        record = Record({f"{phase.value}_status": "failed" if error else "success"})
        if error:
            record = record.set(f"{phase.value}_error", error.replace("\n", " "))
        return record
