"""Bash language module; tests are bats files."""

import re
import shlex
from pathlib import Path
from typing import List

from grouping import AdaptiveGrouper
from protocol import Record

from ..base import CommandRunner, Module, ModuleType

BATS_IMAGE = "bats/bats:latest"

_TAP_PLAN = re.compile(r"^1\.\.(\d+)")
_TAP_OK = re.compile(r"^ok \d+")
_TAP_NOT_OK = re.compile(r"^not ok \d+")
_TAP_SKIP = re.compile(r"#\s*skip", re.IGNORECASE)


class BashModule(Module):
    identifier = "bash-module"
    name = "bash"
    module_type = ModuleType.LANGUAGE
    language = "bash"
    frameworks = ("bats",)
    capabilities = ("testing",)
    required_binaries = ("bats",)
    test_image = BATS_IMAGE

    def detect(self, project_root: Path) -> Record:
        root = Path(project_root)
        if not root.is_dir():
            return self.not_detected(self.language, self.frameworks)
        if self.find_files(root, ".bats"):
            return self.detected(self.language, "high", ["bats_files"], self.frameworks)
        for candidate in ("tests/bats", "test/bats"):
            if (root / candidate).is_dir():
                return self.detected(self.language, "medium", [candidate], self.frameworks)
        if self.find_files(root, ".sh"):
            return self.detected(self.language, "low", ["shell_scripts"], self.frameworks)
        return self.not_detected(self.language, self.frameworks)

    def test_files(self, project_root: Path) -> List[str]:
        return self.find_files(Path(project_root), ".bats")

    def discover_test_suites(self, project_root: Path, platform: Record) -> Record:
        files = self.test_files(project_root)
        grouped = AdaptiveGrouper().group(
            project_root, files, platform=self.language, framework=platform.get("framework")
        )
        return self.finalize_suites(project_root, grouped.suites).set("grouping_strategy", grouped.strategy.value)

    def detect_build_requirements(self, project_root: Path, platform: Record) -> Record:
        return self.no_build()

    def get_build_steps(self, project_root: Path, requirements: Record) -> Record:
        return Record().set("build_steps_count", 0)

    def execute_test_suite(self, suite: Record, test_image: str, run: CommandRunner) -> Record:
        files = " ".join(shlex.quote(f) for f in suite.get_array("files"))
        return self.run_and_record(run, f"bats --tap {files}".strip())

    def parse_test_results(self, output: str, exit_code: int) -> Record:
        planned = passed = failed = skipped = 0
        for line in (output or "").splitlines():
            line = line.strip()
            plan = _TAP_PLAN.match(line)
            if plan:
                planned = int(plan.group(1))
            elif _TAP_NOT_OK.match(line):
                failed += 1
            elif _TAP_OK.match(line):
                if _TAP_SKIP.search(line):
                    skipped += 1
                else:
                    passed += 1
        total = max(planned, passed + failed + skipped)
        status = "passed" if exit_code == 0 and failed == 0 else "failed"
        return Record({
            "total_tests": total,
            "passed_tests": passed,
            "failed_tests": failed,
            "skipped_tests": skipped,
            "status": status,
        })
