"""Rust language module."""

import re
from pathlib import Path, PurePosixPath
from typing import List

from grouping import AdaptiveGrouper
from protocol import Record

from ..base import CommandRunner, Module, ModuleType

RUST_IMAGE = "rust:1.70-slim"
BUILD_COMMAND = "cargo build --tests"
FETCH_COMMAND = "cargo fetch"

_RESULT_LINE = re.compile(
    r"test result: (?P<state>ok|FAILED)\. (?P<passed>\d+) passed; (?P<failed>\d+) failed; (?P<ignored>\d+) ignored"
)


class RustModule(Module):
    identifier = "rust-module"
    name = "rust"
    module_type = ModuleType.LANGUAGE
    language = "rust"
    frameworks = ("cargo",)
    capabilities = ("testing", "compilation")
    required_binaries = ("cargo",)
    test_image = RUST_IMAGE

    def detect(self, project_root: Path) -> Record:
        root = Path(project_root)
        if not root.is_dir():
            return self.not_detected(self.language, self.frameworks)
        if (root / "Cargo.toml").is_file():
            return self.detected(self.language, "high", ["Cargo.toml"], self.frameworks)
        if (root / "Cargo.lock").is_file():
            return self.detected(self.language, "medium", ["Cargo.lock"], self.frameworks)
        if self.find_files(root, ".rs", max_depth=2):
            return self.detected(self.language, "low", ["rust_source_files"], self.frameworks)
        return self.not_detected(self.language, self.frameworks)

    def test_files(self, project_root: Path) -> List[str]:
        """Integration tests under ``tests/`` plus sources carrying a test module."""
        root = Path(project_root)
        files = self.find_files(root, ".rs", under=root / "tests")
        for rel in self.find_files(root, ".rs"):
            if rel.startswith("tests/") or rel in files:
                continue
            try:
                text = (root / rel).read_text(encoding="utf-8", errors="replace")
            except OSError:
                continue
            if "#[test]" in text:
                files.append(rel)
        return sorted(files)

    def discover_test_suites(self, project_root: Path, platform: Record) -> Record:
        files = self.test_files(project_root)
        grouped = AdaptiveGrouper().group(
            project_root, files, platform=self.language, framework=platform.get("framework")
        )
        return self.finalize_suites(project_root, grouped.suites).set("grouping_strategy", grouped.strategy.value)

    def detect_build_requirements(self, project_root: Path, platform: Record) -> Record:
        return (
            Record({"requires_build": True, "framework": "cargo"})
            .replace_array("build_commands", [BUILD_COMMAND])
            .replace_array("build_dependencies", ["cargo"])
            .replace_array("build_artifacts", ["target"])
            .replace_array("depends_on", [])
        )

    def get_build_steps(self, project_root: Path, requirements: Record) -> Record:
        if not requirements.get_bool("requires_build"):
            return Record().set("build_steps_count", 0)

        step = (
            Record({
                "step_name": "rust_build",
                "framework": "cargo",
                "docker_image": RUST_IMAGE,
                "install_dependencies_command": FETCH_COMMAND,
                "build_command": BUILD_COMMAND,
                "cpu_cores": 0,
            })
            .replace_array("volume_mounts", [])
            # The project mount is read-only, so cargo writes into the artifact mount
            .replace_array("environment", ["CARGO_TARGET_DIR=${SUITEY_ARTIFACT_DIR}/target"])
            .replace_array("artifacts", ["target"])
            .replace_array("depends_on", requirements.get_array("depends_on"))
        )
        return Record().set("build_steps_count", 0).append_item("build_steps", step)

    def test_command(self, suite: Record) -> str:
        targets = []
        for rel in suite.get_array("files"):
            path = PurePosixPath(rel)
            if path.parts and path.parts[0] == "tests":
                targets.append(f"--test {path.stem}")
            elif "--lib" not in targets:
                targets.append("--lib")
        return " ".join(["cargo test"] + targets)

    def execute_test_suite(self, suite: Record, test_image: str, run: CommandRunner) -> Record:
        return self.run_and_record(run, self.test_command(suite))

    def parse_test_results(self, output: str, exit_code: int) -> Record:
        passed = failed = ignored = 0
        for match in _RESULT_LINE.finditer(output or ""):
            passed += int(match.group("passed"))
            failed += int(match.group("failed"))
            ignored += int(match.group("ignored"))
        status = "passed" if exit_code == 0 and failed == 0 else "failed"
        return Record({
            "total_tests": passed + failed + ignored,
            "passed_tests": passed,
            "failed_tests": failed,
            "skipped_tests": ignored,
            "status": status,
        })
