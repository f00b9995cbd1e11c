"""Cargo framework module: unit and integration suites as cargo sees them."""

from pathlib import Path

from grouping import configured_suites
from protocol import Record

from ..base import ModuleType
from .rust import RustModule


class CargoModule(RustModule):
    identifier = "cargo-module"
    name = "cargo"
    module_type = ModuleType.FRAMEWORK

    def detect(self, project_root: Path) -> Record:
        root = Path(project_root)
        if root.is_dir() and (root / "Cargo.toml").is_file():
            return self.detected(self.language, "high", ["Cargo.toml"], self.frameworks)
        return self.not_detected(self.language, self.frameworks)

    def discover_test_suites(self, project_root: Path, platform: Record) -> Record:
        files = self.test_files(project_root)
        declared = configured_suites(project_root, files, platform=self.language, framework=self.name)
        if declared is not None:
            return self.finalize_suites(project_root, declared, self.name).set("grouping_strategy", "configuration")

        unit = [f for f in files if f.startswith("src/")]
        # cargo builds one integration target per top-level file in tests/
        integration = [f for f in files if f.startswith("tests/") and f.count("/") == 1]
        if not unit and not integration:
            return super().discover_test_suites(project_root, platform)

        suites = Record().set("suites_count", 0)
        if unit:
            suites = suites.append_item("suites", Record({"name": "unit_tests"}).replace_array("files", unit))
        if integration:
            suites = suites.append_item(
                "suites", Record({"name": "integration_tests"}).replace_array("files", integration)
            )
        return self.finalize_suites(project_root, suites, self.name).set("grouping_strategy", "framework")
