"""Bats framework module."""

from pathlib import Path
from typing import List

from protocol import Record

from ..base import ModuleType
from .bash import BashModule

TEST_DIRECTORIES = ("tests/bats", "test/bats", "tests", "test")


class BatsModule(BashModule):
    identifier = "bats-module"
    name = "bats"
    module_type = ModuleType.FRAMEWORK

    def detect(self, project_root: Path) -> Record:
        root = Path(project_root)
        if not root.is_dir():
            return self.not_detected(self.language, self.frameworks)
        if self.find_files(root, ".bats", max_depth=3):
            return self.detected(self.language, "high", ["bats_files"], self.frameworks)
        for candidate in ("tests/bats", "test/bats"):
            if (root / candidate).is_dir():
                return self.detected(self.language, "medium", [candidate], self.frameworks)
        return self.not_detected(self.language, self.frameworks)

    def test_files(self, project_root: Path) -> List[str]:
        root = Path(project_root)
        for candidate in TEST_DIRECTORIES:
            files = self.find_files(root, ".bats", under=root / candidate)
            if files:
                return files
        return self.find_files(root, ".bats")
