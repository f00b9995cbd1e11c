"""Test suite discovery for every detected platform."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Set

from loguru import logger

from protocol import Record
from registry import ModuleRegistry


@dataclass
class Suite:
    """Read-only view of one ``suites_<i>`` item."""

    name: str
    platform: str
    framework: str
    module_id: str
    files: List[str] = field(default_factory=list)
    test_count: int = 0

    @classmethod
    def from_record(cls, item: Record) -> "Suite":
        return cls(
            name=item.get("name", ""),
            platform=item.get("platform", item.get("language", "")),
            framework=item.get("framework", ""),
            module_id=item.get("module_id", ""),
            files=item.get_array("files"),
            test_count=item.get_int("test_count"),
        )


def suites_from_record(record: Record) -> List[Suite]:
    return [Suite.from_record(item) for item in record.get_items("suites")]


def _unique_name(name: str, prefix: str, taken: Set[str]) -> str:
    if name not in taken:
        return name
    candidate = f"{prefix}-{name}" if prefix else name
    counter = 2
    base = candidate
    while candidate in taken:
        candidate = f"{base}-{counter}"
        counter += 1
    return candidate


class TestSuiteDetector:
    """Invokes the owning module of each platform and merges the suites.

    Suite indices are contiguous across platforms. A platform whose probe fails
    simply contributes no suites.
    """

    __test__ = False

    def __init__(self, registry: ModuleRegistry):
        self.registry = registry

    def discover(self, platforms: Record) -> Record:
        project_root = Path(platforms.get("project_root", "."))
        result = Record().set("suites_count", 0)
        warnings: List[str] = []
        taken: Set[str] = set()

        for index, platform in enumerate(platforms.get_items("platforms")):
            module_id = platform.get("module_id", "")
            module = self.registry.find(module_id)
            if module is None:
                warnings.append(f"No module '{module_id}' for platform {platform.get('language')}")
                logger.warning(warnings[-1])
                continue

            try:
                discovered = module.discover_test_suites(Path(platform.get("project_root", project_root)), platform)
            except Exception as e:
                warnings.append(f"Suite discovery by {module_id} failed: {e}")
                logger.warning(warnings[-1])
                continue
            if not isinstance(discovered, Record):
                warnings.append(f"Suite discovery by {module_id} returned malformed data")
                logger.warning(warnings[-1])
                continue

            for suite in discovered.get_items("suites"):
                name = _unique_name(suite.get("name") or "suite", platform.get("framework") or platform.get("language"), taken)
                taken.add(name)
                suite = suite.merge(Record({
                    "name": name,
                    "platform": platform.get("language", ""),
                    "framework": suite.get("framework") or platform.get("framework", ""),
                    "module_id": module_id,
                    "platform_index": index,
                }))
                result = result.append_item("suites", suite)

            logger.info(f"{module_id}: {discovered.array_count('suites')} suites "
                        f"({discovered.get('grouping_strategy', 'module')} grouping)")

        return result.replace_array("suite_warnings", warnings)
