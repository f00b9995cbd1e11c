"""Platform detection across every registered module."""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from loguru import logger

from config import create_verbose_logger
from protocol import Record
from registry import ModuleRegistry, ModuleType

CONFIDENCE_LEVELS = ("high", "medium", "low")


@dataclass
class Platform:
    """Read-only view of one ``platforms_<i>`` item."""

    language: str
    framework: str
    confidence: str
    module_id: str
    module_type: str
    indicators: List[str] = field(default_factory=list)

    @classmethod
    def from_record(cls, item: Record) -> "Platform":
        return cls(
            language=item.get("language", ""),
            framework=item.get("framework", ""),
            confidence=item.get("confidence", "low"),
            module_id=item.get("module_id", ""),
            module_type=item.get("module_type", ""),
            indicators=item.get_array("indicators"),
        )


def platforms_from_record(record: Record) -> List[Platform]:
    return [Platform.from_record(item) for item in record.get_items("platforms")]


class PlatformDetector:
    """Runs every module's ``detect`` probe and resolves one owner per language.

    Probes run concurrently; results are folded in registration order so the
    output does not depend on thread scheduling. A probe that raises or returns
    something other than a record is skipped with a warning.
    """

    def __init__(self, registry: ModuleRegistry, max_workers: int = 4):
        self.registry = registry
        self.max_workers = max(1, max_workers)

    def _probe(self, module, project_root: Path) -> Optional[Record]:
        try:
            result = module.detect(project_root)
        except Exception as e:
            logger.warning(f"Detection by {module.identifier} failed, skipping: {e}")
            return None
        if not isinstance(result, Record):
            logger.warning(f"Detection by {module.identifier} returned malformed data, skipping")
            return None
        create_verbose_logger("detection").debug(
            f"{module.identifier}: detected={result.get('detected')} confidence={result.get('confidence')}"
        )
        return result

    def _check_environment(self, module, project_root: Path, platform: Record) -> Record:
        try:
            check = module.check_container_environment(project_root, platform)
        except Exception as e:
            logger.warning(f"Environment check by {module.identifier} failed: {e}")
            return Record({"environment_available": False})
        if not isinstance(check, Record):
            return Record({"environment_available": False})
        return Record({
            "environment_available": check.get_bool("available"),
            "image": check.get("image", getattr(module, "test_image", "")),
        }).replace_array("binaries", check.get_array("binaries"))

    def detect(self, project_root: Path) -> Record:
        project_root = Path(project_root)
        modules = self.registry.modules()

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="detect") as pool:
            futures = [(module, pool.submit(self._probe, module, project_root)) for module in modules]
            outcomes = [(module, future.result()) for module, future in futures]

        claims: Dict[str, List[Tuple[object, Record]]] = {}
        for module, detection in outcomes:
            if detection is None or not detection.get_bool("detected"):
                continue
            language = detection.get("language") or getattr(module, "language", "")
            if not language:
                logger.warning(f"Detection by {module.identifier} named no language, skipping")
                continue
            claims.setdefault(language, []).append((module, detection))

        record = Record({"project_root": str(project_root)}).set("platforms_count", 0)
        warnings: List[str] = []

        for language, candidates in claims.items():
            owner, warning = self.registry.resolve_owner([m for m, _ in candidates])
            if warning:
                logger.warning(f"Platform {language}: {warning}")
                warnings.append(f"{language}: {warning}")
            detection = next(d for m, d in candidates if m is owner)

            confidence = detection.get("confidence", "low")
            if confidence not in CONFIDENCE_LEVELS:
                confidence = "low"
            frameworks = detection.get_array("frameworks") or list(getattr(owner, "frameworks", ()))

            platform = (
                Record({
                    "language": language,
                    "framework": frameworks[0] if frameworks else "",
                    "confidence": confidence,
                    "module_id": owner.identifier,
                    "module_type": ModuleType(owner.module_type).value,
                    "project_root": str(project_root),
                })
                .replace_array("indicators", detection.get_array("indicators"))
                .replace_array("candidates", [m.identifier for m, _ in candidates])
            )
            platform = platform.merge(self._check_environment(owner, project_root, platform))
            record = record.append_item("platforms", platform)
            logger.info(f"Detected {language} ({platform.get('framework') or 'no framework'}, "
                        f"{confidence} confidence) via {owner.identifier}")

        return record.replace_array("platform_warnings", warnings)
