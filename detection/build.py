"""Build requirement aggregation across detected platforms."""

from pathlib import Path
from typing import List

from loguru import logger

from protocol import Record
from registry import ModuleRegistry

AGGREGATED_ARRAYS = ("build_commands", "build_dependencies", "build_artifacts")


class BuildRequirementResolver:
    """Merges per-platform build requirements and collects their build steps.

    Commands, dependencies and artifacts are appended in platform order and
    never de-duplicated. ``requires_build`` is true when any platform needs a
    build.
    """

    def __init__(self, registry: ModuleRegistry):
        self.registry = registry

    def resolve(self, platforms: Record) -> Record:
        project_root = Path(platforms.get("project_root", "."))
        result = Record({"requires_build": False}).set("build_requirements_count", 0)
        for name in AGGREGATED_ARRAYS:
            result = result.set(f"{name}_count", 0)
        warnings: List[str] = []

        for index, platform in enumerate(platforms.get_items("platforms")):
            module_id = platform.get("module_id", "")
            module = self.registry.find(module_id)
            if module is None:
                continue
            try:
                requirement = module.detect_build_requirements(project_root, platform)
            except Exception as e:
                warnings.append(f"Build detection by {module_id} failed: {e}")
                logger.warning(warnings[-1])
                continue
            if not isinstance(requirement, Record):
                warnings.append(f"Build detection by {module_id} returned malformed data")
                logger.warning(warnings[-1])
                continue

            requirement = requirement.merge(Record({
                "module_id": module_id,
                "language": platform.get("language", ""),
                "framework": requirement.get("framework") or platform.get("framework", ""),
                "platform_index": index,
            }))
            result = result.append_item("build_requirements", requirement)

            if requirement.get_bool("requires_build"):
                result = result.set("requires_build", True)
                for name in AGGREGATED_ARRAYS:
                    for value in requirement.get_array(name):
                        result = result.append_to_array(name, value)

        return result.replace_array("build_warnings", warnings)

    def build_steps(self, platforms: Record, requirements: Record) -> Record:
        """Collect every module's build steps with contiguous indices.

        Steps inherit the requirement's ``depends_on`` list when they do not
        declare their own. A platform that needs a build but yields no usable
        steps is reported under ``build_step_errors`` with its framework.
        """
        project_root = Path(platforms.get("project_root", "."))
        result = Record().set("build_steps_count", 0).set("build_step_errors_count", 0)

        for requirement in requirements.get_items("build_requirements"):
            if not requirement.get_bool("requires_build"):
                continue
            module_id = requirement.get("module_id", "")
            module = self.registry.find(module_id)
            if module is None:
                continue
            framework = requirement.get("framework", "")
            try:
                steps = module.get_build_steps(project_root, requirement)
            except Exception as e:
                result = _step_error(result, module_id, framework, f"Build step collection failed: {e}")
                continue
            if not isinstance(steps, Record):
                result = _step_error(result, module_id, framework,
                                     f"Build step collection returned {type(steps).__name__}, not a record")
                continue
            if steps.array_count("build_steps") == 0:
                result = _step_error(result, module_id, framework, "Build required but no build steps were defined")
                continue

            for step in steps.get_items("build_steps"):
                extra = Record({
                    "module_id": module_id,
                    "language": requirement.get("language", ""),
                    "framework": step.get("framework") or requirement.get("framework", ""),
                    "platform_index": requirement.get("platform_index", "0"),
                })
                if step.array_count("depends_on") == 0:
                    extra = extra.replace_array("depends_on", requirement.get_array("depends_on"))
                result = result.append_item("build_steps", step.merge(extra))

        return result


def _step_error(result: Record, module_id: str, framework: str, error: str) -> Record:
    logger.error(f"{module_id} ({framework or 'unknown framework'}): {error}")
    return result.append_item("build_step_errors", Record({
        "module_id": module_id,
        "framework": framework,
        "error": error.replace("\n", " "),
    }))
