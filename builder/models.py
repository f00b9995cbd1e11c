"""Typed views over build step records and build outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from execution.status import RunStatus
from protocol import Record


@dataclass
class BuildStep:
    """One container launch: install dependencies, then build."""

    name: str
    framework: str
    docker_image: str
    build_command: str
    install_dependencies_command: str = ""
    working_directory: str = ""
    language: str = ""
    module_id: str = ""
    cpu_cores: float = 0
    volume_mounts: List[str] = field(default_factory=list)
    environment: List[str] = field(default_factory=list)
    artifacts: List[str] = field(default_factory=list)
    depends_on: List[str] = field(default_factory=list)

    @classmethod
    def from_record(cls, item: Record, index: int = 0) -> "BuildStep":
        try:
            cpu_cores = float(item.get("cpu_cores", "0") or 0)
        except ValueError:
            cpu_cores = 0
        framework = item.get("framework", "")
        return cls(
            name=item.get("step_name") or f"{framework or 'build'}_{index}",
            framework=framework,
            docker_image=item.get("docker_image", ""),
            build_command=item.get("build_command", ""),
            install_dependencies_command=item.get("install_dependencies_command", ""),
            working_directory=item.get("working_directory", ""),
            language=item.get("language", ""),
            module_id=item.get("module_id", ""),
            cpu_cores=cpu_cores,
            volume_mounts=item.get_array("volume_mounts"),
            environment=item.get_array("environment"),
            artifacts=item.get_array("artifacts"),
            depends_on=item.get_array("depends_on"),
        )

    @property
    def command(self) -> str:
        """Install then build, sequentially, in one shell."""
        parts = [c for c in (self.install_dependencies_command, self.build_command) if c]
        return " && ".join(parts)

    def environment_dict(self) -> Dict[str, str]:
        env = {}
        for entry in self.environment:
            key, sep, value = entry.partition("=")
            if sep and key:
                env[key] = value
        return env


@dataclass
class PackagedImage:
    tag: str
    framework: str
    artifacts: List[str] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)
    tests: List[str] = field(default_factory=list)


@dataclass
class StepOutcome:
    step: BuildStep
    status: RunStatus
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    image: Optional[PackagedImage] = None
    error: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.BUILT


@dataclass
class BuildReport:
    tiers: List[List[str]] = field(default_factory=list)
    outcomes: List[StepOutcome] = field(default_factory=list)
    interrupted: bool = False

    @property
    def success(self) -> bool:
        return not self.interrupted and all(o.succeeded for o in self.outcomes)

    @property
    def failed(self) -> List[StepOutcome]:
        return [o for o in self.outcomes if o.status == RunStatus.BUILD_FAILED]

    def images(self) -> Dict[str, str]:
        """Built test image tag keyed by framework, and by language when unambiguous."""
        images: Dict[str, str] = {}
        for outcome in self.outcomes:
            if outcome.image is None:
                continue
            images[outcome.step.framework] = outcome.image.tag
            if outcome.step.language:
                images.setdefault(outcome.step.language, outcome.image.tag)
        return images

    def to_record(self) -> Record:
        record = Record({"build_status": "built" if self.success else "build-failed",
                         "interrupted": self.interrupted}).set("tiers_count", 0)
        for tier in self.tiers:
            record = record.append_item("tiers", Record().replace_array("steps", tier))
        record = record.set("steps_count", 0)
        for outcome in self.outcomes:
            record = record.append_item("steps", Record({
                "name": outcome.step.name,
                "framework": outcome.step.framework,
                "status": outcome.status.value,
                "exit_code": "" if outcome.exit_code is None else outcome.exit_code,
                "duration": f"{outcome.duration:.2f}",
                "image": outcome.image.tag if outcome.image else "",
                "error": outcome.error.replace("\n", " "),
            }))
        return record
