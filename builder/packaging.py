"""Test image assembly and verification."""

import shlex
import shutil
from pathlib import Path
from typing import Iterable, List

from loguru import logger

from errors import ImageVerificationError
from protocol import Record

from .models import BuildStep, PackagedImage

IGNORED_SOURCE_ENTRIES = (".git", "node_modules", ".venv", "__pycache__")
SOURCE_SAMPLE_SIZE = 5
TEST_SAMPLE_SIZE = 50

DOCKERFILE_TEMPLATE = """FROM {base_image}
LABEL {prefix}.framework="{framework}" {prefix}.step="{step}"
WORKDIR {workdir}
COPY artifacts/ {workdir}/
COPY source/ {workdir}/
COPY tests/ {workdir}/
"""


def image_tag(framework: str, timestamp: str) -> str:
    safe = "".join(c if c.isalnum() or c in "-_." else "-" for c in (framework or "build").lower())
    return f"{safe}-{timestamp}"


def suite_files_for(step: BuildStep, suites: Record) -> List[str]:
    """Test files of the suites that run on this step's platform."""
    files: List[str] = []
    for suite in suites.get_items("suites"):
        same_framework = step.framework and suite.get("framework") == step.framework
        same_language = step.language and suite.get("platform") == step.language
        if same_framework or same_language:
            files.extend(f for f in suite.get_array("files") if f not in files)
    return files


def _copy(source: Path, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    if source.is_dir():
        shutil.copytree(source, target, symlinks=True, dirs_exist_ok=True)
    else:
        shutil.copy2(source, target)


def _sample_files(root: Path, limit: int) -> List[str]:
    sample = []
    for path in sorted(root.rglob("*")):
        if path.is_file():
            sample.append(path.relative_to(root).as_posix())
            if len(sample) >= limit:
                break
    return sample


class TestImageBuilder:
    """Layers base image, artifacts, source and tests into one tagged image."""

    __test__ = False

    def __init__(self, runtime, lifecycle, config):
        self.runtime = runtime
        self.lifecycle = lifecycle
        self.config = config

    def package(self, step: BuildStep, project_root: Path, artifact_dir: Path,
                suites: Record, timestamp: str) -> PackagedImage:
        project_root = Path(project_root)
        staging = self.lifecycle.make_temp_dir(f"image-{step.name}")
        try:
            artifacts = self._stage_artifacts(step, Path(artifact_dir), staging / "artifacts")
            sources = self._stage_source(project_root, staging / "source", ignore=artifacts)
            tests = self._stage_tests(project_root, suite_files_for(step, suites), staging / "tests")

            (staging / "Dockerfile").write_text(DOCKERFILE_TEMPLATE.format(
                base_image=step.docker_image,
                prefix=self.config.container_prefix,
                framework=step.framework,
                step=step.name,
                workdir=self.config.test_workdir,
            ))

            tag = image_tag(step.framework, timestamp)
            self.runtime.build_image(
                str(staging), tag, labels={f"{self.config.container_prefix}.framework": step.framework}
            )
            return PackagedImage(tag=tag, framework=step.framework, artifacts=artifacts,
                                 sources=sources, tests=tests)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

    def _stage_artifacts(self, step: BuildStep, artifact_dir: Path, target: Path) -> List[str]:
        target.mkdir(parents=True, exist_ok=True)
        declared = step.artifacts or sorted(p.name for p in artifact_dir.iterdir())
        staged = []
        for name in declared:
            source = artifact_dir / name
            if not source.exists():
                raise ImageVerificationError(
                    f"Build step {step.name} did not produce artifact '{name}'",
                    framework=step.framework,
                    command=step.command,
                )
            _copy(source, target / name)
            staged.append(name)
        return staged

    def _stage_source(self, project_root: Path, target: Path, ignore: Iterable[str]) -> List[str]:
        skipped = set(IGNORED_SOURCE_ENTRIES) | set(ignore)
        shutil.copytree(
            project_root,
            target,
            symlinks=True,
            ignore=lambda directory, names: [n for n in names if n in skipped and Path(directory) == project_root],
        )
        return _sample_files(target, SOURCE_SAMPLE_SIZE)

    def _stage_tests(self, project_root: Path, files: List[str], target: Path) -> List[str]:
        target.mkdir(parents=True, exist_ok=True)
        staged = []
        for rel in files:
            source = project_root / rel
            if source.is_file():
                _copy(source, target / rel)
                staged.append(rel)
        return staged

    def verification_script(self, image: PackagedImage) -> str:
        workdir = self.config.test_workdir.rstrip("/")
        paths = (
            [f"{workdir}/{p}" for p in image.artifacts]
            + [f"{workdir}/{p}" for p in image.sources]
            + [f"{workdir}/{p}" for p in image.tests[:TEST_SAMPLE_SIZE]]
        )
        quoted = " ".join(shlex.quote(p) for p in paths)
        return (
            f"missing=0; for p in {quoted}; do "
            f'if [ ! -e "$p" ]; then echo "missing:$p"; missing=1; fi; '
            f"done; exit $missing"
        )

    def verify(self, image: PackagedImage) -> None:
        """Confirm artifacts, source and tests are all inside the image.

        Raises ``ImageVerificationError`` when any category is empty or a path
        is absent from the image.
        """
        for category in ("artifacts", "sources", "tests"):
            if not getattr(image, category):
                raise ImageVerificationError(
                    f"Test image {image.tag} has no {category}", framework=image.framework
                )

        handle, container = self.lifecycle.launch(
            "verify", image.framework, image=image.tag,
            command=self.verification_script(image),
            working_dir=self.config.test_workdir,
        )
        try:
            exit_code, _ = self.runtime.wait(container, cancel=self.lifecycle.cancel_event, timeout=120)
            stdout, _ = self.runtime.logs(container)
        finally:
            self.lifecycle.release(handle)

        if exit_code != 0:
            missing = [line[len("missing:"):] for line in stdout.splitlines() if line.startswith("missing:")]
            raise ImageVerificationError(
                f"Test image {image.tag} is missing {len(missing) or 'expected'} paths",
                framework=image.framework,
                raw_output="\n".join(missing) or stdout,
            )
        logger.debug(f"Verified test image {image.tag}")
