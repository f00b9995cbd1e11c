"""Tiered, containerized build execution."""

import shutil
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from string import Template
from typing import Dict, List, Optional

from loguru import logger

from config import Config, create_step_logger, get_config
from docker_orch import LOG_DRAIN_TIMEOUT
from errors import BuildError, InterruptedRun
from execution.status import RunStatus, StatusBoard, StatusKind
from lifecycle import LifecycleController, available_cores
from protocol import Record

from .models import BuildReport, BuildStep, StepOutcome
from .packaging import TestImageBuilder
from .tiers import resolve_tiers

# Exported into every build container; step environment values may reference them
ARTIFACT_DIR_ENV = "SUITEY_ARTIFACT_DIR"
WORKSPACE_ENV = "SUITEY_WORKSPACE"


class BuildScheduler:
    """Runs build steps tier by tier.

    Every step of a tier gets its own worker and container; the tier is joined
    before the next one starts. When a step fails, steps of the same tier that
    have not launched yet are cancelled, steps already running finish and keep
    their exit code and output, and no later tier runs. A platform whose build
    steps could not be collected fails the build before anything launches.
    """

    def __init__(
        self,
        runtime,
        lifecycle: LifecycleController,
        board: Optional[StatusBoard] = None,
        config: Optional[Config] = None,
        image_builder: Optional[TestImageBuilder] = None,
    ):
        self.runtime = runtime
        self.lifecycle = lifecycle
        self.board = board or StatusBoard()
        self.config = config or get_config()
        self.image_builder = image_builder or TestImageBuilder(runtime, lifecycle, self.config)

    def run(self, project_root: Path, steps_record: Record, suites: Record) -> BuildReport:
        project_root = Path(project_root).resolve()
        steps = [BuildStep.from_record(item, i) for i, item in enumerate(steps_record.get_items("build_steps"))]
        report = BuildReport()
        for error in steps_record.get_items("build_step_errors"):
            report.outcomes.append(self._collection_failure(error))
        if not steps and steps_record.get_bool("requires_build") and not report.outcomes:
            missing = Record({"error": "Build required but no build steps were defined"})
            report.outcomes.append(self._collection_failure(missing))
        if report.outcomes:
            for step in steps:
                report.outcomes.append(self._cancel(step, "Build steps could not be collected for every platform"))
            for failed in report.failed:
                logger.error(f"Build of {failed.step.framework} failed: {failed.error}")
            return report
        if not steps:
            return report

        tiers = resolve_tiers(steps)
        report.tiers = [[s.name for s in tier] for tier in tiers]
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        for step in steps:
            self.board.create(step.name, StatusKind.BUILD_STEP)

        logger.info(f"Building {len(steps)} steps in {len(tiers)} tiers")

        for tier_index, tier in enumerate(tiers):
            abort = threading.Event()
            logger.info(f"Tier {tier_index}: {', '.join(s.name for s in tier)}")

            with ThreadPoolExecutor(max_workers=len(tier), thread_name_prefix=f"build-t{tier_index}") as pool:
                futures = [
                    pool.submit(self._run_step, step, project_root, suites, timestamp, abort)
                    for step in tier
                ]
                outcomes = [future.result() for future in futures]

            report.outcomes.extend(outcomes)

            if self.lifecycle.interrupted or any(o.status == RunStatus.INTERRUPTED for o in outcomes):
                report.interrupted = True
            if report.interrupted or any(o.status == RunStatus.BUILD_FAILED for o in outcomes):
                for later in tiers[tier_index + 1:]:
                    for step in later:
                        report.outcomes.append(self._cancel(step, "Earlier build tier did not succeed"))
                break

        for failed in report.failed:
            logger.error(f"Build step {failed.step.name} ({failed.step.framework}) failed: {failed.error}")
        return report

    def _cancel(self, step: BuildStep, reason: str) -> StepOutcome:
        buffer = self.board.create(step.name, StatusKind.BUILD_STEP)
        buffer.finish(RunStatus.CANCELLED, error=reason)
        return StepOutcome(step=step, status=RunStatus.CANCELLED, error=reason)

    def _collection_failure(self, error: Record) -> StepOutcome:
        framework = error.get("framework") or "build"
        step = BuildStep(name=f"{framework}_build_steps", framework=framework, docker_image="",
                         build_command="", module_id=error.get("module_id", ""))
        message = error.get("error") or "Build steps could not be collected"
        self.board.create(step.name, StatusKind.BUILD_STEP).finish(RunStatus.BUILD_FAILED, error=message)
        return StepOutcome(step=step, status=RunStatus.BUILD_FAILED, error=message)

    def _environment(self, step: BuildStep) -> Dict[str, str]:
        base = {ARTIFACT_DIR_ENV: self.config.artifact_mount, WORKSPACE_ENV: self.config.build_workspace}
        environment = dict(base)
        for key, value in step.environment_dict().items():
            environment[key] = Template(value).safe_substitute(base)
        return environment

    def _volumes(self, step: BuildStep, project_root: Path, artifact_dir: Path) -> Dict[str, Dict[str, str]]:
        volumes = {
            str(project_root): {"bind": self.config.build_workspace, "mode": "ro"},
            str(artifact_dir): {"bind": self.config.artifact_mount, "mode": "rw"},
        }
        for mount in step.volume_mounts:
            parts = mount.split(":")
            if len(parts) < 2:
                logger.warning(f"Ignoring malformed volume mount '{mount}' on {step.name}")
                continue
            host = Path(parts[0])
            if not host.is_absolute():
                host = project_root / host
            volumes[str(host)] = {"bind": parts[1], "mode": parts[2] if len(parts) > 2 else "ro"}
        return volumes

    def _cpus(self, step: BuildStep) -> float:
        return step.cpu_cores or self.config.cpu_cores or available_cores()

    def _run_step(self, step: BuildStep, project_root: Path, suites: Record,
                  timestamp: str, abort: threading.Event) -> StepOutcome:
        step_logger = create_step_logger(step.name)
        buffer = self.board.create(step.name, StatusKind.BUILD_STEP)

        if abort.is_set():
            return self._cancel(step, "Another step in this tier failed")
        if self.lifecycle.interrupted:
            buffer.finish(RunStatus.INTERRUPTED, error="Interrupted before launch")
            return StepOutcome(step=step, status=RunStatus.INTERRUPTED, error="Interrupted before launch")

        buffer.start(RunStatus.BUILDING)
        started = time.monotonic()
        artifact_dir = self.lifecycle.make_temp_dir(f"artifacts-{step.name}")
        outcome = StepOutcome(step=step, status=RunStatus.BUILDING)

        try:
            step_logger.info(f"Building {step.name} in {step.docker_image}: {step.command}")
            handle, container = self.lifecycle.launch(
                "build", step.name,
                image=step.docker_image,
                command=step.command,
                volumes=self._volumes(step, project_root, artifact_dir),
                working_dir=step.working_directory or self.config.build_workspace,
                environment=self._environment(step),
                cpus=self._cpus(step),
            )
            follower = self.runtime.follow_logs(container, buffer.append_output)
            try:
                exit_code, _ = self.runtime.wait(container, cancel=self.lifecycle.cancel_event)
            except InterruptedRun:
                self.lifecycle.stop_gracefully(handle)
                raise
            finally:
                follower.join(LOG_DRAIN_TIMEOUT)
                outcome.stdout, outcome.stderr = self.runtime.logs(container)
                self.lifecycle.release(handle)

            outcome.exit_code = exit_code

            if exit_code != 0:
                abort.set()
                outcome.status = RunStatus.BUILD_FAILED
                outcome.error = f"{step.framework} build exited with {exit_code}: {step.command}"
            elif abort.is_set():
                outcome.status = RunStatus.CANCELLED
                outcome.error = "Finished after another step in this tier failed; not packaged"
            else:
                image = self.image_builder.package(step, project_root, artifact_dir, suites, timestamp)
                self.image_builder.verify(image)
                outcome.image = image
                outcome.status = RunStatus.BUILT
                step_logger.info(f"✅ {step.name} built as {image.tag}")

        except InterruptedRun as e:
            outcome.status = RunStatus.INTERRUPTED
            outcome.error = e.message
        except BuildError as e:
            abort.set()
            outcome.status = RunStatus.BUILD_FAILED
            outcome.error = e.message
            if e.raw_output:
                outcome.stderr = (outcome.stderr + "\n" + e.raw_output).strip()
                buffer.append_output(e.raw_output)
        except Exception as e:
            abort.set()
            step_logger.error(f"Build step {step.name} crashed: {e}")
            outcome.status = RunStatus.BUILD_FAILED
            outcome.error = str(e)
        finally:
            shutil.rmtree(artifact_dir, ignore_errors=True)

        outcome.duration = time.monotonic() - started
        buffer.finish(
            outcome.status,
            exit_code=outcome.exit_code,
            error=outcome.error,
            duration=outcome.duration,
            image=outcome.image.tag if outcome.image else "",
        )
        return outcome

    def cleanup_images(self, report: BuildReport) -> List[str]:
        """Remove test images once testing is over or after a fatal error."""
        removed = []
        for outcome in report.outcomes:
            if outcome.image is not None and self.runtime.remove_image(outcome.image.tag):
                removed.append(outcome.image.tag)
        return removed
