"""Parallel test execution in containers."""

import os
import tempfile
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from loguru import logger

from config import Config, create_step_logger, get_config
from docker_orch import LOG_DRAIN_TIMEOUT
from errors import InterruptedRun
from lifecycle import LifecycleController, max_concurrent_containers, memory_per_container_gb, total_memory_gb
from protocol import Record, escape_sentinel
from registry import ModuleRegistry

from .status import RunStatus, StatusBoard, StatusBuffer, StatusKind

SUMMARY_FILENAME = "summary.result"


def _safe_filename(name: str) -> str:
    return "".join(c if c.isalnum() or c in "-_." else "_" for c in name) or "suite"


def write_atomic(path: Path, text: str) -> Path:
    """Write ``text`` next to ``path`` and rename it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", dir=path.parent, prefix=f".{path.name}.", suffix=".tmp",
                                     delete=False, encoding="utf-8") as f:
        f.write(text)
        temp_name = f.name
    os.replace(temp_name, path)
    return path


class TestExecutor:
    """Runs every suite inside its platform's test image.

    Built platforms use the image the build scheduler produced, which already
    holds artifacts, source and tests. Other platforms use the owning module's
    test image with the project mounted read-only at the test working
    directory. Suites declared ``parallel = false`` run one at a time after
    the parallel batch.
    """

    __test__ = False

    def __init__(
        self,
        registry: ModuleRegistry,
        runtime,
        lifecycle: LifecycleController,
        board: Optional[StatusBoard] = None,
        config: Optional[Config] = None,
    ):
        self.registry = registry
        self.runtime = runtime
        self.lifecycle = lifecycle
        self.board = board or StatusBoard()
        self.config = config or get_config()
        self._results: Dict[str, Record] = {}
        self._lock = threading.Lock()

    def concurrency(self) -> int:
        limits = max_concurrent_containers(self.config.max_parallel or None)
        if limits.get_bool("limited_by_cpu"):
            logger.warning(f"Parallelism capped at {limits.get('available_cores')} CPU cores")
        return limits.get_int("max_containers", 1)

    def memory_limit(self, jobs: int) -> Optional[str]:
        total = total_memory_gb()
        if not total:
            return None
        per_container = memory_per_container_gb(
            total, jobs, self.config.memory_headroom, self.config.min_container_memory_gb
        )
        return f"{int(per_container * 1024)}m"

    def image_for(self, suite: Record, project_root: Path,
                  images: Dict[str, str]) -> Tuple[str, Dict[str, Dict[str, str]]]:
        """Image and mounts for ``suite``."""
        for key in (suite.get("framework"), suite.get("platform")):
            if key and key in images:
                return images[key], {}
        module = self.registry.find(suite.get("module_id", ""))
        image = module.test_image if module is not None else "ubuntu:22.04"
        return image, {str(project_root): {"bind": self.config.test_workdir, "mode": "ro"}}

    def run(self, project_root: Path, suites: Record, images: Optional[Dict[str, str]] = None) -> Record:
        project_root = Path(project_root).resolve()
        images = images or {}
        items = suites.get_items("suites")
        for item in items:
            self.board.create(item.get("name"), StatusKind.SUITE)

        if not items:
            return self.summarize([])

        workers = min(self.concurrency(), len(items))
        mem_limit = self.memory_limit(workers)
        parallel = [s for s in items if s.get_bool("parallel", True)]
        serial = [s for s in items if not s.get_bool("parallel", True)]
        logger.info(f"Running {len(items)} suites with up to {workers} containers")

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="suite") as pool:
            futures = [pool.submit(self.run_suite, s, project_root, images, mem_limit) for s in parallel]
            results = [f.result() for f in futures]
        for suite in serial:
            results.append(self.run_suite(suite, project_root, images, mem_limit))

        return self.summarize(results)

    def _runner(self, suite: Record, image: str, volumes, environment: Dict[str, str],
                mem_limit: Optional[str], buffer: StatusBuffer):
        timeout = suite.get_int("timeout") or None
        name = suite.get("name")

        def run(command: str) -> Dict[str, object]:
            started = time.monotonic()
            handle, container = self.lifecycle.launch(
                "test", name,
                image=image,
                command=command,
                volumes=volumes,
                working_dir=self.config.test_workdir,
                environment=environment,
                cpus=self.config.cpu_cores or 0,
                mem_limit=mem_limit,
            )
            follower = self.runtime.follow_logs(container, buffer.append_output)
            try:
                exit_code, timed_out = self.runtime.wait(
                    container, cancel=self.lifecycle.cancel_event, timeout=timeout
                )
            except InterruptedRun:
                self.lifecycle.stop_gracefully(handle)
                raise
            finally:
                follower.join(LOG_DRAIN_TIMEOUT)
                stdout, stderr = self.runtime.logs(container)
                self.lifecycle.release(handle)
            if timed_out:
                notice = f"Suite {name} timed out after {timeout}s"
                stderr = f"{stderr}\n{notice}".lstrip()
                buffer.append_output(f"\n{notice}\n")
            return {
                "exit_code": exit_code,
                "stdout": stdout,
                "stderr": stderr,
                "duration": time.monotonic() - started,
                "timed_out": timed_out,
            }

        return run

    def run_suite(self, suite: Record, project_root: Path, images: Dict[str, str],
                  mem_limit: Optional[str] = None) -> Record:
        name = suite.get("name")
        buffer = self.board.create(name, StatusKind.SUITE)
        step_logger = create_step_logger(name)
        base = Record({
            "name": name,
            "platform": suite.get("platform", ""),
            "framework": suite.get("framework", ""),
            "module_id": suite.get("module_id", ""),
        })

        if self.lifecycle.interrupted:
            buffer.finish(RunStatus.INTERRUPTED, error="Interrupted before launch")
            return self._store(base.merge(Record({"status": RunStatus.INTERRUPTED.value})))

        module = self.registry.find(suite.get("module_id", ""))
        if module is None:
            error = f"No module '{suite.get('module_id')}' to run suite {name}"
            buffer.finish(RunStatus.ERROR, error=error)
            return self._store(base.merge(Record({"status": RunStatus.ERROR.value, "error": error})))

        image, volumes = self.image_for(suite, project_root, images)
        environment = {}
        for entry in suite.get_array("environment"):
            key, sep, value = entry.partition("=")
            if sep and key:
                environment[key] = value

        buffer.start(RunStatus.RUNNING)
        step_logger.info(f"Running suite {name} in {image}")
        started = time.monotonic()
        try:
            execution = module.execute_test_suite(
                suite, image, self._runner(suite, image, volumes, environment, mem_limit, buffer)
            )
            exit_code = execution.get_int("exit_code", 1)
            output = f"{execution.get('stdout', '')}\n{execution.get('stderr', '')}"
            parsed = module.parse_test_results(output, exit_code)
            status = RunStatus.PASSED if parsed.get("status") == "passed" else RunStatus.FAILED
            result = base.merge(parsed).merge(Record({
                "status": status.value,
                "exit_code": exit_code,
                "image": image,
                "test_command": execution.get("test_command", ""),
            }))
            error = "" if status == RunStatus.PASSED else f"Suite {name} exited with {exit_code}"
        except InterruptedRun as e:
            status, exit_code, error = RunStatus.INTERRUPTED, None, e.message
            result = base.merge(Record({"status": status.value, "image": image}))
        except Exception as e:
            step_logger.error(f"Suite {name} could not run: {e}")
            status, exit_code, error = RunStatus.ERROR, None, str(e)
            result = base.merge(Record({"status": status.value, "image": image}))

        duration = time.monotonic() - started
        buffer.finish(status, exit_code=exit_code, error=error, duration=duration,
                      total_tests=result.get("total_tests", "0"))
        result = result.merge(Record({
            "duration": f"{duration:.2f}",
            "error": escape_sentinel(error),
            "output": escape_sentinel(buffer.output),
        }))
        if status == RunStatus.PASSED:
            step_logger.info(f"✅ {name}: {result.get('passed_tests', '0')} passed")
        else:
            step_logger.warning(f"❌ {name}: {status.value}")
        return self._store(result)

    def _store(self, result: Record) -> Record:
        with self._lock:
            self._results[result.get("name")] = result
        return result

    def summarize(self, results: List[Record]) -> Record:
        counts = {s: 0 for s in (RunStatus.PASSED, RunStatus.FAILED, RunStatus.ERROR, RunStatus.INTERRUPTED)}
        totals = {"total_tests": 0, "passed_tests": 0, "failed_tests": 0, "skipped_tests": 0}
        summary = Record().set("suites_count", 0)
        for result in results:
            status = RunStatus(result.get("status", RunStatus.ERROR.value))
            if status in counts:
                counts[status] += 1
            for key in totals:
                totals[key] += result.get_int(key)
            summary = summary.append_item("suites", result.delete("output"))

        if counts[RunStatus.INTERRUPTED]:
            overall = RunStatus.INTERRUPTED
        elif counts[RunStatus.FAILED] or counts[RunStatus.ERROR]:
            overall = RunStatus.FAILED
        else:
            overall = RunStatus.PASSED
        return summary.merge(Record({
            "overall_status": overall.value,
            "total_suites": len(results),
            "passed_suites": counts[RunStatus.PASSED],
            "failed_suites": counts[RunStatus.FAILED],
            "error_suites": counts[RunStatus.ERROR],
            "interrupted_suites": counts[RunStatus.INTERRUPTED],
            **totals,
        }))

    def write_results(self, results_dir: Path, summary: Optional[Record] = None) -> List[Path]:
        """Write one result and one output file per suite plus the summary."""
        results_dir = Path(results_dir)
        written = []
        with self._lock:
            results = dict(self._results)
        for name, result in results.items():
            stem = _safe_filename(name)
            written.append(write_atomic(results_dir / f"{stem}.result", result.delete("output").to_text()))
            written.append(write_atomic(results_dir / f"{stem}.output", result.get_multiline("output", "")))
        if summary is not None:
            written.append(write_atomic(results_dir / SUMMARY_FILENAME, summary.to_text()))
        logger.debug(f"Wrote {len(written)} result files to {results_dir}")
        return written
