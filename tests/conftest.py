import sys
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import Config  # noqa: E402
from errors import InterruptedRun  # noqa: E402


class FakeContainer:
    def __init__(self, container_id: str, name: str, image: str, command: str):
        self.id = container_id
        self.name = name
        self.image = image
        self.command = command
        self.status = "running"
        self.attrs = {"State": {"ExitCode": 0}}

    def reload(self):
        pass


class FakeRuntime:
    """Records container calls; outcomes are scripted by command substring."""

    def __init__(self, outcomes: Optional[Dict[str, Tuple[int, str, str]]] = None):
        self.outcomes = outcomes or {}
        self.runs: List[dict] = []
        self.removed: List[str] = []
        self.stopped: List[str] = []
        self.killed: List[str] = []
        self.built_images: List[Tuple[str, str]] = []
        self.removed_images: List[str] = []
        self.leftovers: List[Dict[str, str]] = []
        self.remove_fails: set = set()
        # Commands whose containers run until the cancel event is set
        self.blocking: set = set()
        self.events: List[Tuple[str, str]] = []
        self.wait_hook = None
        self._lock = threading.Lock()
        self._counter = 0

    def _outcome(self, command: str) -> Tuple[int, str, str]:
        for needle, outcome in self.outcomes.items():
            if needle in command:
                return outcome
        return 0, "", ""

    def run(self, image, command, name, labels=None, volumes=None, working_dir=None,
            environment=None, cpus=0, mem_limit=None):
        with self._lock:
            self._counter += 1
            container = FakeContainer(f"c{self._counter}", name, image, command)
            self.runs.append({
                "image": image,
                "command": command,
                "name": name,
                "labels": labels or {},
                "volumes": volumes or {},
                "working_dir": working_dir,
                "environment": environment or {},
                "cpus": cpus,
                "mem_limit": mem_limit,
                "container": container,
            })
        return container

    def wait(self, container, cancel=None, timeout=None, poll_interval=0.5):
        if self.wait_hook is not None:
            self.wait_hook(container, cancel)
        if cancel is not None and any(needle in container.command for needle in self.blocking):
            cancel.wait(5)
            raise InterruptedRun(f"Wait for {container.name} interrupted")
        exit_code, _, _ = self._outcome(container.command)
        container.status = "exited"
        return exit_code, False

    def follow_logs(self, container, on_output):
        _, stdout, stderr = self._outcome(container.command)
        on_output(stdout + stderr)
        thread = threading.Thread(target=lambda: None, daemon=True)
        thread.start()
        return thread

    def logs(self, container):
        _, stdout, stderr = self._outcome(container.command)
        return stdout, stderr

    def stop(self, container_id, timeout=10):
        with self._lock:
            self.stopped.append(container_id)
            self.events.append(("stop", container_id))
        return True

    def kill(self, container_id):
        self.killed.append(container_id)
        return True

    def remove(self, container_id, force=False):
        if container_id in self.remove_fails:
            return False
        with self._lock:
            self.removed.append(container_id)
            self.events.append(("remove", container_id))
        return True

    def list_containers(self, name_prefix):
        return [c for c in self.leftovers if c["name"].startswith(name_prefix)]

    def ensure_image(self, image):
        return True

    def build_image(self, context_dir, tag, labels=None):
        dockerfile = (Path(context_dir) / "Dockerfile").read_text()
        self.built_images.append((tag, dockerfile))
        return f"sha256:{tag}"

    def image_exists(self, tag):
        return any(t == tag for t, _ in self.built_images)

    def remove_image(self, tag):
        self.removed_images.append(tag)
        return True


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        log_file=None,
        log_dir=str(tmp_path / "logs"),
        temp_root=str(tmp_path / "suitey-tmp"),
        grace_timeout=10,
    )


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


def write_files(root: Path, files: Dict[str, str]) -> Path:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root
