"""Container tracking and two-stage interrupt handling.

Every container launched by the build scheduler or the test executor is
registered here before it starts and leaves the registry only through
``release`` (normal completion), the graceful-shutdown path, or the forced
path. The controller owns the cancellation event that every container wait
observes, and the process-scoped temporary root.
"""

import atexit
import os
import shutil
import signal
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from loguru import logger
from rich.console import Console

from config import Config, get_config
from errors import InterruptedRun
from protocol import Record

FORCE_EXIT_CODE = 130
# Seconds the drain path waits for a worker to release a stopped container
RELEASE_WAIT = 5.0


class ShutdownState(str, Enum):
    RUNNING = "running"
    GRACEFUL_SHUTDOWN = "graceful_shutdown"
    FORCE_KILLED = "force_killed"


class ContainerStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    EXITED = "exited"
    KILLED = "killed"


@dataclass
class ContainerHandle:
    name: str
    role: str
    id: Optional[str] = None
    status: ContainerStatus = ContainerStatus.PENDING
    start_time: datetime = field(default_factory=datetime.now)
    released: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)

    @property
    def ref(self) -> str:
        return self.id or self.name


class LifecycleController:
    """Thread-safe container registry plus the interrupt state machine."""

    def __init__(
        self,
        runtime,
        config: Optional[Config] = None,
        console: Optional[Console] = None,
        exit_func: Callable[[int], None] = os._exit,
        release_wait: float = RELEASE_WAIT,
    ):
        self.runtime = runtime
        self.config = config or get_config()
        self.console = console or Console(stderr=True)
        self._exit = exit_func
        self.release_wait = release_wait
        self._handles: Dict[str, ContainerHandle] = {}
        self._lock = threading.RLock()
        self._state = ShutdownState.RUNNING
        self.cancel_event = threading.Event()
        self._temp_root: Optional[Path] = None
        self._drain_thread: Optional[threading.Thread] = None
        self._previous_handler = None
        self._counter = 0

    # Registry

    @property
    def state(self) -> ShutdownState:
        return self._state

    @property
    def interrupted(self) -> bool:
        return self.cancel_event.is_set()

    def container_name(self, role: str, label: str = "") -> str:
        with self._lock:
            self._counter += 1
            counter = self._counter
        stamp = datetime.now().strftime("%Y%m%d%H%M%S")
        suffix = "".join(c if c.isalnum() or c in "-_" else "-" for c in label)[:40]
        name = f"{self.config.container_prefix}-{role}-{os.getpid()}-{stamp}-{counter}"
        return f"{name}-{suffix}" if suffix else name

    def register(self, handle: ContainerHandle) -> ContainerHandle:
        with self._lock:
            if self._state != ShutdownState.RUNNING:
                raise InterruptedRun(f"Not launching {handle.name}: shutdown in progress")
            self._handles[handle.name] = handle
        logger.debug(f"Tracking container {handle.name}")
        return handle

    def mark_running(self, handle: ContainerHandle, container_id: str) -> None:
        with self._lock:
            handle.id = container_id
            handle.status = ContainerStatus.RUNNING

    def mark_exited(self, handle: ContainerHandle) -> None:
        with self._lock:
            if handle.status != ContainerStatus.KILLED:
                handle.status = ContainerStatus.EXITED

    def unregister(self, handle: ContainerHandle) -> None:
        with self._lock:
            self._handles.pop(handle.name, None)
        handle.released.set()

    def tracked(self) -> List[ContainerHandle]:
        with self._lock:
            return list(self._handles.values())

    def active_count(self) -> int:
        with self._lock:
            return sum(1 for h in self._handles.values() if h.status == ContainerStatus.RUNNING)

    def launch(self, role: str, label: str, **run_options):
        """Register a handle, start the container and return ``(handle, container)``.

        The handle is tracked before the runtime call so an interrupt arriving
        mid-launch still reaches the container.
        """
        handle = self.register(ContainerHandle(name=self.container_name(role, label), role=role))
        labels = dict(run_options.pop("labels", {}) or {})
        labels.update({f"{self.config.container_prefix}.role": role, f"{self.config.container_prefix}.pid": str(os.getpid())})
        try:
            container = self.runtime.run(name=handle.name, labels=labels, **run_options)
        except Exception:
            self.unregister(handle)
            raise
        self.mark_running(handle, container.id)
        if self.interrupted:
            # Interrupt landed between register and start
            self._remove(handle, force=True)
            raise InterruptedRun(f"Container {handle.name} started during shutdown")
        return handle, container

    def release(self, handle: ContainerHandle) -> bool:
        """Normal completion: remove the container and stop tracking it."""
        self.mark_exited(handle)
        removed = self.runtime.remove(handle.ref, force=True)
        if removed:
            self.unregister(handle)
        else:
            logger.warning(f"Container {handle.name} could not be removed; still tracked for cleanup")
        return removed

    def stop_gracefully(self, handle: ContainerHandle) -> bool:
        """Stop ``handle`` within the grace window, keeping it tracked.

        Workers call this when their wait is cancelled so the container gets
        SIGTERM and the grace period before ``release`` removes it. Nothing is
        stopped once a forced shutdown has taken over.
        """
        if self._state == ShutdownState.FORCE_KILLED:
            return False
        stopped = self.runtime.stop(handle.ref, timeout=self.config.effective_grace_timeout())
        self.mark_exited(handle)
        return stopped

    def _remove(self, handle: ContainerHandle, force: bool) -> bool:
        ok = self.runtime.remove(handle.ref, force=force)
        if ok:
            self.unregister(handle)
        return ok

    # Interrupts

    def handle_interrupt(self, signum=None, frame=None) -> None:
        with self._lock:
            state = self._state
            if state == ShutdownState.RUNNING:
                self._state = ShutdownState.GRACEFUL_SHUTDOWN
            elif state == ShutdownState.GRACEFUL_SHUTDOWN:
                self._state = ShutdownState.FORCE_KILLED
        self.cancel_event.set()

        if state == ShutdownState.RUNNING:
            count = len(self.tracked())
            self.console.print(
                f"[bold yellow]⚠ Interrupt received: graceful shutdown in progress "
                f"({count} containers, up to {self.config.effective_grace_timeout()}s). "
                f"Press Ctrl+C again to force.[/bold yellow]"
            )
            logger.warning("First interrupt: graceful shutdown in progress")
            self._drain_thread = threading.Thread(target=self.graceful_shutdown, name="graceful-shutdown", daemon=True)
            self._drain_thread.start()
        elif state == ShutdownState.GRACEFUL_SHUTDOWN:
            self.console.print("[bold red]✖ Second interrupt: forceful termination[/bold red]")
            logger.error("Second interrupt: forceful termination")
            self.force_kill_all()
            self.cleanup_temp_root()
            self._exit(FORCE_EXIT_CODE)

    def graceful_shutdown(self) -> Record:
        """Stop every tracked container within the grace window, then remove it."""
        handles = self.tracked()

        def stop_one(handle: ContainerHandle) -> bool:
            stopped = self.stop_gracefully(handle)
            # The launching worker collects the output and releases the container
            if handle.released.wait(self.release_wait):
                return stopped
            if self._state == ShutdownState.FORCE_KILLED:
                return False
            return stopped and self._remove(handle, force=True)

        results = self._for_each(handles, stop_one)
        if self._state != ShutdownState.FORCE_KILLED:
            self.cleanup_temp_root()
        return self._cleanup_counts(results)

    def force_kill_all(self) -> Record:
        """Kill and force-remove every tracked container without waiting."""
        def kill_one(handle: ContainerHandle) -> bool:
            self.runtime.kill(handle.ref)
            with self._lock:
                handle.status = ContainerStatus.KILLED
            return self._remove(handle, force=True)

        return self._cleanup_counts(self._for_each(self.tracked(), kill_one))

    def cleanup_all(self, force: bool = True) -> Record:
        """Remove everything still tracked; used on normal exit and fatal errors."""
        def remove_one(handle: ContainerHandle) -> bool:
            if not force:
                self.runtime.stop(handle.ref, timeout=self.config.effective_grace_timeout())
            self.mark_exited(handle)
            return self._remove(handle, force=True)

        return self._cleanup_counts(self._for_each(self.tracked(), remove_one))

    def sweep_orphans(self) -> Record:
        """Remove leftover containers from earlier runs by name prefix."""
        leftovers = self.runtime.list_containers(f"{self.config.container_prefix}-")
        results = [self.runtime.remove(c["id"], force=True) for c in leftovers]
        return self._cleanup_counts(results)

    def _for_each(self, handles: List[ContainerHandle], func) -> List[bool]:
        if not handles:
            return []
        with ThreadPoolExecutor(max_workers=min(16, len(handles)), thread_name_prefix="cleanup") as pool:
            return list(pool.map(func, handles))

    @staticmethod
    def _cleanup_counts(results: List[bool]) -> Record:
        return Record({
            "cleanup_total": len(results),
            "cleanup_success": sum(1 for r in results if r),
            "cleanup_failed": sum(1 for r in results if not r),
        })

    def wait_for_drain(self, timeout: Optional[float] = None) -> None:
        if self._drain_thread is not None:
            self._drain_thread.join(timeout)

    # Process-scoped resources

    def temp_root(self) -> Path:
        with self._lock:
            if self._temp_root is None:
                base = self.config.temp_root
                if base:
                    Path(base).mkdir(parents=True, exist_ok=True)
                self._temp_root = Path(tempfile.mkdtemp(prefix=f"{self.config.container_prefix}-", dir=base))
                logger.debug(f"Temporary root: {self._temp_root}")
            return self._temp_root

    def make_temp_dir(self, prefix: str) -> Path:
        return Path(tempfile.mkdtemp(prefix=f"{prefix}-", dir=self.temp_root()))

    def cleanup_temp_root(self) -> None:
        with self._lock:
            root, self._temp_root = self._temp_root, None
        if root is not None and root.exists():
            shutil.rmtree(root, ignore_errors=True)
            logger.debug(f"Removed temporary root {root}")

    def install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        self._previous_handler = signal.signal(signal.SIGINT, self.handle_interrupt)
        atexit.register(self.shutdown)

    def restore_signal_handlers(self) -> None:
        if self._previous_handler is not None and threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, self._previous_handler)
            self._previous_handler = None

    def shutdown(self) -> None:
        """Normal exit path: nothing tracked may outlive the process."""
        if self._state == ShutdownState.GRACEFUL_SHUTDOWN:
            self.wait_for_drain(self.config.effective_grace_timeout() + 5)
        if self.tracked():
            counts = self.cleanup_all(force=True)
            logger.debug(f"Cleanup on exit: {counts.get('cleanup_success')}/{counts.get('cleanup_total')} removed")
        self.cleanup_temp_root()
        self.restore_signal_handlers()
