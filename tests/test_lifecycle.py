import io
import threading
from pathlib import Path

import pytest
from rich.console import Console

from conftest import FakeRuntime
from errors import InterruptedRun
from lifecycle import ContainerStatus, LifecycleController, ShutdownState
from lifecycle.controller import FORCE_EXIT_CODE


class BlockingStopRuntime(FakeRuntime):
    """``stop`` hangs until released, like a container ignoring SIGTERM."""

    def __init__(self):
        super().__init__()
        self.release_stop = threading.Event()
        self.stop_started = threading.Event()

    def stop(self, container_id, timeout=10):
        self.stop_started.set()
        self.release_stop.wait(5)
        return super().stop(container_id, timeout)


@pytest.fixture
def output():
    return io.StringIO()


def make_controller(runtime, config, output, exits=None):
    return LifecycleController(
        runtime,
        config=config,
        console=Console(file=output, width=200),
        exit_func=(exits.append if exits is not None else (lambda code: None)),
        release_wait=0.1,
    )


def test_launch_tracks_until_release(runtime, config, output):
    controller = make_controller(runtime, config, output)

    handle, container = controller.launch("test", "unit suite", image="img", command="true")

    assert handle.name.startswith("suitey-test-")
    assert handle.name.endswith("unit-suite")
    assert handle.status == ContainerStatus.RUNNING
    assert controller.active_count() == 1
    assert runtime.runs[0]["labels"]["suitey.role"] == "test"

    assert controller.release(handle)
    assert controller.tracked() == []
    assert runtime.removed == [container.id]


def test_failed_removal_stays_tracked(runtime, config, output):
    controller = make_controller(runtime, config, output)
    handle, container = controller.launch("build", "x", image="img", command="true")
    runtime.remove_fails.add(container.id)

    assert not controller.release(handle)
    assert controller.tracked() == [handle]

    counts = controller.cleanup_all()
    assert counts.get_int("cleanup_total") == 1
    assert counts.get_int("cleanup_failed") == 1


def test_first_interrupt_stops_and_removes_everything(runtime, config, output):
    controller = make_controller(runtime, config, output)
    handles = [controller.launch("build", f"s{i}", image="img", command="make")[0] for i in range(3)]

    controller.handle_interrupt()
    controller.wait_for_drain(5)

    assert controller.state == ShutdownState.GRACEFUL_SHUTDOWN
    assert controller.cancel_event.is_set()
    assert sorted(runtime.stopped) == sorted(h.ref for h in handles)
    assert controller.tracked() == []
    assert "graceful shutdown in progress" in output.getvalue()


def test_second_interrupt_force_kills_without_waiting(config, output):
    runtime = BlockingStopRuntime()
    exits = []
    controller = make_controller(runtime, config, output, exits)
    handle, container = controller.launch("test", "slow", image="img", command="sleep 100")
    temp_dir = controller.make_temp_dir("artifacts")

    controller.handle_interrupt()
    assert runtime.stop_started.wait(5)
    controller.handle_interrupt()

    assert controller.state == ShutdownState.FORCE_KILLED
    assert exits == [FORCE_EXIT_CODE]
    assert runtime.killed == [container.id]
    assert container.id in runtime.removed
    assert controller.tracked() == []
    assert not temp_dir.exists()
    assert "forceful termination" in output.getvalue()

    runtime.release_stop.set()
    controller.wait_for_drain(5)


def test_no_launch_after_shutdown_starts(runtime, config, output):
    controller = make_controller(runtime, config, output)
    controller.handle_interrupt()
    controller.wait_for_drain(5)

    with pytest.raises(InterruptedRun):
        controller.launch("test", "late", image="img", command="true")
    assert runtime.runs == []


def test_sweep_orphans_by_prefix(runtime, config, output):
    runtime.leftovers = [
        {"id": "old1", "name": "suitey-test-1-x", "status": "exited"},
        {"id": "keep", "name": "unrelated", "status": "running"},
    ]
    controller = make_controller(runtime, config, output)

    counts = controller.sweep_orphans()

    assert counts.get_int("cleanup_total") == 1
    assert counts.get_int("cleanup_success") == 1
    assert runtime.removed == ["old1"]


def test_temp_root_is_process_scoped(runtime, config, output):
    controller = make_controller(runtime, config, output)
    first = controller.make_temp_dir("a")
    second = controller.make_temp_dir("b")

    assert first.parent == second.parent == controller.temp_root()
    assert Path(config.temp_root) in first.parents

    controller.shutdown()
    assert not first.parent.exists()


@pytest.mark.parametrize("configured,effective", [(1, 10), (15, 15), (90, 30)])
def test_grace_timeout_is_clamped(config, configured, effective):
    config.grace_timeout = configured
    assert config.effective_grace_timeout() == effective


def test_drain_leaves_removal_to_the_releasing_worker(runtime, config, output):
    controller = make_controller(runtime, config, output)
    controller.release_wait = 5
    handle, container = controller.launch("test", "suite", image="img", command="make test")

    def worker():
        controller.cancel_event.wait(5)
        controller.stop_gracefully(handle)
        controller.release(handle)

    thread = threading.Thread(target=worker)
    thread.start()
    controller.handle_interrupt()
    thread.join(5)
    controller.wait_for_drain(5)

    assert runtime.events[0] == ("stop", container.id)
    assert runtime.removed == [container.id]
    assert controller.tracked() == []
