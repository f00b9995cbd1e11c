"""
Status buffers for build steps and test suites

Each suite and build step owns one ``StatusBuffer`` that the core writes as
results arrive. The presentation layer either polls ``StatusBoard.snapshot``
or subscribes to ``StatusUpdate`` events; it never writes back.
"""

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from protocol import Record, escape_sentinel


class StatusKind(str, Enum):
    BUILD_STEP = "build_step"
    SUITE = "suite"


class RunStatus(str, Enum):
    """Lifecycle values for steps and suites"""
    PENDING = "pending"
    # Build steps
    BUILDING = "building"
    BUILT = "built"
    BUILD_FAILED = "build-failed"
    # Suites
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"
    # Either
    CANCELLED = "cancelled"
    INTERRUPTED = "interrupted"


TERMINAL_STATUSES = {
    RunStatus.BUILT,
    RunStatus.BUILD_FAILED,
    RunStatus.PASSED,
    RunStatus.FAILED,
    RunStatus.ERROR,
    RunStatus.CANCELLED,
    RunStatus.INTERRUPTED,
}


@dataclass
class StatusUpdate:
    """
    Event sent to subscribers whenever a buffer changes

    Attributes:
        name: Suite or build step name
        kind: Whether this is a suite or a build step
        status: Status after the change
        timestamp: When the change happened
        message: Optional human-readable note
    """
    name: str
    kind: StatusKind
    status: RunStatus
    timestamp: datetime = field(default_factory=datetime.now)
    message: str = ""

    def __str__(self) -> str:
        return f"[{self.timestamp.strftime('%H:%M:%S')}] {self.kind.value} {self.name}: {self.status.value}"


class StatusBuffer:
    """Incrementally written ``{status, duration, exit_code, output, error}`` record."""

    def __init__(self, name: str, kind: StatusKind, notify: Optional[Callable[[StatusUpdate], None]] = None):
        self.name = name
        self.kind = kind
        self._notify = notify
        self._lock = threading.Lock()
        self._status = RunStatus.PENDING
        self._started: Optional[float] = None
        self._duration = 0.0
        self._exit_code: Optional[int] = None
        self._output: List[str] = []
        self._error = ""
        self.details: Dict[str, str] = {}

    @property
    def status(self) -> RunStatus:
        return self._status

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit_code

    @property
    def output(self) -> str:
        with self._lock:
            return "".join(self._output)

    @property
    def error(self) -> str:
        return self._error

    @property
    def duration(self) -> float:
        with self._lock:
            if self._started is not None and self._status not in TERMINAL_STATUSES:
                return time.monotonic() - self._started
            return self._duration

    def is_terminal(self) -> bool:
        return self._status in TERMINAL_STATUSES

    def start(self, status: RunStatus = RunStatus.RUNNING) -> None:
        with self._lock:
            self._started = time.monotonic()
            self._status = status
        self._emit(status)

    def append_output(self, text: str) -> None:
        if not text:
            return
        with self._lock:
            self._output.append(text)

    def finish(self, status: RunStatus, exit_code: Optional[int] = None, error: str = "",
               duration: Optional[float] = None, **details) -> None:
        with self._lock:
            if duration is not None:
                self._duration = duration
            elif self._started is not None:
                self._duration = time.monotonic() - self._started
            self._status = status
            self._exit_code = exit_code
            if error:
                self._error = error
            self.details.update({k: str(v) for k, v in details.items()})
        self._emit(status, error)

    def snapshot(self) -> Record:
        with self._lock:
            output = "".join(self._output)
            record = Record({
                "name": self.name,
                "kind": self.kind.value,
                "status": self._status.value,
                "duration": f"{self._duration:.2f}",
                "exit_code": "" if self._exit_code is None else self._exit_code,
                "error": escape_sentinel(self._error),
                "output": escape_sentinel(output),
            })
            for key, value in self.details.items():
                record = record.set(key, escape_sentinel(value))
            return record

    def _emit(self, status: RunStatus, message: str = "") -> None:
        if self._notify is not None:
            self._notify(StatusUpdate(name=self.name, kind=self.kind, status=status, message=message))


class StatusBoard:
    """Owns every status buffer of one invocation."""

    def __init__(self):
        self._buffers: Dict[str, StatusBuffer] = {}
        self._subscribers: List[Callable[[StatusUpdate], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[StatusUpdate], None]) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def _dispatch(self, update: StatusUpdate) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            callback(update)

    def create(self, name: str, kind: StatusKind) -> StatusBuffer:
        key = f"{kind.value}:{name}"
        with self._lock:
            if key in self._buffers:
                return self._buffers[key]
            buffer = StatusBuffer(name, kind, notify=self._dispatch)
            self._buffers[key] = buffer
        return buffer

    def get(self, name: str, kind: StatusKind) -> Optional[StatusBuffer]:
        with self._lock:
            return self._buffers.get(f"{kind.value}:{name}")

    def buffers(self, kind: Optional[StatusKind] = None) -> List[StatusBuffer]:
        with self._lock:
            values = list(self._buffers.values())
        return [b for b in values if kind is None or b.kind == kind]

    def snapshot(self, kind: Optional[StatusKind] = None) -> Record:
        record = Record().set("entries_count", 0)
        for buffer in self.buffers(kind):
            record = record.append_item("entries", buffer.snapshot())
        return record
