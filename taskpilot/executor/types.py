from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from taskpilot.config.types import TaskSpec


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


class StreamKind(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"


class EventKind(str, Enum):
    STARTED = "started"
    OUTPUT = "output"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    RETRY = "retry"


class FailureKind(str, Enum):
    SPAWN = "spawn"
    NON_ZERO_EXIT = "non_zero_exit"
    TIMEOUT = "timeout"
    STOPPED = "stopped"
    DEPENDENCY = "dependency"
    BUSY = "busy"


class TaskStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    UNKNOWN = "unknown"


class TaskBusyError(RuntimeError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"busy: task '{task_id}' is already running")
        self.task_id = task_id


@dataclass(frozen=True)
class TaskResult:
    task_id: str
    success: bool
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int
    timestamp: str
    error: str | None = None
    failure: FailureKind | None = None
    attempt: int = 1

    @property
    def timed_out(self) -> bool:
        return self.failure is FailureKind.TIMEOUT

    @property
    def retryable(self) -> bool:
        return self.failure in (FailureKind.NON_ZERO_EXIT, FailureKind.TIMEOUT)

    @classmethod
    def spawn_failure(
        cls, task_id: str, exc: BaseException, *, duration_ms: int = 0, attempt: int = 1
    ) -> TaskResult:
        return cls(
            task_id=task_id,
            success=False,
            exit_code=-1,
            stdout="",
            stderr="",
            duration_ms=duration_ms,
            timestamp=utc_now_iso(),
            error=f"spawn: {exc}",
            failure=FailureKind.SPAWN,
            attempt=attempt,
        )

    @classmethod
    def dependency_unsatisfied(cls, task_id: str, unmet: list[str]) -> TaskResult:
        return cls(
            task_id=task_id,
            success=False,
            exit_code=-1,
            stdout="",
            stderr="",
            duration_ms=0,
            timestamp=utc_now_iso(),
            error="dependency not satisfied: " + ", ".join(unmet),
            failure=FailureKind.DEPENDENCY,
            attempt=0,
        )

    @classmethod
    def busy(cls, task_id: str) -> TaskResult:
        return cls(
            task_id=task_id,
            success=False,
            exit_code=-1,
            stdout="",
            stderr="",
            duration_ms=0,
            timestamp=utc_now_iso(),
            error=str(TaskBusyError(task_id)),
            failure=FailureKind.BUSY,
            attempt=0,
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "taskId": self.task_id,
            "success": self.success,
            "exitCode": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "durationMs": self.duration_ms,
            "timestamp": self.timestamp,
            "error": self.error,
            "failure": self.failure.value if self.failure else None,
            "timedOut": self.timed_out,
            "attempt": self.attempt,
        }


@dataclass(frozen=True)
class TaskEvent:
    kind: EventKind
    task_id: str
    attempt: int = 1
    stream: StreamKind | None = None
    chunk: str | None = None
    result: TaskResult | None = None
    delay_ms: int = 0


@dataclass
class TaskExecution:
    """One in-flight attempt. Owned by the engine while the process runs."""

    spec: TaskSpec
    attempt: int = 1
    on_output: Callable[[TaskExecution, StreamKind, str], None] | None = None
    started_at: float = field(default_factory=time.monotonic)
    stop_requested: asyncio.Event = field(default_factory=asyncio.Event)
    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    pid: int | None = None

    @property
    def task_id(self) -> str:
        return self.spec.id

    def elapsed_ms(self) -> int:
        return int(round((time.monotonic() - self.started_at) * 1000))

    def record(self, stream: StreamKind, chunk: str) -> None:
        if not chunk:
            return
        if self.on_output is not None:
            self.on_output(self, stream, chunk)
        if stream is StreamKind.STDOUT:
            self.stdout.append(chunk)
        else:
            self.stderr.append(chunk)

    def request_stop(self) -> None:
        self.stop_requested.set()

    def stdout_text(self) -> str:
        return "".join(self.stdout)

    def stderr_text(self) -> str:
        return "".join(self.stderr)
