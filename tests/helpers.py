from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass
from pathlib import Path

from taskpilot.config.types import TaskSpec
from taskpilot.executor import ExecutionEngine
from taskpilot.executor.types import (
    FailureKind,
    StreamKind,
    TaskExecution,
    TaskResult,
    utc_now_iso,
)
from taskpilot.registry import TaskRegistry
from taskpilot.reports import ReportWriter
from taskpilot.workflow import WorkflowManager


@dataclass
class Step:
    """What the fake runner does for one attempt of a task."""

    exit_code: int = 0
    delay: float = 0.0
    stdout: str = ""
    stderr: str = ""
    spawn_error: bool = False


class ScriptedRunner:
    """Deterministic stand-in for a process runner.

    ``scripts`` maps a task id to the steps of its successive attempts; the
    last step repeats once the script runs out. Unscripted tasks succeed.
    """

    def __init__(self, scripts: dict[str, list[Step]] | None = None) -> None:
        self.scripts = scripts or {}
        self.calls: list[str] = []

    def calls_of(self, task_id: str) -> int:
        return self.calls.count(task_id)

    async def run(self, execution: TaskExecution, *, timeout_ms: int) -> TaskResult:
        tid = execution.task_id
        self.calls.append(tid)
        steps = self.scripts.get(tid) or [Step()]
        step = steps[min(self.calls_of(tid), len(steps)) - 1]

        if step.spawn_error:
            return TaskResult.spawn_failure(
                tid, FileNotFoundError(f"no such command: {execution.spec.command}"),
                attempt=execution.attempt,
            )

        execution.record(StreamKind.STDOUT, step.stdout)
        execution.record(StreamKind.STDERR, step.stderr)

        failure = None
        if step.delay:
            sleeper = asyncio.create_task(asyncio.sleep(step.delay))
            stopper = asyncio.create_task(execution.stop_requested.wait())
            done, _ = await asyncio.wait(
                {sleeper, stopper},
                timeout=timeout_ms / 1000 if timeout_ms > 0 else None,
                return_when=asyncio.FIRST_COMPLETED,
            )
            sleeper.cancel()
            stopper.cancel()
            if sleeper not in done:
                failure = FailureKind.STOPPED if stopper in done else FailureKind.TIMEOUT

        exit_code = -1 if failure else step.exit_code
        if failure is None and exit_code != 0:
            failure = FailureKind.NON_ZERO_EXIT
        error = {
            None: None,
            FailureKind.TIMEOUT: f"timedOut=true: exceeded {timeout_ms}ms",
            FailureKind.STOPPED: "stopped: terminated on request",
            FailureKind.NON_ZERO_EXIT: f"exit code {exit_code}",
        }[failure]

        return TaskResult(
            task_id=tid,
            success=failure is None,
            exit_code=exit_code,
            stdout=execution.stdout_text(),
            stderr=execution.stderr_text(),
            duration_ms=execution.elapsed_ms(),
            timestamp=utc_now_iso(),
            error=error,
            failure=failure,
            attempt=execution.attempt,
        )


def spec(task_id: str, *deps: str, **fields) -> TaskSpec:
    return TaskSpec(id=task_id, command="true", dependencies=deps, **fields)


def py(code: str) -> tuple[str, tuple[str, ...]]:
    """Command and args running ``code`` with the current interpreter."""
    return str(Path(sys.executable)), ("-c", code)


def py_spec(task_id: str, code: str, *deps: str, **fields) -> TaskSpec:
    command, args = py(code)
    return TaskSpec(id=task_id, command=command, args=args, dependencies=deps, **fields)


def make_engine(runner, **options) -> ExecutionEngine:
    """Engine that retries without pausing unless told otherwise."""
    options.setdefault("retry_backoff_ms", 0)
    return ExecutionEngine(runner, **options)


def build_manager(
    specs: list[TaskSpec],
    runner,
    reports_dir: Path | None = None,
    **engine_options,
) -> WorkflowManager:
    writer = ReportWriter(reports_dir) if reports_dir is not None else None
    engine = make_engine(runner, writer=writer, **engine_options)
    return WorkflowManager(TaskRegistry(specs), engine, writer=writer)
