from __future__ import annotations

import os
import time
from pathlib import Path

import pytest

from taskpilot.config.types import TaskSpec
from taskpilot.executor import (
    EventKind,
    ExecutionEngine,
    FailureKind,
    StreamKind,
    TaskEvent,
    TaskExecution,
)
from taskpilot.runner import default_runner

from helpers import py_spec

posix_only = pytest.mark.skipif(os.name != "posix", reason="POSIX signals")


async def _run(spec: TaskSpec, *, timeout_ms: int = 0, kill_grace_ms: int = 2000):
    runner = default_runner(kill_grace_ms=kill_grace_ms)
    return await runner.run(TaskExecution(spec=spec), timeout_ms=timeout_ms)


@pytest.mark.asyncio
async def test_exit_zero_is_success_with_captured_output() -> None:
    result = await _run(
        py_spec("ok", "import sys; print('out'); print('err', file=sys.stderr)")
    )

    assert result.success
    assert result.exit_code == 0
    assert result.error is None
    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"
    assert result.duration_ms >= 0


@pytest.mark.asyncio
async def test_non_zero_exit_code_is_preserved() -> None:
    result = await _run(py_spec("bad", "raise SystemExit(5)"))

    assert not result.success
    assert result.exit_code == 5
    assert result.failure is FailureKind.NON_ZERO_EXIT


@pytest.mark.asyncio
async def test_missing_executable_is_a_spawn_failure() -> None:
    result = await _run(TaskSpec(id="ghost", command="taskpilot-no-such-binary-xyz"))

    assert not result.success
    assert result.exit_code == -1
    assert result.failure is FailureKind.SPAWN
    assert result.error.startswith("spawn")


@pytest.mark.asyncio
async def test_timeout_kills_long_running_process() -> None:
    spec = py_spec("sleepy", "import time; time.sleep(30)")

    started = time.monotonic()
    result = await _run(spec, timeout_ms=300, kill_grace_ms=500)
    elapsed = time.monotonic() - started

    assert not result.success
    assert result.exit_code == -1
    assert result.timed_out
    assert "timedOut=true" in result.error
    assert elapsed < 0.3 + 0.5 + 3.0


@posix_only
@pytest.mark.asyncio
async def test_process_ignoring_sigterm_is_killed_after_grace() -> None:
    spec = py_spec(
        "stubborn",
        "import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); time.sleep(30)",
    )

    started = time.monotonic()
    result = await _run(spec, timeout_ms=300, kill_grace_ms=300)

    assert result.timed_out
    assert time.monotonic() - started < 0.3 + 0.3 + 3.0


@pytest.mark.asyncio
async def test_env_and_working_dir_are_applied(tmp_path: Path) -> None:
    spec = py_spec(
        "envtask",
        "import os; from pathlib import Path; Path('written.txt').write_text(os.environ['TP_TEST'])",
        env={"TP_TEST": "ok"},
        working_dir=str(tmp_path),
    )

    result = await _run(spec)

    assert result.success
    assert (tmp_path / "written.txt").read_text() == "ok"


@pytest.mark.asyncio
async def test_output_is_streamed_before_completion() -> None:
    engine = ExecutionEngine(default_runner())
    events: list[TaskEvent] = []
    engine.subscribe(events.append)

    code = "import sys, time; print('first', flush=True); time.sleep(0.2); print('second')"
    result = await engine.execute_task(py_spec("stream", code))

    kinds = [e.kind for e in events]
    assert kinds[0] is EventKind.STARTED
    assert kinds[-1] is EventKind.COMPLETED
    chunks = [e.chunk for e in events if e.kind is EventKind.OUTPUT]
    assert len(chunks) >= 2
    assert all(e.stream is StreamKind.STDOUT for e in events if e.kind is EventKind.OUTPUT)
    assert "".join(chunks) == result.stdout
    assert result.stdout.split() == ["first", "second"]


@pytest.mark.asyncio
async def test_stop_request_terminates_process() -> None:
    engine = ExecutionEngine(default_runner(kill_grace_ms=500))
    started: list[str] = []

    def stop_on_first_output(event: TaskEvent) -> None:
        if event.kind is EventKind.OUTPUT and not started:
            started.append(event.task_id)
            engine.stop_task(event.task_id)

    engine.subscribe(stop_on_first_output)
    code = "import time; print('ready', flush=True); time.sleep(30)"

    began = time.monotonic()
    result = await engine.execute_task(py_spec("victim", code, max_retries=2))

    assert started == ["victim"]
    assert result.failure is FailureKind.STOPPED
    assert result.exit_code == -1
    assert result.attempt == 1
    assert time.monotonic() - began < 10
