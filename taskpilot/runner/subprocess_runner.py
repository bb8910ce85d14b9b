from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import os
import signal
import subprocess
from asyncio.subprocess import Process

from taskpilot.config.types import DEFAULT_KILL_GRACE_MS
from taskpilot.executor.types import (
    FailureKind,
    StreamKind,
    TaskExecution,
    TaskResult,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 4096
# Upper bound on reading leftover output once the process itself is gone.
_DRAIN_TIMEOUT_S = 1.0


class SubprocessRunner:
    """Runs a task's command as a child process on the running event loop."""

    def __init__(
        self,
        *,
        kill_grace_ms: int = DEFAULT_KILL_GRACE_MS,
        chunk_size: int = _CHUNK_SIZE,
    ) -> None:
        self.kill_grace_ms = kill_grace_ms
        self.chunk_size = chunk_size

    async def run(self, execution: TaskExecution, *, timeout_ms: int) -> TaskResult:
        spec = execution.spec
        try:
            process = await asyncio.create_subprocess_exec(
                *spec.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=spec.working_dir or None,
                env={**os.environ, **spec.env},
                **self._spawn_options(),
            )
        except OSError as exc:
            logger.warning("Could not start %s (%s): %s", spec.id, spec.command, exc)
            return TaskResult.spawn_failure(
                spec.id, exc, duration_ms=execution.elapsed_ms(), attempt=execution.attempt
            )

        execution.pid = process.pid
        logger.debug("Started %s as pid %s: %s", spec.id, process.pid, spec.argv)

        pumps = [
            asyncio.create_task(self._pump(process.stdout, StreamKind.STDOUT, execution)),
            asyncio.create_task(self._pump(process.stderr, StreamKind.STDERR, execution)),
        ]
        exited = asyncio.create_task(process.wait())
        stopped = asyncio.create_task(execution.stop_requested.wait())
        deadline = timeout_ms / 1000 if timeout_ms > 0 else None
        failure: FailureKind | None = None

        try:
            done, _ = await asyncio.wait(
                {exited, stopped},
                timeout=deadline,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if exited not in done:
                if stopped in done:
                    failure = FailureKind.STOPPED
                    logger.info("Stopping %s (pid %s) on request", spec.id, process.pid)
                else:
                    failure = FailureKind.TIMEOUT
                    logger.warning(
                        "%s exceeded its %dms timeout, terminating pid %s",
                        spec.id,
                        timeout_ms,
                        process.pid,
                    )
                await self._terminate(process, exited)
        except asyncio.CancelledError:
            await self._terminate(process, exited)
            raise
        finally:
            stopped.cancel()
            await self._drain(pumps)

        return self._build_result(execution, process, failure, timeout_ms)

    def _build_result(
        self,
        execution: TaskExecution,
        process: Process,
        failure: FailureKind | None,
        timeout_ms: int,
    ) -> TaskResult:
        exit_code = process.returncode if process.returncode is not None else -1
        error = None

        match failure:
            case FailureKind.TIMEOUT:
                exit_code = -1
                error = f"timedOut=true: exceeded {timeout_ms}ms"
            case FailureKind.STOPPED:
                exit_code = -1
                error = "stopped: terminated on request"
            case _ if exit_code != 0:
                failure = FailureKind.NON_ZERO_EXIT
                error = f"exit code {exit_code}"

        return TaskResult(
            task_id=execution.task_id,
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

    async def _pump(
        self,
        reader: asyncio.StreamReader | None,
        stream: StreamKind,
        execution: TaskExecution,
    ) -> None:
        if reader is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await reader.read(self.chunk_size)
            if not data:
                break
            execution.record(stream, decoder.decode(data))
        execution.record(stream, decoder.decode(b"", final=True))

    async def _drain(self, pumps: list[asyncio.Task[None]]) -> None:
        done, pending = await asyncio.wait(pumps, timeout=_DRAIN_TIMEOUT_S)
        for task in pending:
            task.cancel()
        if pending:
            logger.debug("Output still open after exit, %d reader(s) cancelled", len(pending))
            await asyncio.wait(pending)
        for task in done:
            task.result()

    async def _terminate(self, process: Process, exited: asyncio.Task[int]) -> None:
        if process.returncode is not None:
            return

        self._signal(process, graceful=True)
        done, _ = await asyncio.wait({exited}, timeout=self.kill_grace_ms / 1000)
        if not done:
            logger.warning("pid %s ignored termination, killing it", process.pid)
            self._signal(process, graceful=False)
            await exited

    def _spawn_options(self) -> dict:
        return {}

    def _signal(self, process: Process, *, graceful: bool) -> None:
        with contextlib.suppress(ProcessLookupError):
            if graceful:
                process.terminate()
            else:
                process.kill()


class PosixProcessRunner(SubprocessRunner):
    """Runs each task in its own session and signals the whole process group."""

    def _spawn_options(self) -> dict:
        return {"start_new_session": True}

    def _signal(self, process: Process, *, graceful: bool) -> None:
        sig = signal.SIGTERM if graceful else signal.SIGKILL
        with contextlib.suppress(ProcessLookupError):
            os.killpg(process.pid, sig)


class WindowsProcessRunner(SubprocessRunner):
    def _spawn_options(self) -> dict:
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}


def default_runner(*, kill_grace_ms: int = DEFAULT_KILL_GRACE_MS) -> SubprocessRunner:
    if os.name == "nt":
        return WindowsProcessRunner(kill_grace_ms=kill_grace_ms)
    return PosixProcessRunner(kill_grace_ms=kill_grace_ms)
