from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import TYPE_CHECKING, Callable, Iterable

from taskpilot.config.types import (
    DEFAULT_MAX_STORED_RESULTS,
    DEFAULT_RETRY_BACKOFF_MAX_MS,
    DEFAULT_RETRY_BACKOFF_MS,
    DEFAULT_TIMEOUT_MS,
    TaskSpec,
)

from .types import (
    EventKind,
    FailureKind,
    StreamKind,
    TaskBusyError,
    TaskEvent,
    TaskExecution,
    TaskResult,
    TaskStatus,
)

if TYPE_CHECKING:
    from taskpilot.reports import ReportWriter
    from taskpilot.runner.types import ProcessRunner

logger = logging.getLogger(__name__)

Listener = Callable[[TaskEvent], None]


class ExecutionEngine:
    """Runs tasks through a ProcessRunner and tracks running and finished ones.

    At most one execution per task id is in flight at any time, counting the
    pause between retry attempts. Finished results are kept per id (newest
    wins) in a bounded map. All state is touched only from the event loop
    thread.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        *,
        writer: ReportWriter | None = None,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_results: int = DEFAULT_MAX_STORED_RESULTS,
        retry_backoff_ms: int = DEFAULT_RETRY_BACKOFF_MS,
        retry_backoff_max_ms: int = DEFAULT_RETRY_BACKOFF_MAX_MS,
    ) -> None:
        if max_results < 1:
            raise ValueError("max_results must be at least 1")
        self.runner = runner
        self.writer = writer
        self.default_timeout_ms = default_timeout_ms
        self.max_results = max_results
        self.retry_backoff_ms = retry_backoff_ms
        self.retry_backoff_max_ms = retry_backoff_max_ms
        self._running: dict[str, TaskExecution] = {}
        self._backing_off: dict[str, asyncio.Event] = {}
        self._idle = asyncio.Event()
        self._idle.set()
        self._completed: OrderedDict[str, TaskResult] = OrderedDict()
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def effective_timeout_ms(self, spec: TaskSpec) -> int:
        return spec.timeout_ms if spec.timeout_ms > 0 else self.default_timeout_ms

    def retry_delay_ms(self, attempt: int) -> int:
        """Pause after failed ``attempt``: the base doubled per attempt, capped."""
        delay = self.retry_backoff_ms * 2 ** (attempt - 1)
        if self.retry_backoff_max_ms > 0:
            delay = min(delay, self.retry_backoff_max_ms)
        return delay

    async def execute_task(self, spec: TaskSpec) -> TaskResult:
        """Run ``spec`` with its retry budget and return the last attempt.

        Raises TaskBusyError if the task id is already running. A stop request
        during the pause between attempts ends the loop with the last result.
        """
        attempt = 1
        while True:
            result = await self._attempt(spec, attempt)
            if result.success or not result.retryable or attempt > spec.max_retries:
                return result

            delay_ms = self.retry_delay_ms(attempt)
            logger.info(
                "Retrying %s in %dms (attempt %d of %d): %s",
                spec.id,
                delay_ms,
                attempt + 1,
                spec.max_retries + 1,
                result.error,
            )
            self._emit(
                TaskEvent(
                    EventKind.RETRY,
                    spec.id,
                    attempt=attempt + 1,
                    result=result,
                    delay_ms=delay_ms,
                )
            )
            if await self._backoff(spec.id, delay_ms):
                logger.info("Retry of %s cancelled by stop request", spec.id)
                return result
            attempt += 1

    async def execute_workflow(self, specs: Iterable[TaskSpec]) -> list[TaskResult]:
        """Run ``specs`` in the given order, skipping tasks with unmet dependencies.

        A dependency is met only when it has a stored success, is not in
        flight, and did not fail or get skipped earlier in this same call.
        """
        results: list[TaskResult] = []
        failed: set[str] = set()

        for spec in specs:
            unmet = [
                dep
                for dep in spec.dependencies
                if dep in failed or self._in_flight(dep) or not self._succeeded(dep)
            ]
            if unmet:
                logger.warning("Skipping %s, dependency not satisfied: %s", spec.id, unmet)
                result = TaskResult.dependency_unsatisfied(spec.id, unmet)
                self._finish(result)
            else:
                try:
                    result = await self.execute_task(spec)
                except TaskBusyError:
                    logger.warning("Skipping %s, already running elsewhere", spec.id)
                    result = TaskResult.busy(spec.id)

            if not result.success:
                failed.add(spec.id)
            results.append(result)

        return results

    def stop_task(self, task_id: str) -> bool:
        execution = self._running.get(task_id)
        if execution is not None:
            logger.info("Stop requested for %s", task_id)
            execution.request_stop()
            return True

        pause = self._backing_off.get(task_id)
        if pause is not None:
            logger.info("Stop requested for %s while waiting to retry", task_id)
            pause.set()
            return True

        return False

    def stop_all_tasks(self) -> list[str]:
        in_flight = [*self._running, *self._backing_off]
        return [task_id for task_id in in_flight if self.stop_task(task_id)]

    async def wait_idle(self) -> None:
        """Wait until no task is running or waiting to retry."""
        await self._idle.wait()

    def status(self, task_id: str) -> TaskStatus:
        if self._in_flight(task_id):
            return TaskStatus.RUNNING
        result = self._completed.get(task_id)
        if result is None:
            return TaskStatus.UNKNOWN
        return TaskStatus.COMPLETED if result.success else TaskStatus.FAILED

    def running_ids(self) -> list[str]:
        return list(self._running)

    def completed_results(self) -> list[TaskResult]:
        return list(self._completed.values())

    def result_of(self, task_id: str) -> TaskResult | None:
        return self._completed.get(task_id)

    async def _attempt(self, spec: TaskSpec, attempt: int) -> TaskResult:
        if self._in_flight(spec.id):
            raise TaskBusyError(spec.id)

        execution = TaskExecution(spec=spec, attempt=attempt, on_output=self._on_output)
        self._running[spec.id] = execution
        self._idle.clear()
        logger.info("Starting %s (%s), attempt %d", spec.id, spec.name, attempt)
        self._emit(TaskEvent(EventKind.STARTED, spec.id, attempt=attempt))

        try:
            result = await self.runner.run(
                execution, timeout_ms=self.effective_timeout_ms(spec)
            )
        finally:
            del self._running[spec.id]
            self._update_idle()

        self._finish(result)
        return result

    async def _backoff(self, task_id: str, delay_ms: int) -> bool:
        """Sleep ``delay_ms``; True if a stop request cut the pause short."""
        if delay_ms <= 0:
            return False

        stop = asyncio.Event()
        self._backing_off[task_id] = stop
        self._idle.clear()
        try:
            await asyncio.wait_for(stop.wait(), delay_ms / 1000)
        except asyncio.TimeoutError:
            return False
        finally:
            del self._backing_off[task_id]
            self._update_idle()
        return True

    def _in_flight(self, task_id: str) -> bool:
        return task_id in self._running or task_id in self._backing_off

    def _update_idle(self) -> None:
        if not self._running and not self._backing_off:
            self._idle.set()

    def _finish(self, result: TaskResult) -> None:
        self._completed.pop(result.task_id, None)
        self._completed[result.task_id] = result
        while len(self._completed) > self.max_results:
            self._completed.popitem(last=False)

        if self.writer is not None:
            self.writer.save_task_result(result)

        if result.success:
            kind = EventKind.COMPLETED
            logger.info("%s completed in %dms", result.task_id, result.duration_ms)
        elif result.failure is FailureKind.TIMEOUT:
            kind = EventKind.TIMEOUT
        else:
            kind = EventKind.FAILED
            logger.info("%s failed: %s", result.task_id, result.error)

        self._emit(TaskEvent(kind, result.task_id, attempt=result.attempt, result=result))

    def _succeeded(self, task_id: str) -> bool:
        result = self._completed.get(task_id)
        return result is not None and result.success

    def _on_output(self, execution: TaskExecution, stream: StreamKind, chunk: str) -> None:
        self._emit(
            TaskEvent(
                EventKind.OUTPUT,
                execution.task_id,
                attempt=execution.attempt,
                stream=stream,
                chunk=chunk,
            )
        )

    def _emit(self, event: TaskEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Listener %r failed on %s event", listener, event.kind.value)
