from __future__ import annotations

from typing import Protocol

from taskpilot.executor.types import TaskExecution, TaskResult


class ProcessRunner(Protocol):
    """Runs one attempt of a task and resolves it to a TaskResult.

    Spawn failures, non-zero exits, timeouts and stop requests are returned
    as failed results, never raised. ``timeout_ms <= 0`` means no deadline.
    """

    async def run(self, execution: TaskExecution, *, timeout_ms: int) -> TaskResult: ...
