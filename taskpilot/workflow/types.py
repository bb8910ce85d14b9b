from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from taskpilot.config.types import ConfigError
from taskpilot.executor.types import TaskResult


class UnknownWorkflowError(ConfigError, LookupError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Workflow '{name}' not found")
        self.name = name


class WorkflowState(str, Enum):
    COMPLETED = "completed"
    CONFIG_ERROR = "config_error"


@dataclass(frozen=True)
class WorkflowSummary:
    success: bool
    success_rate: float
    average_task_duration_ms: float
    total_duration_ms: int
    total_tasks: int
    successful_tasks: int
    failed_tasks: int

    @classmethod
    def of(cls, results: tuple[TaskResult, ...]) -> WorkflowSummary:
        total = len(results)
        successful = sum(1 for r in results if r.success)
        if total == 0:
            return cls(False, 0.0, 0.0, 0, 0, 0, 0)

        return cls(
            success=successful == total,
            success_rate=successful / total,
            average_task_duration_ms=sum(r.duration_ms for r in results) / total,
            total_duration_ms=sum(r.duration_ms for r in results),
            total_tasks=total,
            successful_tasks=successful,
            failed_tasks=total - successful,
        )


@dataclass(frozen=True)
class WorkflowReport:
    id: str
    name: str
    state: WorkflowState
    start_time: str
    end_time: str
    duration_ms: int
    results: tuple[TaskResult, ...] = ()
    error: str | None = None

    @property
    def summary(self) -> WorkflowSummary:
        return WorkflowSummary.of(self.results)

    @property
    def success(self) -> bool:
        return self.state is WorkflowState.COMPLETED and self.summary.success

    def to_record(self) -> dict[str, Any]:
        summary = self.summary
        return {
            "id": self.id,
            "name": self.name,
            "state": self.state.value,
            "error": self.error,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "duration": self.duration_ms,
            "results": [result.to_record() for result in self.results],
            "summary": {
                "success": summary.success,
                "successRate": summary.success_rate,
                "averageTaskDuration": summary.average_task_duration_ms,
                "totalDuration": summary.total_duration_ms,
                "totalTasks": summary.total_tasks,
                "successfulTasks": summary.successful_tasks,
                "failedTasks": summary.failed_tasks,
            },
        }
