from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from taskpilot.config.types import ConfigError, ProjectConfig, TaskSpec
from taskpilot.executor import ExecutionEngine, TaskResult
from taskpilot.graph import GraphError
from taskpilot.registry import TaskRegistry
from taskpilot.reports import ReportWriter
from taskpilot.runner import ProcessRunner, default_runner

from .types import UnknownWorkflowError, WorkflowReport, WorkflowState

logger = logging.getLogger(__name__)


class WorkflowManager:
    """Runs named workflows: ordered lists of registry task ids."""

    def __init__(
        self,
        registry: TaskRegistry,
        engine: ExecutionEngine,
        *,
        writer: ReportWriter | None = None,
    ) -> None:
        self.registry = registry
        self.engine = engine
        self.writer = writer
        self._workflows: dict[str, tuple[TaskSpec, ...]] = {}

    @classmethod
    def from_project(
        cls,
        project: ProjectConfig,
        *,
        runner: ProcessRunner | None = None,
        reports_dir: str | Path | None = None,
    ) -> WorkflowManager:
        settings = project.settings
        writer = ReportWriter(reports_dir or settings.reports_dir)
        engine = ExecutionEngine(
            runner or default_runner(kill_grace_ms=settings.kill_grace_ms),
            writer=writer,
            default_timeout_ms=settings.default_timeout_ms,
            max_results=settings.max_stored_results,
            retry_backoff_ms=settings.retry_backoff_ms,
            retry_backoff_max_ms=settings.retry_backoff_max_ms,
        )
        manager = cls(TaskRegistry.from_project(project), engine, writer=writer)
        for name, task_ids in project.workflows.items():
            manager.register_workflow(name, task_ids)
        return manager

    def register_workflow(self, name: str, task_ids: Iterable[str]) -> None:
        ids = list(task_ids)
        if not ids:
            raise ConfigError(f"workflow {name}: no tasks listed")

        duplicates = sorted({tid for tid in ids if ids.count(tid) > 1})
        if duplicates:
            raise ConfigError(f"workflow {name}: tasks listed twice: {', '.join(duplicates)}")

        self._workflows[name] = tuple(self.registry.resolve(tid) for tid in ids)

    def workflows(self) -> list[str]:
        return list(self._workflows)

    def tasks_of(self, name: str) -> list[str]:
        return [spec.id for spec in self._specs_of(name)]

    def order(self, name: str) -> list[TaskSpec]:
        return self._order(self.tasks_of(name))

    async def run(self, name: str) -> WorkflowReport:
        return await self._run(name, self.tasks_of(name))

    async def run_target(self, task_id: str) -> WorkflowReport:
        """Run ``task_id`` together with everything it transitively depends on."""
        self.registry.resolve(task_id)
        return await self._run(task_id, self.registry.graph.subgraph_order(task_id))

    async def run_task(self, task_id: str) -> TaskResult:
        return await self.engine.execute_task(self.registry.resolve(task_id))

    async def shutdown(self) -> list[str]:
        """Stop every running task and wait for them to wind down."""
        stopped = self.engine.stop_all_tasks()
        await self.engine.wait_idle()
        return stopped

    def _specs_of(self, name: str) -> tuple[TaskSpec, ...]:
        try:
            return self._workflows[name]
        except KeyError:
            raise UnknownWorkflowError(name) from None

    def _order(self, task_ids: list[str]) -> list[TaskSpec]:
        ordered = self.registry.graph.restricted_order(task_ids)
        return [self.registry.resolve(tid) for tid in ordered]

    async def _run(self, name: str, task_ids: list[str]) -> WorkflowReport:
        started = datetime.now(timezone.utc)
        started_mono = time.monotonic()
        report_id = f"{name}-{int(started.timestamp() * 1000)}"
        logger.info("Starting workflow %s: %s", name, ", ".join(task_ids))

        try:
            specs = self._order(task_ids)
        except GraphError as exc:
            logger.error("Workflow %s cannot be ordered: %s", name, exc)
            report = self._report(report_id, name, started, started_mono, (), error=str(exc))
        else:
            results = await self.engine.execute_workflow(specs)
            report = self._report(report_id, name, started, started_mono, tuple(results))

        summary = report.summary
        logger.info(
            "Workflow %s finished: %d/%d tasks successful in %dms",
            name,
            summary.successful_tasks,
            summary.total_tasks,
            report.duration_ms,
        )
        if self.writer is not None:
            self.writer.save_workflow_report(report)
        return report

    @staticmethod
    def _report(
        report_id: str,
        name: str,
        started: datetime,
        started_mono: float,
        results: tuple[TaskResult, ...],
        *,
        error: str | None = None,
    ) -> WorkflowReport:
        ended = datetime.now(timezone.utc)
        return WorkflowReport(
            id=report_id,
            name=name,
            state=WorkflowState.CONFIG_ERROR if error else WorkflowState.COMPLETED,
            start_time=started.isoformat(timespec="milliseconds"),
            end_time=ended.isoformat(timespec="milliseconds"),
            duration_ms=int(round((time.monotonic() - started_mono) * 1000)),
            results=results,
            error=error,
        )
