from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping

if TYPE_CHECKING:
    from taskpilot.executor.types import TaskResult
    from taskpilot.workflow.types import WorkflowReport

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
_MAX_COLLISIONS = 1000


def _safe_name(value: str) -> str:
    return _UNSAFE_CHARS.sub("_", value).strip("._") or "unnamed"


def _stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")


class ReportWriter:
    """Writes task and workflow reports as write-once JSON files."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def save_task_result(self, result: TaskResult) -> Path | None:
        stem = f"task-{_safe_name(result.task_id)}-{_stamp()}-a{result.attempt}"
        return self._save(stem, result.to_record())

    def save_workflow_report(self, report: WorkflowReport) -> Path | None:
        return self._save(f"workflow-{_safe_name(report.id)}", report.to_record())

    def reports(self, prefix: str = "") -> list[Path]:
        if not self.directory.is_dir():
            return []
        return sorted(self.directory.glob(f"{prefix}*.json"))

    def _save(self, stem: str, record: Mapping[str, Any]) -> Path | None:
        # A failed save is logged; it never changes the outcome of a run.
        try:
            path = self._write_new(stem, json.dumps(record, indent=2))
        except OSError:
            logger.exception("Failed to save report %s in %s", stem, self.directory)
            return None

        logger.info("Report saved: %s", path)
        return path

    def _write_new(self, stem: str, payload: str) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        for index in range(_MAX_COLLISIONS):
            suffix = f"-{index}" if index else ""
            path = self.directory / f"{stem}{suffix}.json"
            try:
                with path.open("x", encoding="utf-8") as handle:
                    handle.write(payload)
                    handle.write("\n")
            except FileExistsError:
                continue
            return path

        raise FileExistsError(f"No free report file name for {stem} in {self.directory}")
