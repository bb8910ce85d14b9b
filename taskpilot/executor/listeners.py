from __future__ import annotations

import logging
import sys
from typing import TextIO

from .types import EventKind, StreamKind, TaskEvent


class LoggingListener:
    """Forwards engine lifecycle events to a logger."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger("taskpilot.events")

    def __call__(self, event: TaskEvent) -> None:
        match event.kind:
            case EventKind.STARTED:
                self.logger.info("[%s] started (attempt %d)", event.task_id, event.attempt)
            case EventKind.OUTPUT:
                for line in (event.chunk or "").splitlines():
                    self.logger.debug("[%s] %s: %s", event.task_id, event.stream.value, line)
            case EventKind.COMPLETED:
                self.logger.info(
                    "[%s] completed in %dms", event.task_id, event.result.duration_ms
                )
            case EventKind.TIMEOUT:
                self.logger.warning("[%s] %s", event.task_id, event.result.error)
            case EventKind.FAILED:
                self.logger.warning("[%s] failed: %s", event.task_id, event.result.error)
            case EventKind.RETRY:
                self.logger.info(
                    "[%s] retrying in %dms (attempt %d)",
                    event.task_id,
                    event.delay_ms,
                    event.attempt,
                )


class ConsolePrinter:
    """Prints live task output, one ``[task-id] line`` per line."""

    def __init__(self, out: TextIO | None = None, err: TextIO | None = None) -> None:
        self.out = out
        self.err = err
        self._partial: dict[tuple[str, StreamKind], str] = {}

    def __call__(self, event: TaskEvent) -> None:
        if event.kind is EventKind.OUTPUT:
            key = (event.task_id, event.stream)
            text = self._partial.pop(key, "") + (event.chunk or "")
            *lines, rest = text.split("\n")
            if rest:
                self._partial[key] = rest
            for line in lines:
                self._write(event.stream, f"[{event.task_id}] {line}")
        elif event.kind is not EventKind.STARTED:
            for stream in StreamKind:
                rest = self._partial.pop((event.task_id, stream), "")
                if rest:
                    self._write(stream, f"[{event.task_id}] {rest}")

    def _write(self, stream: StreamKind, line: str) -> None:
        if stream is StreamKind.STDERR:
            print(line, file=self.err or sys.stderr)
        else:
            print(line, file=self.out or sys.stdout)
