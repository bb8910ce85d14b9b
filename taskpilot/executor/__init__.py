from .engine import ExecutionEngine, Listener
from .listeners import ConsolePrinter, LoggingListener
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

__all__ = [
    "ExecutionEngine",
    "Listener",
    "ConsolePrinter",
    "LoggingListener",
    "EventKind",
    "FailureKind",
    "StreamKind",
    "TaskBusyError",
    "TaskEvent",
    "TaskExecution",
    "TaskResult",
    "TaskStatus",
]
