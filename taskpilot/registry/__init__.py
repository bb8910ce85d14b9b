from .catalog import DEFAULT_WORKFLOWS, default_project, default_specs
from .registry import TaskRegistry, UnknownDependencyError, UnknownTaskError

__all__ = [
    "DEFAULT_WORKFLOWS",
    "default_project",
    "default_specs",
    "TaskRegistry",
    "UnknownDependencyError",
    "UnknownTaskError",
]
