from .dag import TaskGraph
from .types import CycleError, GraphError, UnorderableError

__all__ = ["TaskGraph", "CycleError", "GraphError", "UnorderableError"]
