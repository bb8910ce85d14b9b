from __future__ import annotations

from typing import Iterable, Iterator

from taskpilot.config.types import ConfigError, ProjectConfig, TaskSpec
from taskpilot.graph import TaskGraph


class UnknownTaskError(ConfigError, LookupError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Unknown task: {task_id}")
        self.task_id = task_id


class UnknownDependencyError(ConfigError):
    def __init__(self, task_id: str, dep: str) -> None:
        super().__init__(f"Task '{task_id}' has unknown dependency '{dep}'")
        self.task_id = task_id
        self.dep = dep


class TaskRegistry:
    """Read-only catalog of task specs, validated once at construction."""

    def __init__(self, specs: Iterable[TaskSpec]) -> None:
        tasks: dict[str, TaskSpec] = {}
        for spec in specs:
            if spec.id in tasks:
                raise ConfigError(f"Duplicate task id: {spec.id}")
            tasks[spec.id] = spec

        for spec in tasks.values():
            for dep in spec.dependencies:
                if dep not in tasks:
                    raise UnknownDependencyError(spec.id, dep)

        self._tasks = tasks
        self._graph = TaskGraph.from_specs(tasks.values())
        # Raises CycleError for a cyclic catalog.
        self._graph.topo_order()

    @classmethod
    def from_project(cls, project: ProjectConfig) -> TaskRegistry:
        return cls(project.tasks.values())

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[TaskSpec]:
        for task_id in self.ids():
            yield self._tasks[task_id]

    @property
    def graph(self) -> TaskGraph:
        return self._graph

    def ids(self) -> list[str]:
        return sorted(self._tasks)

    def resolve(self, task_id: str) -> TaskSpec:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise UnknownTaskError(task_id) from None

    def dependencies_of(self, task_id: str) -> tuple[str, ...]:
        return self.resolve(task_id).dependencies
