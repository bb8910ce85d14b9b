from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterable

from taskpilot.config.types import TaskSpec

from .types import CycleError, UnorderableError


class _Visit(Enum):
    UNVISITED = auto()
    VISITING = auto()
    VISITED = auto()


@dataclass(frozen=True)
class TaskGraph:
    _deps: dict[str, tuple[str, ...]]

    @classmethod
    def from_specs(cls, specs: Iterable[TaskSpec]) -> TaskGraph:
        return cls({spec.id: spec.dependencies for spec in specs})

    def topo_order(self) -> list[str]:
        return self._toposort(set(self._deps))

    def subgraph_order(self, target: str) -> list[str]:
        if target not in self._deps:
            raise KeyError(target)

        needed: set[str] = set()
        worklist: list[str] = [target]

        while worklist:
            task_id = worklist.pop()
            if task_id in needed:
                continue
            needed.add(task_id)
            worklist.extend(self._deps[task_id])

        return self._toposort(needed)

    def restricted_order(self, ids: Iterable[str]) -> list[str]:
        """Order only the listed ids, breaking ties by their listed position.

        Every dependency of a listed task must itself be listed; otherwise, or
        when the listed tasks form a cycle, UnorderableError is raised.
        """
        listed = list(dict.fromkeys(ids))
        for tid in listed:
            if tid not in self._deps:
                raise KeyError(tid)

        position = {tid: index for index, tid in enumerate(listed)}
        missing = {
            tid: [dep for dep in self._deps[tid] if dep not in position]
            for tid in listed
        }
        missing = {tid: deps for tid, deps in missing.items() if deps}
        if missing:
            raise UnorderableError(sorted(missing, key=position.get), missing)

        remaining = {tid: len(set(self._deps[tid])) for tid in listed}
        dependents: dict[str, list[str]] = {tid: [] for tid in listed}
        for tid in listed:
            for dep in set(self._deps[tid]):
                dependents[dep].append(tid)

        ready = [tid for tid in listed if remaining[tid] == 0]
        out: list[str] = []

        while ready:
            ready.sort(key=position.__getitem__)
            tid = ready.pop(0)
            out.append(tid)
            for child in dependents[tid]:
                remaining[child] -= 1
                if remaining[child] == 0:
                    ready.append(child)

        if len(out) != len(listed):
            blocked = [tid for tid in listed if remaining[tid] > 0]
            raise UnorderableError(blocked, {})

        return out

    def _toposort(self, universe: set[str]) -> list[str]:
        state = {tid: _Visit.UNVISITED for tid in universe}
        out: list[str] = []
        stack: list[str] = []
        pos: dict[str, int] = {}

        def visit(tid: str) -> None:
            if state[tid] == _Visit.VISITING:
                start = pos[tid]
                raise CycleError(stack[start:] + [tid])
            if state[tid] == _Visit.VISITED:
                return

            state[tid] = _Visit.VISITING
            pos[tid] = len(stack)
            stack.append(tid)

            for dep in sorted(self._deps[tid]):
                if dep in state:
                    visit(dep)

            stack.pop()
            pos.pop(tid)
            state[tid] = _Visit.VISITED
            out.append(tid)

        for tid in sorted(universe):
            visit(tid)

        return out
