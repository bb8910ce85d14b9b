import pytest

from taskpilot.config.types import ConfigError
from taskpilot.graph import CycleError
from taskpilot.registry import (
    DEFAULT_WORKFLOWS,
    TaskRegistry,
    UnknownDependencyError,
    UnknownTaskError,
    default_project,
    default_specs,
)

from helpers import spec


def test_resolve_and_dependencies_of():
    registry = TaskRegistry([spec("a"), spec("b", "a"), spec("c", "b", "a")])

    assert registry.resolve("c").id == "c"
    assert registry.dependencies_of("c") == ("b", "a")
    assert registry.ids() == ["a", "b", "c"]
    assert "b" in registry
    assert len(registry) == 3
    assert [s.id for s in registry] == ["a", "b", "c"]


def test_resolve_unknown_raises_lookup_error():
    registry = TaskRegistry([spec("a")])

    with pytest.raises(UnknownTaskError) as e:
        registry.resolve("nope")

    assert isinstance(e.value, LookupError)
    assert isinstance(e.value, ConfigError)


def test_duplicate_id_is_rejected():
    with pytest.raises(ConfigError):
        TaskRegistry([spec("a"), spec("a")])


def test_unknown_dependency_is_rejected():
    with pytest.raises(UnknownDependencyError):
        TaskRegistry([spec("a", "ghost")])


def test_cycle_is_rejected_at_construction():
    with pytest.raises(CycleError):
        TaskRegistry([spec("a", "c"), spec("b", "a"), spec("c", "b")])


def test_name_defaults_to_id():
    assert spec("lint").name == "lint"


def test_builtin_catalog_is_valid_and_workflows_are_orderable():
    registry = TaskRegistry(default_specs())

    for name, ids in DEFAULT_WORKFLOWS.items():
        order = registry.graph.restricted_order(ids)
        assert sorted(order) == sorted(ids), name

    assert registry.dependencies_of("health-check") == ("lint", "type-check", "build")
    assert default_project().workflows["development"] == ("lint", "type-check", "build", "test")
