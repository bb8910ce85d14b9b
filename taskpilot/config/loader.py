import json
import tomllib
from pathlib import Path
from typing import Any, Mapping

import yaml

from .types import (
    ConfigError,
    EngineSettings,
    ProjectConfig,
    TaskSpec,
    UnsupportedConfigFormatError,
)

_TOP_LEVEL_KEYS = {"tasks", "workflows", "settings"}
_TASK_KEYS = {
    "name",
    "command",
    "args",
    "timeout_ms",
    "max_retries",
    "deps",
    "env",
    "working_dir",
}
_SETTINGS_INT_KEYS = {
    "default_timeout_ms",
    "kill_grace_ms",
    "max_stored_results",
    "retry_backoff_ms",
    "retry_backoff_max_ms",
}


def load_project(path: str | Path) -> ProjectConfig:
    pure_path = Path(path).expanduser().resolve()

    if not pure_path.exists():
        raise ConfigError(f"Config file not found: {pure_path}")

    if not pure_path.is_file():
        raise ConfigError(f"Config path is not a file: {pure_path}")

    fmt = _detect_format(pure_path)
    raw_file = _parse_file(pure_path, fmt)
    return build_project_config(raw_file)


def _detect_format(path: Path) -> str:
    fmt = path.suffix
    match fmt:
        case ".yaml" | ".yml":
            return "yaml"
        case ".toml":
            return "toml"
        case ".json":
            return "json"
        case _:
            raise UnsupportedConfigFormatError(
                f"Non supported file extension: {fmt}\n Expected format: .yml/.yaml, .toml, .json"
            )


def _parse_file(path: Path, fmt: str) -> Mapping[str, Any]:
    text = path.read_text(encoding="utf-8")
    match fmt:
        case "yaml":
            try:
                raw_file = yaml.safe_load(text)
            except yaml.YAMLError as exc:
                raise ConfigError(f"{path}: invalid YAML") from exc
        case "toml":
            try:
                raw_file = tomllib.loads(text)
            except tomllib.TOMLDecodeError as exc:
                raise ConfigError(f"{path}: invalid TOML") from exc
        case "json":
            try:
                raw_file = json.loads(text)
            except json.JSONDecodeError as exc:
                raise ConfigError(f"{path}: invalid JSON") from exc
        case _:
            raise AssertionError("Unreachable")

    if not isinstance(raw_file, Mapping):
        raise ConfigError(
            f"{path}: {fmt.upper()} parsed successfully but top-level value is not an object: {type(raw_file)}"
        )

    return raw_file


def build_project_config(raw: Mapping[str, Any]) -> ProjectConfig:
    """Validate an already parsed config mapping and build a ProjectConfig."""
    tasks: dict[str, TaskSpec] = {}

    for key in raw.keys():
        if key not in _TOP_LEVEL_KEYS:
            raise ConfigError(f"Unknown top-level field: {key}")

    if "tasks" not in raw:
        raise ConfigError("Missing 'tasks' field")

    if not isinstance(raw["tasks"], Mapping):
        raise ConfigError(f"'tasks' must be a mapping, got {type(raw['tasks'])}")

    if len(raw["tasks"]) < 1:
        raise ConfigError("There must be at least one task in the config file")

    for task_id, fields in raw["tasks"].items():
        if not isinstance(task_id, str):
            raise ConfigError(f"Task id must be a string, got {type(task_id)}")

        if not isinstance(fields, Mapping):
            raise ConfigError(f"{task_id} must be a mapping")

        task_id_norm = task_id.strip()

        if len(task_id_norm) < 1:
            raise ConfigError("A task id can't be empty")

        if task_id_norm in tasks:
            raise ConfigError(f"Duplicate task id after normalization: {task_id_norm}")

        tasks[task_id_norm] = _build_task_spec(task_id_norm, fields)

    for task in tasks.values():
        for dep in task.dependencies:
            if dep not in tasks:
                raise ConfigError(f"Task '{task.id}' has unknown dependency '{dep}'")

    workflows = _build_workflows(raw.get("workflows", {}), tasks)
    settings = _build_settings(raw.get("settings", {}))

    return ProjectConfig(tasks=tasks, workflows=workflows, settings=settings)


def _build_task_spec(task_id: str, fields: Mapping[str, Any]) -> TaskSpec:
    deps: list[str] = []
    seen: set[str] = set()
    args: list[str] = []
    env: dict[str, str] = {}
    working_dir = None
    name = ""

    for field in fields.keys():
        if field not in _TASK_KEYS:
            raise ConfigError(f"{task_id}: Can't process: {field}")

    if "command" not in fields:
        raise ConfigError(f"{task_id}: missing 'command'")

    command = _non_empty_string(task_id, "command", fields["command"])

    if "name" in fields:
        name = _non_empty_string(task_id, "name", fields["name"])

    if "args" in fields:
        if not isinstance(fields["args"], list):
            raise ConfigError(f"{task_id}: 'args' should be a list of strings")

        for item in fields["args"]:
            if not isinstance(item, str):
                raise ConfigError(f"{task_id}: argument {item!r} should be a string")
            # Arguments are passed verbatim, so whitespace is significant.
            args.append(item)

    timeout_ms = _non_negative_int(task_id, "timeout_ms", fields.get("timeout_ms", 0))
    max_retries = _non_negative_int(task_id, "max_retries", fields.get("max_retries", 0))

    if "deps" in fields:
        if not isinstance(fields["deps"], list):
            raise ConfigError(f"{task_id}: Dependencies should be in a list.")

        for item in fields["deps"]:
            if not isinstance(item, str):
                raise ConfigError(
                    f"{task_id}: {item} should be a string in the dependency list"
                )

            dep = item.strip()

            if len(dep) < 1:
                raise ConfigError(f"{task_id}: A dependency is empty")

            if dep == task_id:
                raise ConfigError(f"{task_id}: A task cannot be self dependent")

            if dep in seen:
                continue

            deps.append(dep)
            seen.add(dep)

    if "env" in fields:
        if not isinstance(fields["env"], Mapping):
            raise ConfigError(f"{task_id}: Env should be a mapping")

        for key, item in fields["env"].items():
            if not isinstance(key, str):
                raise ConfigError(f"{task_id}: {key} should be a string")

            if len(key.strip()) < 1:
                raise ConfigError(f"{task_id}: A key can't be empty")

            if not isinstance(item, str):
                raise ConfigError(f"{task_id}: {item} should be a string")

            env[key.strip()] = item

    if "working_dir" in fields:
        working_dir = _non_empty_string(task_id, "working_dir", fields["working_dir"])

    return TaskSpec(
        id=task_id,
        command=command,
        args=tuple(args),
        name=name,
        timeout_ms=timeout_ms,
        max_retries=max_retries,
        dependencies=tuple(deps),
        env=env,
        working_dir=working_dir,
    )


def _build_workflows(
    raw: Any, tasks: Mapping[str, TaskSpec]
) -> dict[str, tuple[str, ...]]:
    if raw is None:
        return {}

    if not isinstance(raw, Mapping):
        raise ConfigError(f"'workflows' must be a mapping, got {type(raw)}")

    workflows: dict[str, tuple[str, ...]] = {}
    for name, ids in raw.items():
        if not isinstance(name, str) or len(name.strip()) < 1:
            raise ConfigError(f"Workflow name must be a non-empty string, got {name!r}")

        name = name.strip()
        if name in workflows:
            raise ConfigError(f"Duplicate workflow name after normalization: {name}")

        if not isinstance(ids, list) or len(ids) < 1:
            raise ConfigError(f"workflow {name}: expected a non-empty list of task ids")

        ordered: list[str] = []
        for item in ids:
            if not isinstance(item, str):
                raise ConfigError(f"workflow {name}: {item!r} should be a string")

            task_id = item.strip()
            if task_id not in tasks:
                raise ConfigError(f"workflow {name}: unknown task '{task_id}'")

            if task_id in ordered:
                raise ConfigError(f"workflow {name}: task '{task_id}' listed twice")

            ordered.append(task_id)

        workflows[name] = tuple(ordered)

    return workflows


def _build_settings(raw: Any) -> EngineSettings:
    if raw is None:
        return EngineSettings()

    if not isinstance(raw, Mapping):
        raise ConfigError(f"'settings' must be a mapping, got {type(raw)}")

    values: dict[str, Any] = {}
    for key, item in raw.items():
        if key == "reports_dir":
            values[key] = _non_empty_string("settings", key, item)
        elif key in _SETTINGS_INT_KEYS:
            values[key] = _non_negative_int("settings", key, item)
        else:
            raise ConfigError(f"settings: Can't process: {key}")

    if values.get("max_stored_results") == 0:
        raise ConfigError("settings: max_stored_results must be at least 1")

    return EngineSettings(**values)


def _non_empty_string(owner: str, field: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{owner}: '{field}' should be a string")

    if len(value.strip()) < 1:
        raise ConfigError(f"{owner}: '{field}' can't be empty")

    return value.strip()


def _non_negative_int(owner: str, field: str, value: Any) -> int:
    # bool is an int subclass; `timeout_ms: true` is a typo, not a number
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{owner}: '{field}' should be an integer")

    if value < 0:
        raise ConfigError(f"{owner}: '{field}' can't be negative")

    return value
