from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

DEFAULT_REPORTS_DIR = ".taskpilot/reports"
DEFAULT_TIMEOUT_MS = 30 * 60 * 1000
DEFAULT_KILL_GRACE_MS = 2000
DEFAULT_MAX_STORED_RESULTS = 1000
DEFAULT_RETRY_BACKOFF_MS = 1000
DEFAULT_RETRY_BACKOFF_MAX_MS = 10_000


@dataclass(frozen=True)
class TaskSpec:
    id: str
    command: str
    args: tuple[str, ...] = ()
    name: str = ""
    timeout_ms: int = 0
    max_retries: int = 0
    dependencies: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict, hash=False)
    working_dir: str | None = None

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", self.id)
        object.__setattr__(self, "args", tuple(self.args))
        object.__setattr__(self, "dependencies", tuple(self.dependencies))
        # read-only copy, callers keep their own dict
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]


@dataclass(frozen=True)
class EngineSettings:
    reports_dir: str = DEFAULT_REPORTS_DIR
    default_timeout_ms: int = DEFAULT_TIMEOUT_MS
    kill_grace_ms: int = DEFAULT_KILL_GRACE_MS
    max_stored_results: int = DEFAULT_MAX_STORED_RESULTS
    retry_backoff_ms: int = DEFAULT_RETRY_BACKOFF_MS
    retry_backoff_max_ms: int = DEFAULT_RETRY_BACKOFF_MAX_MS


@dataclass
class ProjectConfig:
    tasks: dict[str, TaskSpec]
    workflows: dict[str, tuple[str, ...]] = field(default_factory=dict)
    settings: EngineSettings = field(default_factory=EngineSettings)

    def tasks_ids(self) -> list[str]:
        return sorted(self.tasks.keys())


class ConfigError(Exception):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)


class UnsupportedConfigFormatError(ConfigError):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)
