from .loader import build_project_config, load_project
from .types import (
    ConfigError,
    EngineSettings,
    ProjectConfig,
    TaskSpec,
    UnsupportedConfigFormatError,
)

__all__ = [
    "build_project_config",
    "load_project",
    "ConfigError",
    "EngineSettings",
    "ProjectConfig",
    "TaskSpec",
    "UnsupportedConfigFormatError",
]
