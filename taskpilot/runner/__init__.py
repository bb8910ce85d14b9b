from .subprocess_runner import (
    PosixProcessRunner,
    SubprocessRunner,
    WindowsProcessRunner,
    default_runner,
)
from .types import ProcessRunner

__all__ = [
    "PosixProcessRunner",
    "ProcessRunner",
    "SubprocessRunner",
    "WindowsProcessRunner",
    "default_runner",
]
