from taskpilot.config.types import ConfigError


class GraphError(ConfigError):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)


class CycleError(GraphError):
    def __init__(self, cycle: list[str]):
        super().__init__("Cycle detected: " + " -> ".join(cycle))
        self.cycle = cycle


class UnorderableError(GraphError):
    """The listed tasks cannot all be ordered among themselves."""

    def __init__(self, blocked: list[str], missing: dict[str, list[str]]):
        if missing:
            details = "; ".join(
                f"{tid} needs {', '.join(deps)}" for tid, deps in missing.items()
            )
            message = f"Dependencies outside the workflow: {details}"
        else:
            message = "Cycle among workflow tasks: " + ", ".join(blocked)
        super().__init__(message)
        self.blocked = blocked
        self.missing = missing
