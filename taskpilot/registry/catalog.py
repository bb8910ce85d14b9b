"""Built-in steps of the frontend project, used when no config file is present."""

from taskpilot.config.types import ProjectConfig, TaskSpec

_MINUTE_MS = 60 * 1000


def _pnpm(
    task_id: str,
    name: str,
    *args: str,
    minutes: int,
    retries: int = 1,
    deps: tuple[str, ...] = (),
) -> TaskSpec:
    return TaskSpec(
        id=task_id,
        name=name,
        command="pnpm",
        args=args,
        timeout_ms=minutes * _MINUTE_MS,
        max_retries=retries,
        dependencies=deps,
    )


def default_specs() -> list[TaskSpec]:
    return [
        _pnpm("clean", "Clean Project", "run", "clean", minutes=2, retries=0),
        _pnpm("install", "Install Dependencies", "install", minutes=5, deps=("clean",)),
        _pnpm("dev-setup", "Development Setup", "run", "setup:dev", minutes=15, deps=("install",)),
        _pnpm("lint", "ESLint Check", "run", "lint", minutes=5),
        _pnpm("lint-fix", "ESLint Auto-fix", "run", "lint:fix", minutes=5),
        _pnpm("format", "Prettier Format", "run", "format", minutes=1, retries=0),
        _pnpm("type-check", "TypeScript Check", "run", "type-check", minutes=2),
        _pnpm("build", "Next.js Build", "run", "build", minutes=10, deps=("type-check",)),
        _pnpm("test", "Playwright Tests", "run", "test", minutes=15, deps=("build",)),
        _pnpm(
            "health-check",
            "Project Health Check",
            "run",
            "health:check",
            minutes=10,
            deps=("lint", "type-check", "build"),
        ),
        _pnpm("performance-monitor", "Performance Monitoring", "run", "perf:monitor", minutes=5),
        _pnpm("mcp-diagnostic", "MCP Server Diagnostic", "run", "diag:mcp", minutes=2),
    ]


DEFAULT_WORKFLOWS: dict[str, tuple[str, ...]] = {
    "quick": ("lint", "type-check", "build"),
    "development": ("lint", "type-check", "build", "test"),
    "quality": ("lint", "type-check", "format", "lint-fix", "build", "health-check"),
    "full": (
        "clean",
        "install",
        "lint",
        "type-check",
        "format",
        "lint-fix",
        "build",
        "test",
        "health-check",
        "performance-monitor",
        "mcp-diagnostic",
    ),
}


def default_project() -> ProjectConfig:
    return ProjectConfig(
        tasks={spec.id: spec for spec in default_specs()},
        workflows=dict(DEFAULT_WORKFLOWS),
    )
