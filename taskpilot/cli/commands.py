from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Callable, Mapping

from taskpilot.config import ConfigError, ProjectConfig, load_project
from taskpilot.executor import ConsolePrinter, FailureKind, LoggingListener, TaskResult
from taskpilot.registry import TaskRegistry, default_project
from taskpilot.workflow import WorkflowManager, WorkflowReport, WorkflowState

from .args import Command, build_parser

DEFAULT_CONFIG = "taskpilot.yml"

Handler = Callable[[argparse.Namespace], int]


def run_cli(argv: list[str] | None = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
        _configure_logging(args.verbose)
        return _HANDLERS[Command(args.command)](args)

    except (ConfigError, LookupError) as exc:
        print(str(exc), file=sys.stderr)
        return 2

    except KeyboardInterrupt:
        return 130


def cmd_run(args: argparse.Namespace) -> int:
    manager = _manager(args)
    report = asyncio.run(manager.run(args.workflow))
    return _finish(report)


def cmd_task(args: argparse.Namespace) -> int:
    manager = _manager(args)
    if args.with_deps:
        return _finish(asyncio.run(manager.run_target(args.task_id)))

    result = asyncio.run(manager.run_task(args.task_id))
    _print_result(result)
    return 0 if result.success else 1


def cmd_list(args: argparse.Namespace) -> int:
    registry = TaskRegistry.from_project(_load(args))
    for tid in registry.ids():
        print(tid)
    return 0


def cmd_graph(args: argparse.Namespace) -> int:
    registry = TaskRegistry.from_project(_load(args))
    for tid in registry.ids():
        deps = " ".join(sorted(registry.dependencies_of(tid)))
        print(f"{tid}: {deps}".rstrip())
    return 0


def cmd_workflows(args: argparse.Namespace) -> int:
    manager = WorkflowManager.from_project(_load(args))
    for name in manager.workflows():
        print(f"{name}: {' '.join(manager.tasks_of(name))}")
    return 0


def _dispatch_table(handlers: Mapping[Command, Handler]) -> dict[Command, Handler]:
    missing = [command.value for command in Command if command not in handlers]
    if missing:
        raise RuntimeError(f"No handler for command(s): {', '.join(missing)}")
    return dict(handlers)


_HANDLERS = _dispatch_table(
    {
        Command.RUN: cmd_run,
        Command.TASK: cmd_task,
        Command.LIST: cmd_list,
        Command.GRAPH: cmd_graph,
        Command.WORKFLOWS: cmd_workflows,
    }
)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load(args: argparse.Namespace) -> ProjectConfig:
    if args.config is not None:
        return load_project(args.config)
    if Path(DEFAULT_CONFIG).is_file():
        return load_project(DEFAULT_CONFIG)
    return default_project()


def _manager(args: argparse.Namespace) -> WorkflowManager:
    manager = WorkflowManager.from_project(_load(args), reports_dir=args.reports_dir)
    manager.engine.subscribe(LoggingListener())
    if not args.quiet:
        manager.engine.subscribe(ConsolePrinter())
    return manager


def _finish(report: WorkflowReport) -> int:
    if report.state is WorkflowState.CONFIG_ERROR:
        print(report.error, file=sys.stderr)
        return 2

    for result in report.results:
        _print_result(result)

    summary = report.summary
    print(
        f"{report.name}: {summary.successful_tasks}/{summary.total_tasks} tasks successful, "
        f"{report.duration_ms / 1000:.3f}s"
    )
    return 0 if report.success else 1


def _print_result(result: TaskResult) -> None:
    tid = result.task_id
    duration_s = result.duration_ms / 1000
    if result.success:
        print(f"OK {tid}, {duration_s:.3f}s, exit code = {result.exit_code}")
    elif result.failure is FailureKind.DEPENDENCY:
        print(f"SKIP {tid}, {result.error}")
    else:
        print(
            f"FAIL {tid}, {duration_s:.3f}s, exit code = {result.exit_code}, {result.error}"
        )
