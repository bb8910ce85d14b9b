from __future__ import annotations

import argparse
from enum import Enum


class Command(str, Enum):
    LIST = "list"
    GRAPH = "graph"
    WORKFLOWS = "workflows"
    RUN = "run"
    TASK = "task"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="taskpilot")

    parser.add_argument(
        "--config",
        default=None,
        help="Path to config file (default: taskpilot.yml if present, else the built-in catalog)",
    )
    parser.add_argument(
        "--reports-dir",
        default=None,
        help="Directory for task and workflow reports",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log engine activity at debug level",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Do not print live task output",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        required=True,
    )

    # run
    run = subparsers.add_parser(Command.RUN.value, help="Run a workflow")
    run.add_argument("workflow", help="Workflow name")

    # task
    task = subparsers.add_parser(Command.TASK.value, help="Run a single task")
    task.add_argument("task_id", help="Task id")
    task.add_argument(
        "--with-deps",
        action="store_true",
        help="Run the task's transitive dependencies first",
    )

    # list
    subparsers.add_parser(Command.LIST.value, help="List tasks")

    # graph
    subparsers.add_parser(Command.GRAPH.value, help="Show dependency graph")

    # workflows
    subparsers.add_parser(Command.WORKFLOWS.value, help="List workflows")

    return parser
