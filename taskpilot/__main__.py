import sys

from taskpilot.cli import run_cli

sys.exit(run_cli())
