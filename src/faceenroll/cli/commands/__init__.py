"""CLI command handlers."""

from faceenroll.cli.commands.serve import run_serve
from faceenroll.cli.commands.simulate import run_simulate
from faceenroll.cli.commands.users import run_add_user

__all__ = [
    "run_serve",
    "run_add_user",
    "run_simulate",
]
