"""bcce CLI commands.

Each command module contains the business logic for a CLI command.
The cli.py module handles Typer decorators and argument parsing,
then delegates to these command functions.
"""

from bcce.commands.diagram import diagram_command
from bcce.commands.resume import resume_command
from bcce.commands.run import run_command
from bcce.commands.runs import runs_command, show_command
from bcce.commands.scaffold import scaffold_command
from bcce.commands.validate import validate_command

__all__ = [
    "diagram_command",
    "resume_command",
    "run_command",
    "runs_command",
    "scaffold_command",
    "show_command",
    "validate_command",
]
