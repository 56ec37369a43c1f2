"""Scaffold command implementation."""

from bcce.commands.common import report_error
from bcce.display import console, print_success
from bcce.exceptions import BcceError
from bcce.scaffold import scaffold_workflow


def scaffold_command(name: str, template: str = "basic") -> None:
    """Create a starter workflow from a bundled template."""
    try:
        result = scaffold_workflow(name, template)
    except BcceError as e:
        report_error(e)
        raise SystemExit(1) from None

    directory = result.directory
    print_success("Workflow scaffolded")
    console.print(f"  Directory: {directory}")
    console.print(f"  Template: {result.template}")
    console.print()
    console.print("[bold]Next steps:[/]")
    console.print(f"  1. Edit [cyan]{directory / 'prompt.md'}[/] with your requirements")
    console.print(f"  2. Customize [cyan]{directory / 'workflow.yml'}[/]")
    console.print(f"  3. Validate: [cyan]bcce workflow validate {directory / 'workflow.yml'}[/]")
    console.print(f"  4. Run: [cyan]bcce workflow run {directory / 'workflow.yml'}[/]")
