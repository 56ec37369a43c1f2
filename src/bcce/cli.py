"""bcce CLI - Main entry point.

Workflow commands live under ``bcce workflow``:
- validate: Check a workflow document
- run: Execute a workflow (or plan it with --dry-run)
- resume: Continue a recorded run
- diagram: Export the step graph
- scaffold: Create a starter workflow
- runs / show: Inspect recorded runs
"""

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from bcce import __version__
from bcce.commands import (
    diagram_command,
    resume_command,
    run_command,
    runs_command,
    scaffold_command,
    show_command,
    validate_command,
)
from bcce.diagram import FORMATS
from bcce.env import get_settings

app = typer.Typer(
    help="bcce - governed, resumable agent workflows.",
    no_args_is_help=True,
)
workflow_app = typer.Typer(
    help="Validate, run, resume and inspect workflows.",
    no_args_is_help=True,
)
app.add_typer(workflow_app, name="workflow")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"bcce {__version__}")
        raise typer.Exit()


def configure_logging(verbose: bool) -> None:
    """Send library logs to stderr through Rich."""
    level = logging.INFO if verbose else getattr(logging, get_settings().log_level.upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Log engine progress to stderr")
    ] = False,
) -> None:
    """bcce - governed, resumable agent workflows."""
    configure_logging(verbose)


@workflow_app.command()
def validate(
    file: Annotated[Path, typer.Argument(help="Workflow YAML path")],
) -> None:
    """Validate a workflow document.

    Examples:
        bcce workflow validate workflows/examples/fix-tests/workflow.yml
    """
    validate_command(file)


@workflow_app.command()
def run(
    file: Annotated[Path, typer.Argument(help="Workflow YAML path")],
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Validate and plan without executing")
    ] = False,
    approve_all: Annotated[
        bool,
        typer.Option("--approve-all", help="Auto-approve all apply_diff steps (dangerous)"),
    ] = False,
    var: Annotated[
        Optional[list[str]],
        typer.Option("--var", help="Template variable KEY=VALUE (repeatable)"),
    ] = None,
    runs_dir: Annotated[
        Optional[Path],
        typer.Option("--runs-dir", help="Where run artifacts are stored (default .bcce_runs)"),
    ] = None,
) -> None:
    """Run a workflow.

    Examples:
        bcce workflow run workflow.yml --dry-run
        bcce workflow run workflow.yml --var BEDROCK_MODEL_ID=my-model
    """
    run_command(file, dry_run, approve_all, var, runs_dir)


@workflow_app.command()
def resume(
    run_id: Annotated[str, typer.Argument(help="Workflow run ID")],
    from_step: Annotated[
        Optional[str],
        typer.Option("--from", help="Step ID to resume from (default: first unfinished step)"),
    ] = None,
    approve_all: Annotated[
        bool,
        typer.Option("--approve-all", help="Auto-approve all apply_diff steps (dangerous)"),
    ] = False,
    runs_dir: Annotated[
        Optional[Path],
        typer.Option("--runs-dir", help="Where run artifacts are stored (default .bcce_runs)"),
    ] = None,
) -> None:
    """Resume a workflow run.

    Examples:
        bcce workflow resume 20251207-215930-3f9a1c0b2e
        bcce workflow resume 20251207-215930-3f9a1c0b2e --from run_tests
    """
    resume_command(run_id, from_step, approve_all, runs_dir)


@workflow_app.command()
def diagram(
    file: Annotated[Path, typer.Argument(help="Workflow YAML path")],
    fmt: Annotated[
        str,
        typer.Option("--format", "-f", help=f"Output format: {', '.join(FORMATS)}"),
    ] = "dot",
    output: Annotated[
        Optional[Path], typer.Option("--output", "-o", help="Output file path")
    ] = None,
) -> None:
    """Export a workflow diagram.

    Examples:
        bcce workflow diagram workflow.yml
        bcce workflow diagram workflow.yml --format svg -o workflow.svg
    """
    diagram_command(file, fmt, output)


@workflow_app.command()
def scaffold(
    name: Annotated[str, typer.Argument(help="New workflow name")],
    template: Annotated[
        str,
        typer.Option("--template", "-t", help="Template type: basic, agent, test-grader"),
    ] = "basic",
) -> None:
    """Scaffold a new workflow under workflows/examples/.

    Examples:
        bcce workflow scaffold fix-tests --template test-grader
    """
    scaffold_command(name, template)


@workflow_app.command("runs")
def runs_cmd(
    runs_dir: Annotated[
        Optional[Path],
        typer.Option("--runs-dir", help="Where run artifacts are stored (default .bcce_runs)"),
    ] = None,
) -> None:
    """List recorded workflow runs."""
    runs_command(runs_dir)


@workflow_app.command()
def show(
    run_id: Annotated[str, typer.Argument(help="Workflow run ID")],
    runs_dir: Annotated[
        Optional[Path],
        typer.Option("--runs-dir", help="Where run artifacts are stored (default .bcce_runs)"),
    ] = None,
) -> None:
    """Show the step-by-step state of a run."""
    show_command(run_id, runs_dir)


if __name__ == "__main__":
    app()
