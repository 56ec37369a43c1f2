"""Run command implementation."""

from pathlib import Path

from bcce.commands.common import load_resolved_workflow, report_error
from bcce.display import console, print_info, print_plan, print_run_result, print_success, print_warning
from bcce.engine import Container
from bcce.exceptions import BcceError


def run_command(
    file: Path,
    dry_run: bool = False,
    approve_all: bool = False,
    var: list[str] | None = None,
    runs_dir: Path | None = None,
) -> None:
    """Run a workflow, or show its execution plan with ``dry_run``.

    Exit Codes:
        0: Run succeeded (or the plan was printed)
        1: Invalid workflow, configuration error, or failed run
    """
    try:
        definition = load_resolved_workflow(file, var)
    except BcceError as e:
        report_error(e)
        raise SystemExit(1) from None

    if dry_run:
        print_info(f"Dry run: {definition.name}")
        print_plan(definition)
        print_success("Workflow is valid; nothing was executed")
        return

    if approve_all:
        print_warning("--approve-all: every apply_diff step is pre-approved")

    print_info(f"Running workflow: {definition.name}")
    try:
        engine = Container.engine(runs_dir=runs_dir, approve_all=approve_all)
        handle = engine.run(definition, workflow_path=file)
    except BcceError as e:
        report_error(e)
        raise SystemExit(1) from None

    print_run_result(handle.state, handle.run_dir)
    console.print()
    if not handle.succeeded:
        raise SystemExit(1)
