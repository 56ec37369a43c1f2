"""Runs and show command implementations - inspect recorded runs."""

from pathlib import Path

from bcce.commands.common import report_error
from bcce.display import print_error, print_run_detail, print_run_list
from bcce.engine import Container
from bcce.exceptions import BcceError


def runs_command(runs_dir: Path | None = None) -> None:
    """List recorded runs, newest first."""
    print_run_list(Container.store(runs_dir).list_runs())


def show_command(run_id: str, runs_dir: Path | None = None) -> None:
    """Show the state of one run."""
    store = Container.store(runs_dir)
    try:
        state = store.load_run_state(run_id)
    except BcceError as e:
        report_error(e)
        raise SystemExit(1) from None

    if state is None:
        print_error(f"Run not found: {run_id}")
        raise SystemExit(1)
    print_run_detail(state, store.run_dir(run_id))
