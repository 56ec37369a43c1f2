"""Resume command implementation."""

from pathlib import Path

from bcce.commands.common import report_error
from bcce.display import print_info, print_run_result
from bcce.engine import Container
from bcce.exceptions import BcceError


def resume_command(
    run_id: str,
    from_step: str | None = None,
    approve_all: bool = False,
    runs_dir: Path | None = None,
) -> None:
    """Resume a recorded run, by default at its first unfinished step."""
    starting = f"step '{from_step}'" if from_step else "the first unfinished step"
    print_info(f"Resuming run {run_id} from {starting}")
    try:
        controller = Container.resume_controller(runs_dir=runs_dir, approve_all=approve_all)
        handle = controller.resume(run_id, from_step)
    except BcceError as e:
        report_error(e)
        raise SystemExit(1) from None

    print_run_result(handle.state, handle.run_dir)
    if not handle.succeeded:
        raise SystemExit(1)
