"""Rich display utilities for the bcce CLI."""

from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from bcce.core.models import RunState, RunStatus, StepExecution, StepStatus
from bcce.core.schemas import AgentStep, ApplyDiffStep, CmdStep, PromptStep, Workflow

console = Console()

STATUS_STYLES = {
    StepStatus.PENDING: "dim",
    StepStatus.RUNNING: "yellow",
    StepStatus.SUCCEEDED: "green",
    StepStatus.FAILED: "red",
    StepStatus.POLICY_VIOLATION: "magenta",
    StepStatus.SKIPPED: "dim",
}

RUN_STATUS_STYLES = {
    RunStatus.RUNNING: "yellow",
    RunStatus.SUCCEEDED: "green",
    RunStatus.FAILED: "red",
}


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]✓[/] {message}")


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]✗[/] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[bold yellow]⚠[/] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[bold blue]ℹ[/] {message}")


def _step_summary(step: PromptStep | CmdStep | AgentStep | ApplyDiffStep) -> str:
    if isinstance(step, CmdStep):
        suffix = " (on_error: continue)" if step.on_error.value == "continue" else ""
        return f"$ {step.command}{suffix}"
    if isinstance(step, PromptStep):
        return f"prompt {step.prompt_file}"
    if isinstance(step, AgentStep):
        policy = step.policy
        return (
            f"timeout {policy.timeout_seconds}s, max_files {policy.max_files}, "
            f"max_edits {policy.max_edits}, paths {', '.join(policy.allowed_paths)}"
        )
    return "pre-approved" if step.approve else "requires approval"


def print_plan(definition: Workflow) -> None:
    """Print the execution plan of a workflow (dry run)."""
    table = Table(title=f"Execution plan: {definition.name}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Step", style="cyan")
    table.add_column("Type")
    table.add_column("Details")

    for index, step in enumerate(definition.steps, 1):
        table.add_row(str(index), step.id, step.type, _step_summary(step))

    console.print(table)
    details = [f"Model: {definition.model or 'default'}"]
    if definition.env.max_runtime_seconds:
        details.append(f"Max runtime: {definition.env.max_runtime_seconds}s")
    if definition.guardrails:
        details.append(f"Guardrails: {', '.join(definition.guardrails)}")
    console.print(f"[dim]{' | '.join(details)}[/]")


def _format_duration(execution: StepExecution) -> str:
    duration = execution.duration_seconds
    return f"{duration:.2f}s" if duration is not None else "-"


def _step_table(state: RunState) -> Table:
    table = Table()
    table.add_column("#", justify="right", style="dim")
    table.add_column("Step", style="cyan")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Attempt", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Notes")

    for execution in state.steps:
        style = STATUS_STYLES.get(execution.status, "")
        notes = escape(execution.error or execution.warning or "")
        table.add_row(
            str(execution.index + 1),
            execution.step_id,
            execution.step_type,
            f"[{style}]{execution.status.value}[/]",
            str(execution.attempt),
            _format_duration(execution),
            notes,
        )
    return table


def print_run_result(state: RunState, run_dir: Path) -> None:
    """Print the outcome of a run or resume."""
    console.print()
    console.print(_step_table(state))
    if state.status == RunStatus.SUCCEEDED:
        print_success(f"Run {state.run_id} succeeded")
    else:
        print_error(f"Run {state.run_id} {state.status.value} at step '{state.failed_step}'")
        if state.error:
            console.print(f"  [red]{escape(state.error)}[/]")
        console.print(f"  Resume with: [cyan]bcce workflow resume {state.run_id}[/]")
    console.print(f"  [dim]Artifacts: {run_dir}[/]")


def print_run_list(runs: list[RunState]) -> None:
    """Print a table of recorded runs."""
    if not runs:
        print_info("No runs found. Start one with [cyan]bcce workflow run <file>[/]")
        return

    table = Table(title="Workflow Runs")
    table.add_column("Run ID", style="cyan")
    table.add_column("Workflow")
    table.add_column("Status")
    table.add_column("Steps", justify="right")
    table.add_column("Resumes", justify="right")
    table.add_column("Created")

    for state in runs:
        style = RUN_STATUS_STYLES.get(state.status, "")
        done = sum(1 for s in state.steps if s.status == StepStatus.SUCCEEDED)
        table.add_row(
            state.run_id,
            state.workflow_name,
            f"[{style}]{state.status.value}[/]",
            f"{done}/{len(state.steps)}",
            str(state.resume_count),
            state.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        )

    console.print(table)


def print_run_detail(state: RunState, run_dir: Path) -> None:
    """Print full details of one run."""
    style = RUN_STATUS_STYLES.get(state.status, "")
    lines = [
        f"[bold]Workflow:[/] {state.workflow_name}",
        f"[bold]Status:[/] [{style}]{state.status.value}[/]",
        f"[bold]Created:[/] {state.created_at.isoformat()}",
        f"[bold]Resumes:[/] {state.resume_count}",
        f"[bold]Artifacts:[/] {run_dir}",
    ]
    if state.workflow_path:
        lines.append(f"[bold]Document:[/] {state.workflow_path}")
    if state.failed_step:
        lines.append(f"[bold]Failed step:[/] {state.failed_step}")
    if state.error:
        lines.append(f"[bold]Error:[/] [red]{escape(state.error)}[/]")

    console.print(Panel("\n".join(lines), title=f"[bold]Run {state.run_id}[/]", border_style=style))
    console.print(_step_table(state))

    for execution in state.steps:
        if execution.violation is not None:
            v = execution.violation
            print_warning(
                f"{execution.step_id}: {v.dimension} breached "
                f"(value {v.value!r}, limit {v.limit!r})"
            )
