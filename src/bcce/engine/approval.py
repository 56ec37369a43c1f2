"""Approval handler implementations for apply_diff confirmation gates."""

from typing import Any

from rich.console import Console
from rich.prompt import Confirm, Prompt
from rich.syntax import Syntax


class ConsoleApprovalHandler:
    """Interactive console approval for `bcce workflow run`.

    Prompts the user via stdin and returns their decision immediately.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def request_approval(
        self,
        step_name: str,
        prompt: str,
        options: list[str],
        context: dict[str, Any],
        timeout_seconds: float | None,  # noqa: ARG002
    ) -> str:
        """Request approval via console prompt."""
        self.console.print()
        self.console.print(f"[bold yellow]⏸[/] [bold]Approval Required:[/] {step_name}")
        self.console.print(f"  {prompt}")

        diff = context.get("diff")
        if diff:
            self.console.print(Syntax(diff, "diff", line_numbers=False))
        for key, value in context.items():
            if key != "diff":
                self.console.print(f"  [dim]{key}:[/] {value}")

        if len(options) == 2 and set(options) == {"approve", "reject"}:
            approved = Confirm.ask("Approve?", default=False)
            return "approve" if approved else "reject"

        self.console.print(f"[dim]Options: {', '.join(options)}[/]")
        return Prompt.ask("Decision", choices=options)


class AutoApprovalHandler:
    """Answer every request with a fixed decision (for tests and CI)."""

    def __init__(self, decision: str = "approve") -> None:
        self.decision = decision
        self.requests: list[str] = []

    def request_approval(
        self,
        step_name: str,
        prompt: str,  # noqa: ARG002
        options: list[str],  # noqa: ARG002
        context: dict[str, Any],  # noqa: ARG002
        timeout_seconds: float | None,  # noqa: ARG002
    ) -> str:
        """Record the request and return the configured decision."""
        self.requests.append(step_name)
        return self.decision
