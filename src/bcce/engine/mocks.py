"""Mock executors for testing the engine layer.

Scripted implementations of the executor protocols that can be used in
tests without subprocess, agent or git side effects.
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any

from bcce.core.models import StepCounters
from bcce.engine.deadline import Deadline
from bcce.engine.protocols import (
    AgentRequest,
    AgentResult,
    AgentRunner,
    CommandResult,
    CommandRunner,
    DiffApplier,
    DiffResult,
    ProgressMonitor,
    ProposedEdits,
)
from bcce.exceptions import PolicyViolationError


class ScriptedCommandRunner:
    """Command runner that returns canned results.

    Results are looked up by exact command; unknown commands succeed with
    empty output. Every call is recorded.
    """

    def __init__(self, results: dict[str, CommandResult] | None = None) -> None:
        self.results = dict(results or {})
        self.calls: list[dict[str, Any]] = []

    def run(self, command: str, deadline: Deadline, cwd: Path | None = None) -> CommandResult:
        self.calls.append({"command": command, "deadline": deadline, "cwd": cwd})
        return self.results.get(
            command,
            CommandResult(exit_code=0, stdout="", stderr="", duration_seconds=0.0),
        )

    def set_result(self, command: str, result: CommandResult) -> None:
        self.results[command] = result

    @property
    def commands(self) -> list[str]:
        return [call["command"] for call in self.calls]


class ScriptedAgentRunner:
    """Agent runner that replays scripted progress per step.

    ``progress`` maps a step id to a list of counter snapshots; each one is
    passed to the monitor in turn, as a real runner would while the agent
    works. The final result comes from ``results`` (default: ok, built from
    the last snapshot). A callable result is invoked with the request.
    """

    def __init__(
        self,
        results: dict[str, AgentResult | Callable[[AgentRequest], AgentResult]] | None = None,
        progress: dict[str, list[StepCounters]] | None = None,
    ) -> None:
        self.results = dict(results or {})
        self.progress = dict(progress or {})
        self.requests: list[AgentRequest] = []

    def run(
        self,
        request: AgentRequest,
        deadline: Deadline,
        monitor: ProgressMonitor | None = None,
    ) -> AgentResult:
        self.requests.append(request)

        result = self.results.get(request.step_id)
        snapshots = self.progress.get(request.step_id, [])
        for counters in snapshots:
            if monitor is None:
                continue
            try:
                monitor(counters)
            except PolicyViolationError as e:
                # A stopped agent keeps the output it produced so far.
                if isinstance(result, AgentResult):
                    e.transcript = result.transcript
                    e.proposed_diff = result.proposed_diff
                else:
                    e.transcript = f"scripted agent run for {request.step_id} (stopped)"
                raise

        if callable(result):
            return result(request)
        if result is not None:
            return result

        last = snapshots[-1] if snapshots else StepCounters()
        return AgentResult(
            status="ok",
            files_touched=last.files_touched,
            edits_applied=last.edits_applied,
            commands=last.commands,
            transcript=f"scripted agent run for {request.step_id}",
        )

    @property
    def step_ids(self) -> list[str]:
        return [request.step_id for request in self.requests]


class RecordingDiffApplier:
    """Diff applier that records what it was asked to apply.

    With ``approve_decision="reject"``, edits that are not pre-approved are
    refused the way a reviewer would refuse them.
    """

    def __init__(self, approve_decision: str = "approve") -> None:
        self.approve_decision = approve_decision
        self.calls: list[dict[str, Any]] = []

    def apply(self, edits: ProposedEdits, approve: bool) -> DiffResult:
        self.calls.append({"edits": edits, "approve": approve})
        if edits.empty:
            return DiffResult(applied=True, reason="no proposed edits")
        if not approve and self.approve_decision != "approve":
            return DiffResult(
                applied=False,
                reason=f"edits not approved by reviewer (decision: {self.approve_decision})",
            )
        return DiffResult(applied=True)

    def reset(self) -> None:
        self.calls.clear()


# Verify protocol compliance at import time
assert isinstance(ScriptedCommandRunner(), CommandRunner)
assert isinstance(ScriptedAgentRunner(), AgentRunner)
assert isinstance(RecordingDiffApplier(), DiffApplier)
