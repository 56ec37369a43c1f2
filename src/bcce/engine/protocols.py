"""Protocols for the external executors the engine drives.

The engine never runs a command, calls a model or touches the working
tree itself; it dispatches to these collaborators, enabling dependency
injection and testability.
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from bcce.core.models import StepCounters
from bcce.core.schemas import Policy, StepInputs
from bcce.engine.deadline import Deadline

# Called by an agent runner with the counters so far. Raises
# PolicyViolationError when a budget is breached; the runner must then
# cancel its in-flight work and let the exception propagate.
ProgressMonitor = Callable[[StepCounters], None]


class CommandResult(BaseModel):
    """Result of a shell command.

    Frozen because results are immutable facts about past executions.
    """

    model_config = ConfigDict(frozen=True)

    exit_code: int
    stdout: str
    stderr: str
    duration_seconds: float
    timed_out: bool = False


class AgentRequest(BaseModel):
    """Everything an agent runner needs to perform one step."""

    model_config = ConfigDict(frozen=True)

    step_id: str
    step_type: str
    model: str | None = None
    prompt: str | None = None
    capabilities: list[str] = Field(default_factory=list)
    policy: Policy | None = None
    inputs: StepInputs | None = None


class AgentResult(BaseModel):
    """What an agent runner reports once it finishes."""

    model_config = ConfigDict(frozen=True)

    status: str = Field(default="ok", description="ok or error")
    files_touched: list[str] = Field(default_factory=list)
    edits_applied: int = 0
    commands: list[str] = Field(default_factory=list)
    transcript: str = ""
    proposed_diff: str = Field(default="", description="Unified diff of proposed edits")
    error: str | None = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.status == "ok"


class ProposedEdits(BaseModel):
    """Edits gathered for an apply_diff step."""

    model_config = ConfigDict(frozen=True)

    diff: str
    source_steps: list[str] = Field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.diff.strip()


class DiffResult(BaseModel):
    """Outcome of applying proposed edits."""

    model_config = ConfigDict(frozen=True)

    applied: bool
    reason: str | None = None


@runtime_checkable
class CommandRunner(Protocol):
    """Runs shell commands for cmd steps."""

    def run(self, command: str, deadline: Deadline, cwd: Path | None = None) -> CommandResult:
        """Run to completion, or terminate at the deadline."""
        ...


@runtime_checkable
class AgentRunner(Protocol):
    """Performs language-model-driven work for prompt and agent steps."""

    def run(
        self,
        request: AgentRequest,
        deadline: Deadline,
        monitor: ProgressMonitor | None = None,
    ) -> AgentResult:
        """Run the step; must be cancellable at the deadline."""
        ...


@runtime_checkable
class DiffApplier(Protocol):
    """Commits proposed edits to the working tree."""

    def apply(self, edits: ProposedEdits, approve: bool) -> DiffResult:
        """Apply edits; when ``approve`` is False a confirmation may be required."""
        ...


@runtime_checkable
class ApprovalHandler(Protocol):
    """Asks a human (or a stand-in) to confirm an action."""

    def request_approval(
        self,
        step_name: str,
        prompt: str,
        options: list[str],
        context: dict[str, Any],
        timeout_seconds: float | None,
    ) -> str:
        """Return the chosen option."""
        ...
