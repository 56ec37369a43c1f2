"""Pydantic models for run records.

These models define what the artifact store persists for every run:
the per-step execution records and the single run-state document.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class StepStatus(str, Enum):
    """Status of one step execution."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    POLICY_VIOLATION = "policy_violation"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self not in (StepStatus.PENDING, StepStatus.RUNNING)


class RunStatus(str, Enum):
    """Status of a run."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StepCounters(BaseModel):
    """Resources consumed by a step, compared live against its policy."""

    files_touched: list[str] = Field(default_factory=list, description="Paths read or written")
    edits_applied: int = Field(default=0, description="Edits the step applied")
    elapsed_seconds: float = Field(default=0.0, description="Wall time so far")
    commands: list[str] = Field(default_factory=list, description="Commands the step invoked")

    @property
    def distinct_files(self) -> list[str]:
        seen: dict[str, None] = {}
        for path in self.files_touched:
            seen.setdefault(path, None)
        return list(seen)


class ViolationRecord(BaseModel):
    """Persisted form of a policy breach."""

    dimension: str
    value: Any = None
    limit: Any = None
    reason: str


class StepExecution(BaseModel):
    """One attempt of one step within a run."""

    step_id: str = Field(..., description="Step id from the workflow")
    step_type: str = Field(..., description="Step kind (prompt, cmd, agent, apply_diff)")
    index: int = Field(..., description="Position in execution order")
    status: StepStatus = Field(default=StepStatus.PENDING)
    attempt: int = Field(default=0, description="Times this step has been started")
    started_at: datetime | None = None
    ended_at: datetime | None = None
    artifact_dir: str = Field(..., description="Step directory, relative to the run directory")
    counters: StepCounters | None = Field(default=None, description="cmd/agent resource use")
    exit_code: int | None = None
    non_fatal_failure: bool = Field(
        default=False,
        description="Step failed but on_error=continue let the run proceed",
    )
    warning: str | None = None
    error: str | None = None
    violation: ViolationRecord | None = None

    def reset(self) -> None:
        """Return to pending, keeping the attempt count."""
        self.status = StepStatus.PENDING
        self.started_at = None
        self.ended_at = None
        self.counters = None
        self.exit_code = None
        self.non_fatal_failure = False
        self.warning = None
        self.error = None
        self.violation = None

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()


class RunState(BaseModel):
    """The run-state record: every step execution of a run.

    This is the only persistent representation of a run; the engine
    rebuilds from it on resume.
    """

    schema_version: int = Field(default=1, description="Run-state schema version")
    run_id: str
    workflow_name: str
    workflow_path: str | None = Field(default=None, description="Document the run was launched from")
    definition_hash: str | None = Field(default=None, description="SHA256 of the workflow document")
    created_at: datetime
    updated_at: datetime | None = None
    status: RunStatus = RunStatus.RUNNING
    steps: list[StepExecution] = Field(default_factory=list)
    resume_count: int = 0
    error: str | None = None
    failed_step: str | None = None

    def get_step(self, step_id: str) -> StepExecution | None:
        for execution in self.steps:
            if execution.step_id == step_id:
                return execution
        return None

    def index_of(self, step_id: str) -> int:
        for execution in self.steps:
            if execution.step_id == step_id:
                return execution.index
        raise KeyError(step_id)
