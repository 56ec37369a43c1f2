"""Event models for the run journal.

Every state change the engine makes is also appended to the run's
``events.jsonl``, giving an audit trail that outlives later overwrites of
``run-state.json``.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    """Event type enumeration."""

    # Run lifecycle
    RUN_STARTED = "run.started"
    RUN_RESUMED = "run.resumed"
    RUN_COMPLETED = "run.completed"
    RUN_FAILED = "run.failed"

    # Step lifecycle
    STEP_STARTED = "step.started"
    STEP_COMPLETED = "step.completed"
    STEP_FAILED = "step.failed"
    STEP_POLICY_VIOLATION = "step.policy_violation"
    STEP_SKIPPED = "step.skipped"


class BaseEvent(BaseModel):
    """Base event with common fields.

    Events are immutable facts about what happened.
    """

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: uuid4().hex[:12])
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    run_id: str


class RunStartedEvent(BaseEvent):
    """Emitted when a fresh run is created."""

    event_type: EventType = EventType.RUN_STARTED
    workflow_name: str
    workflow_path: str | None = None
    definition_hash: str | None = None
    step_ids: list[str] = Field(default_factory=list)


class RunResumedEvent(BaseEvent):
    """Emitted when an interrupted run is re-entered."""

    event_type: EventType = EventType.RUN_RESUMED
    from_step: str
    resume_count: int


class RunCompletedEvent(BaseEvent):
    """Emitted when every step finished and the run succeeded."""

    event_type: EventType = EventType.RUN_COMPLETED
    step_count: int


class RunFailedEvent(BaseEvent):
    """Emitted when the run is aborted."""

    event_type: EventType = EventType.RUN_FAILED
    error: str
    failed_step: str | None = None


class StepStartedEvent(BaseEvent):
    """Emitted when a step moves to running."""

    event_type: EventType = EventType.STEP_STARTED
    step_id: str
    step_type: str
    attempt: int


class StepCompletedEvent(BaseEvent):
    """Emitted when a step succeeds (including non-fatal cmd failures)."""

    event_type: EventType = EventType.STEP_COMPLETED
    step_id: str
    duration_seconds: float | None = None
    non_fatal_failure: bool = False
    warning: str | None = None


class StepFailedEvent(BaseEvent):
    """Emitted when a step fails."""

    event_type: EventType = EventType.STEP_FAILED
    step_id: str
    error: str
    duration_seconds: float | None = None


class StepPolicyViolationEvent(BaseEvent):
    """Emitted when the policy guard stops an agent step."""

    event_type: EventType = EventType.STEP_POLICY_VIOLATION
    step_id: str
    dimension: str
    value: Any = None
    limit: Any = None


class StepSkippedEvent(BaseEvent):
    """Emitted when a step is skipped because the run already failed."""

    event_type: EventType = EventType.STEP_SKIPPED
    step_id: str
    reason: str


Event = (
    RunStartedEvent
    | RunResumedEvent
    | RunCompletedEvent
    | RunFailedEvent
    | StepStartedEvent
    | StepCompletedEvent
    | StepFailedEvent
    | StepPolicyViolationEvent
    | StepSkippedEvent
)
