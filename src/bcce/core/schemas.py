"""Pydantic schemas for bcce workflow definitions.

A workflow document is YAML; once validated it becomes an immutable
``Workflow``. Step order in ``steps`` is the execution order.
"""

import hashlib
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field

from bcce.exceptions import ValidationError, WorkflowNotFoundError


class StepType(str, Enum):
    """Step kinds a workflow can contain."""

    PROMPT = "prompt"
    CMD = "cmd"
    AGENT = "agent"
    APPLY_DIFF = "apply_diff"


class OnError(str, Enum):
    """What a cmd step does with a non-zero exit."""

    CONTINUE = "continue"
    FAIL = "fail"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class StepInputs(_Frozen):
    """Input filters for a prompt step."""

    paths: list[str] = Field(default_factory=list)
    file_size_limit_kb: int | None = None


class Policy(_Frozen):
    """Budget an agent step must stay within."""

    timeout_seconds: float = Field(..., gt=0)
    max_files: int = Field(..., gt=0)
    max_edits: int = Field(..., ge=1)
    allowed_paths: list[str] = Field(..., min_length=1)
    cmd_allowlist: list[str] = Field(default_factory=list)


class PromptStep(_Frozen):
    """Single language-model call driven by a prompt file."""

    id: str = Field(..., min_length=1)
    type: Literal["prompt"] = "prompt"
    prompt_file: str = Field(..., min_length=1)
    available_tools: list[str] = Field(default_factory=list)
    inputs: StepInputs | None = None


class CmdStep(_Frozen):
    """Shell command."""

    id: str = Field(..., min_length=1)
    type: Literal["cmd"] = "cmd"
    command: str = Field(..., min_length=1)
    on_error: OnError = OnError.FAIL


class AgentStep(_Frozen):
    """Autonomous agent run under a policy."""

    id: str = Field(..., min_length=1)
    type: Literal["agent"] = "agent"
    policy: Policy
    available_tools: list[str] = Field(default_factory=list)
    prompt_file: str | None = None


class ApplyDiffStep(_Frozen):
    """Commit the edits proposed by earlier agent steps."""

    id: str = Field(..., min_length=1)
    type: Literal["apply_diff"] = "apply_diff"
    approve: bool = False


Step = Annotated[
    Union[PromptStep, CmdStep, AgentStep, ApplyDiffStep],
    Field(discriminator="type"),
]


class WorkflowEnv(_Frozen):
    """Run-wide environment settings."""

    max_runtime_seconds: int | None = Field(default=None, gt=0)
    artifacts_dir: str | None = None


class Workflow(_Frozen):
    """Validated workflow definition.

    Steps form a degenerate linear DAG: every step depends on exactly its
    predecessor. ``predecessors`` is the one place that encodes this, so
    branching can be added there without touching the engine's callers.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    version: int = 1
    name: str = Field(..., alias="workflow")
    model: str | None = None
    guardrails: list[str] = Field(default_factory=list)
    env: WorkflowEnv = Field(default_factory=WorkflowEnv)
    steps: list[Step] = Field(..., min_length=1)

    def step_ids(self) -> list[str]:
        return [step.id for step in self.steps]

    def get_step(self, step_id: str) -> PromptStep | CmdStep | AgentStep | ApplyDiffStep | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def index_of(self, step_id: str) -> int:
        """Position of a step in execution order.

        Raises:
            KeyError: If no step has this id
        """
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        raise KeyError(step_id)

    def predecessors(self, step_id: str) -> list[str]:
        """Ids of the steps that must finish before ``step_id`` starts."""
        index = self.index_of(step_id)
        return [self.steps[index - 1].id] if index > 0 else []

    def to_document(self) -> dict[str, Any]:
        """Serialize back to the document shape (``workflow`` key, no Nones)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def load_document(path: Path) -> dict[str, Any]:
    """Read a workflow YAML file into a plain mapping.

    Raises:
        WorkflowNotFoundError: If the file does not exist
        ValidationError: If the YAML cannot be parsed or is not a mapping
    """
    from bcce.validation.validator import ValidationIssue

    if not path.exists():
        raise WorkflowNotFoundError(str(path))

    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        location = "<document>"
        mark = getattr(e, "problem_mark", None)
        if mark is not None:
            location = f"line {mark.line + 1}, column {mark.column + 1}"
        problem = getattr(e, "problem", None) or str(e)
        raise ValidationError(
            [ValidationIssue(path=location, message=f"YAML parsing error: {problem}")]
        ) from e

    if not isinstance(document, dict):
        raise ValidationError(
            [ValidationIssue(path="<document>", message="workflow document must be a mapping")]
        )
    return document


def hash_document(path: Path) -> str:
    """SHA256 of the workflow document bytes."""
    return hashlib.sha256(path.read_bytes()).hexdigest()
