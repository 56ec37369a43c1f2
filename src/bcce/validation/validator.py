"""Workflow validator: structural schema checks plus semantic checks.

Two passes over a parsed document:

1. Structural - the document conforms to ``WORKFLOW_SCHEMA``. Every
   violation is collected, not just the first.
2. Semantic - unique step ids, per-type mandatory fields, policy bounds.
   Runs only when the structural pass is clean.

Only a document that passes both becomes a ``Workflow``.
"""

from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.markup import escape

from bcce.core.schemas import Workflow
from bcce.exceptions import ValidationError
from bcce.validation.schema import WORKFLOW_SCHEMA

# Mandatory field per step type. apply_diff has none.
REQUIRED_STEP_FIELDS = {
    "prompt": ("prompt_file", "prompt steps require prompt_file"),
    "cmd": ("command", "cmd steps require command"),
    "agent": ("policy", "agent steps require policy constraints"),
}

_schema_validator = Draft202012Validator(WORKFLOW_SCHEMA)


class ValidationIssue(BaseModel):
    """One problem found in a document."""

    path: str = Field(..., description="Location within the document (e.g. steps/1/policy)")
    message: str = Field(..., description="Human-readable description")
    step_id: str | None = Field(default=None, description="Offending step, when known")

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


class ValidationResult(BaseModel):
    """Result of workflow validation.

    Attributes:
        success: Whether validation passed
        errors: Issues that make the document unacceptable
        warnings: Issues worth fixing that do not block acceptance
        definition: The accepted workflow (only when success is True)
    """

    success: bool = Field(..., description="Whether validation passed")
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    definition: Workflow | None = None

    def format(self) -> str:
        """Format validation result for display with Rich."""
        lines: list[str] = []

        if self.success:
            lines.append("[green]✓[/green] Workflow validation passed")
        else:
            lines.append("[red]✗[/red] Workflow validation failed")

        if self.definition is not None:
            lines.append(f"  Steps: {len(self.definition.steps)}")
            lines.append(f"  Model: {self.definition.model or 'default'}")
            if self.definition.guardrails:
                lines.append(f"  Guardrails: {', '.join(self.definition.guardrails)}")

        if self.errors:
            lines.append("\n[red bold]Errors:[/red bold]")
            for error in self.errors:
                lines.append(f"  [red]•[/red] {escape(str(error))}")

        if self.warnings:
            lines.append("\n[yellow bold]Warnings:[/yellow bold]")
            for warning in self.warnings:
                lines.append(f"  [yellow]•[/yellow] {escape(warning)}")

        return "\n".join(lines)

    def print(self, console: Console | None = None) -> None:
        """Print formatted validation result to console."""
        (console or Console()).print(self.format())


class WorkflowValidator:
    """Validates workflow documents.

    Checks:
    - Document matches the published schema
    - Step ids are unique
    - Each step has its type's mandatory field
    - Agent policies have positive budgets and at least one allowed path
    """

    def __init__(self, base_dir: Path | None = None) -> None:
        """Initialize validator.

        Args:
            base_dir: Directory prompt_file paths are relative to. Only used
                      for warnings; None skips the prompt-file check.
        """
        self.base_dir = base_dir

    def validate(self, document: Any) -> ValidationResult:
        """Validate a parsed workflow document.

        Args:
            document: Parsed YAML/JSON document

        Returns:
            ValidationResult with errors, warnings, and the definition on success
        """
        errors = self._structural_errors(document)
        if errors:
            return ValidationResult(success=False, errors=errors)

        errors = self._semantic_errors(document)
        if errors:
            return ValidationResult(success=False, errors=errors)

        try:
            definition = Workflow.model_validate(document)
        except PydanticValidationError as e:
            return ValidationResult(success=False, errors=_from_pydantic(e))

        return ValidationResult(
            success=True,
            warnings=self._warnings(definition),
            definition=definition,
        )

    def _structural_errors(self, document: Any) -> list[ValidationIssue]:
        issues = []
        for error in sorted(_schema_validator.iter_errors(document), key=_error_order):
            path = "/".join(str(part) for part in error.absolute_path) or "root"
            issues.append(ValidationIssue(path=path, message=error.message))
        return issues

    def _semantic_errors(self, document: dict[str, Any]) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        seen: set[str] = set()
        reported: set[str] = set()

        for index, step in enumerate(document["steps"]):
            step_id = step["id"]
            path = f"steps/{index}"

            if step_id in seen and step_id not in reported:
                issues.append(
                    ValidationIssue(
                        path=f"{path}/id", message=f"Duplicate step ID: {step_id}", step_id=step_id
                    )
                )
                reported.add(step_id)
            seen.add(step_id)

            required = REQUIRED_STEP_FIELDS.get(step["type"])
            if required:
                field, message = required
                if not step.get(field):
                    issues.append(
                        ValidationIssue(
                            path=f"{path}/{field}",
                            message=f"Step '{step_id}': {message}",
                            step_id=step_id,
                        )
                    )

            if step["type"] == "agent" and step.get("policy"):
                issues.extend(_policy_errors(step_id, f"{path}/policy", step["policy"]))

        max_runtime = document.get("env", {}).get("max_runtime_seconds")
        if max_runtime is not None and max_runtime <= 0:
            issues.append(
                ValidationIssue(
                    path="env/max_runtime_seconds",
                    message=f"max_runtime_seconds must be positive, got {max_runtime}",
                )
            )

        return issues

    def _warnings(self, definition: Workflow) -> list[str]:
        warnings: list[str] = []
        if not definition.model:
            warnings.append("No model specified; the agent runner default will be used")

        if self.base_dir is not None:
            for step in definition.steps:
                prompt_file = getattr(step, "prompt_file", None)
                if prompt_file and not (self.base_dir / prompt_file).exists():
                    warnings.append(f"Step '{step.id}': prompt file not found: {prompt_file}")
        return warnings


def _error_order(error: Any) -> list[tuple[int, str]]:
    # Document order: array indices numerically, keys alphabetically.
    return [(0, f"{p:08d}") if isinstance(p, int) else (1, p) for p in error.absolute_path]


def _policy_errors(step_id: str, path: str, policy: dict[str, Any]) -> list[ValidationIssue]:
    issues = []
    for field in ("timeout_seconds", "max_files"):
        if policy[field] <= 0:
            issues.append(
                ValidationIssue(
                    path=f"{path}/{field}",
                    message=f"Step '{step_id}': {field} must be positive, got {policy[field]}",
                    step_id=step_id,
                )
            )
    if policy["max_edits"] < 1:
        issues.append(
            ValidationIssue(
                path=f"{path}/max_edits",
                message=f"Step '{step_id}': max_edits must be at least 1, got {policy['max_edits']}",
                step_id=step_id,
            )
        )
    if not policy["allowed_paths"]:
        issues.append(
            ValidationIssue(
                path=f"{path}/allowed_paths",
                message=f"Step '{step_id}': allowed_paths must not be empty",
                step_id=step_id,
            )
        )
    return issues


def _from_pydantic(error: PydanticValidationError) -> list[ValidationIssue]:
    return [
        ValidationIssue(path="/".join(str(p) for p in e["loc"]) or "root", message=e["msg"])
        for e in error.errors()
    ]


def validate_workflow(document: Any, base_dir: Path | None = None) -> Workflow:
    """Validate a document and return the accepted definition.

    Raises:
        ValidationError: With every issue found
    """
    result = WorkflowValidator(base_dir).validate(document)
    if not result.success or result.definition is None:
        raise ValidationError(result.errors)
    return result.definition
