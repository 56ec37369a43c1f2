"""bcce exception hierarchy.

Provides a unified exception hierarchy for the bcce CLI and engine.
This enables:
- Structured errors that the CLI renders at its boundary
- Programmatic error handling in library usage
- Clear distinction between governance breaches and ordinary task failures

Usage:
    from bcce.exceptions import ValidationError, PolicyViolationError

    try:
        handle = engine.run(definition)
        handle.raise_for_status()
    except PolicyViolationError as e:
        print(f"{e.step_id} exceeded {e.dimension}: {e.value}")
    except BcceError as e:
        print(f"bcce error: {e}")
"""

from typing import Any


class BcceError(Exception):
    """Base exception for all bcce errors.

    All bcce-specific exceptions inherit from this class, allowing
    callers to catch all bcce errors with a single except clause.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class WorkflowNotFoundError(BcceError):
    """Workflow document not found."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Workflow not found: {path}")


# Validation Errors


class ValidationError(BcceError):
    """Malformed or semantically inconsistent workflow document.

    Carries every issue found, so callers can report them all at once.
    A document that raises this is never partially accepted.
    """

    def __init__(self, issues: list[Any]) -> None:
        self.issues = list(issues)
        if len(self.issues) == 1:
            message = f"Invalid workflow: {self.issues[0]}"
        else:
            message = f"Invalid workflow ({len(self.issues)} issues): " + "; ".join(
                str(issue) for issue in self.issues
            )
        super().__init__(message)


# Configuration Errors


class ConfigError(BcceError):
    """Unresolved template variable or missing environment input.

    Raised before any step runs.
    """

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        self.missing = sorted(missing or [])
        super().__init__(message)

    @classmethod
    def unresolved(cls, names: list[str]) -> "ConfigError":
        """Build the error for placeholders with no value."""
        joined = ", ".join(f"${{{name}}}" for name in sorted(names))
        return cls(f"Unresolved template variables: {joined}", missing=names)


# Execution Errors


class PolicyViolationError(BcceError):
    """An agent step breached its declared budget.

    Not recoverable within the run: the run is aborted and the breach is
    recorded with the failing dimension and the offending value.
    Runners that stop an agent mid-way attach what it produced so far in
    ``transcript`` and ``proposed_diff``.
    """

    def __init__(
        self,
        dimension: str,
        value: Any,
        limit: Any,
        step_id: str | None = None,
        reason: str | None = None,
    ) -> None:
        self.dimension = dimension
        self.value = value
        self.limit = limit
        self.step_id = step_id
        self.reason = reason or f"{dimension} exceeded: {value!r} (limit {limit!r})"
        self.transcript: str | None = None
        self.proposed_diff: str | None = None
        prefix = f"Step '{step_id}' policy violation" if step_id else "Policy violation"
        super().__init__(f"{prefix}: {self.reason}")

    def for_step(self, step_id: str) -> "PolicyViolationError":
        """Return a copy of this violation attributed to a step."""
        error = PolicyViolationError(
            self.dimension, self.value, self.limit, step_id=step_id, reason=self.reason
        )
        error.transcript = self.transcript
        error.proposed_diff = self.proposed_diff
        return error


class ExecutionError(BcceError):
    """An executor reported a failure for a step."""

    def __init__(self, reason: str, step_id: str | None = None) -> None:
        self.reason = reason
        self.step_id = step_id
        message = f"Step '{step_id}' failed: {reason}" if step_id else reason
        super().__init__(message)


class ExecutionTimeoutError(ExecutionError):
    """A step or the whole run ran out of time."""

    def __init__(self, timeout_seconds: float, step_id: str | None = None) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"timed out after {timeout_seconds}s", step_id=step_id)


class PersistenceError(BcceError):
    """Artifact store write or read failure.

    Fatal: a run whose state cannot be durably recorded must not continue.
    """

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot persist {path}: {reason}")


class ResumeError(BcceError):
    """A run cannot be resumed as requested."""

    def __init__(self, run_id: str, reason: str) -> None:
        self.run_id = run_id
        self.reason = reason
        super().__init__(f"Cannot resume run '{run_id}': {reason}")
