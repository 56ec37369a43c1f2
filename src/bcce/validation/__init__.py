"""Workflow document validation.

Structural (JSON schema) and semantic checks. Pure: a document either
becomes a ``Workflow`` or is rejected with every issue found.
"""

from bcce.validation.schema import WORKFLOW_SCHEMA
from bcce.validation.validator import (
    ValidationIssue,
    ValidationResult,
    WorkflowValidator,
    validate_workflow,
)

__all__ = [
    "WORKFLOW_SCHEMA",
    "ValidationIssue",
    "ValidationResult",
    "WorkflowValidator",
    "validate_workflow",
]
