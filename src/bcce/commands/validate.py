"""Validate command implementation - workflow structural and semantic validation."""

from pathlib import Path

from bcce.commands.common import report_error
from bcce.core.schemas import load_document
from bcce.display import console
from bcce.exceptions import BcceError
from bcce.validation import WorkflowValidator


def validate_command(file: Path) -> None:
    """Validate a workflow document.

    Exit Codes:
        0: Validation passed
        1: Validation failed (errors found)
    """
    try:
        document = load_document(file)
    except BcceError as e:
        report_error(e)
        raise SystemExit(1) from None

    result = WorkflowValidator(base_dir=file.resolve().parent).validate(document)
    result.print(console)

    if not result.success:
        raise SystemExit(1)
