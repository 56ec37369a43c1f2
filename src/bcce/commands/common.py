"""Helpers shared by the workflow commands."""

from pathlib import Path

from rich.markup import escape

from bcce.core.schemas import Workflow, load_document
from bcce.display import console, print_error, print_warning
from bcce.env import OsEnvironmentProvider, parse_var_overrides, resolve_definition
from bcce.exceptions import BcceError, ValidationError
from bcce.validation import WorkflowValidator, validate_workflow


def load_workflow(file: Path) -> Workflow:
    """Read and validate a workflow document, printing any warnings.

    Raises:
        WorkflowNotFoundError: If the file does not exist
        ValidationError: If the document is invalid
    """
    document = load_document(file)
    result = WorkflowValidator(base_dir=file.resolve().parent).validate(document)
    for warning in result.warnings:
        print_warning(warning)
    if not result.success or result.definition is None:
        raise ValidationError(result.errors)
    return result.definition


def load_resolved_workflow(file: Path, var: list[str] | None = None) -> Workflow:
    """Load a workflow and substitute ``${NAME}`` placeholders.

    ``--var KEY=VALUE`` overrides win over the process environment.
    ``${RUN_ID}`` stays in place until the engine assigns the run id.

    Raises:
        ConfigError: If a placeholder has no value
    """
    definition = load_workflow(file)
    provider = OsEnvironmentProvider(parse_var_overrides(var or []))
    resolved = resolve_definition(definition, provider.variables())
    # Substituted values must still form a valid document.
    return validate_workflow(resolved.to_document())


def report_error(error: BcceError) -> None:
    """Render an error at the CLI boundary."""
    if isinstance(error, ValidationError) and len(error.issues) > 1:
        print_error("Invalid workflow:")
        for issue in error.issues:
            console.print(f"  [red]•[/red] {escape(str(issue))}", highlight=False)
        return
    print_error(escape(str(error)))
