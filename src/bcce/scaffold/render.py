"""Template rendering utilities for workflow scaffolds."""

from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined

TEMPLATES_DIR = Path(__file__).parent / "templates"


def _get_environment() -> Environment:
    """Get Jinja2 environment configured for workflow templates."""
    return Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        keep_trailing_newline=True,
        trim_blocks=False,
        lstrip_blocks=False,
        undefined=StrictUndefined,
    )


def available_templates() -> list[str]:
    """Names of the scaffold templates, sorted."""
    return sorted(p.name for p in TEMPLATES_DIR.iterdir() if (p / "workflow.yml.j2").is_file())


def render_scaffold_file(template: str, filename: str, **context: Any) -> str:
    """Render one file of a scaffold template.

    Args:
        template: Template name (e.g., "agent")
        filename: File to render (e.g., "workflow.yml")
        **context: Template variables

    Returns:
        Rendered file content
    """
    env = _get_environment()
    return env.get_template(f"{template}/{filename}.j2").render(**context)  # type: ignore[no-any-return]
