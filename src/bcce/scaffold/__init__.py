"""Workflow scaffolding.

Creates a starter ``workflow.yml`` and ``prompt.md`` from one of the
bundled templates (basic, agent, test-grader).
"""

import logging
import re
from pathlib import Path

from pydantic import BaseModel, Field

from bcce.exceptions import BcceError
from bcce.scaffold.render import available_templates, render_scaffold_file

logger = logging.getLogger(__name__)

SCAFFOLD_FILES = ("prompt.md", "workflow.yml")
EXAMPLES_DIR = Path("workflows") / "examples"


class ScaffoldResult(BaseModel):
    """Files created by scaffold_workflow."""

    name: str
    template: str
    directory: Path
    files: list[Path] = Field(default_factory=list)


def safe_name(name: str) -> str:
    """Directory-safe form of a workflow name: lowercase, [a-z0-9-] only."""
    return re.sub(r"[^a-z0-9-]", "-", name.lower())


def scaffold_workflow(name: str, template: str = "basic", root: Path | None = None) -> ScaffoldResult:
    """Scaffold a new workflow under ``<root>/workflows/examples/<safe-name>/``.

    Raises:
        BcceError: If the template is unknown or the files already exist
    """
    templates = available_templates()
    if template not in templates:
        raise BcceError(f"Unknown template '{template}'. Available: {', '.join(templates)}")
    if not name.strip():
        raise BcceError("Workflow name must not be empty")

    directory = (root or Path.cwd()) / EXAMPLES_DIR / safe_name(name)
    targets = [directory / filename for filename in SCAFFOLD_FILES]
    existing = [path for path in targets if path.exists()]
    if existing:
        raise BcceError(f"Refusing to overwrite existing files: {', '.join(str(p) for p in existing)}")

    directory.mkdir(parents=True, exist_ok=True)
    for filename, target in zip(SCAFFOLD_FILES, targets, strict=True):
        target.write_text(render_scaffold_file(template, filename, name=name), encoding="utf-8")

    logger.info("Scaffolded workflow '%s' (%s) in %s", name, template, directory)
    return ScaffoldResult(name=name, template=template, directory=directory, files=targets)


__all__ = ["SCAFFOLD_FILES", "ScaffoldResult", "available_templates", "safe_name", "scaffold_workflow"]
