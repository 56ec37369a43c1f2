"""Diagram command implementation."""

from pathlib import Path

from bcce.commands.common import load_workflow, report_error
from bcce.diagram import export, render
from bcce.display import console, print_error, print_success
from bcce.exceptions import BcceError


def diagram_command(file: Path, fmt: str = "dot", output: Path | None = None) -> None:
    """Export a workflow diagram to stdout or a file.

    Image formats (png, svg) need ``output``.
    """
    try:
        graph = export(load_workflow(file))
        content = render(graph, fmt)
    except BcceError as e:
        report_error(e)
        raise SystemExit(1) from None

    if output is None:
        if isinstance(content, bytes):
            print_error(f"{fmt} output is binary; pass --output <path>")
            raise SystemExit(1)
        console.print(content, markup=False, highlight=False, end="")
        return

    if isinstance(content, bytes):
        output.write_bytes(content)
    else:
        output.write_text(content, encoding="utf-8")
    print_success(f"Diagram saved to {output}")
