"""Workflow diagrams.

``export`` projects a definition onto a graph: one node per step, tagged
with its type, and one edge per consecutive pair of steps. The renderers
turn that graph into Graphviz DOT, Mermaid, or (through the ``dot``
binary) PNG/SVG.
"""

import shutil
import subprocess

from pydantic import BaseModel, Field

from bcce.core.schemas import Workflow
from bcce.exceptions import BcceError, ExecutionError

TEXT_FORMATS = ("dot", "mermaid")
IMAGE_FORMATS = ("png", "svg")
FORMATS = TEXT_FORMATS + IMAGE_FORMATS

# Node colors per step type.
DOT_COLORS = {
    "cmd": "lightblue",
    "agent": "orange",
    "apply_diff": "lightcoral",
    "prompt": "lightgreen",
}


class Node(BaseModel):
    id: str
    step_type: str = Field(..., description="Step kind, used for styling")

    @property
    def label(self) -> str:
        return f"{self.id}\n({self.step_type})"


class Edge(BaseModel):
    source: str
    target: str


class Graph(BaseModel):
    """Directed graph of a workflow's steps."""

    name: str
    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)


def export(definition: Workflow) -> Graph:
    """Project a workflow onto its step graph."""
    nodes = [Node(id=step.id, step_type=step.type) for step in definition.steps]
    edges = [
        Edge(source=source.id, target=target.id)
        for source, target in zip(nodes, nodes[1:], strict=False)
    ]
    return Graph(name=definition.name, nodes=nodes, edges=edges)


def _dot_quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def to_dot(graph: Graph) -> str:
    """Render a graph as Graphviz DOT."""
    lines = [
        "digraph workflow {",
        "  rankdir=TB;",
        "  node [shape=box, style=rounded];",
        "",
    ]
    for node in graph.nodes:
        shape = "diamond" if node.step_type == "agent" else "box"
        color = DOT_COLORS.get(node.step_type, "lightgreen")
        label = _dot_quote(node.label).replace("\n", "\\n")
        lines.append(
            f"  {_dot_quote(node.id)} [label={label}, shape={shape}, "
            f"fillcolor={color}, style=filled];"
        )
    lines.append("")
    for edge in graph.edges:
        lines.append(f"  {_dot_quote(edge.source)} -> {_dot_quote(edge.target)};")
    lines.append("}")
    return "\n".join(lines) + "\n"


def to_mermaid(graph: Graph) -> str:
    """Render a graph as a Mermaid flowchart."""
    ids = {node.id: f"s{index}" for index, node in enumerate(graph.nodes)}
    lines = ["flowchart TD"]
    for node in graph.nodes:
        text = f"{node.id}<br/>({node.step_type})".replace('"', "#quot;")
        if node.step_type == "agent":
            lines.append(f'    {ids[node.id]}{{"{text}"}}')
        else:
            lines.append(f'    {ids[node.id]}["{text}"]')
    for edge in graph.edges:
        lines.append(f"    {ids[edge.source]} --> {ids[edge.target]}")
    for node in graph.nodes:
        color = DOT_COLORS.get(node.step_type, "lightgreen")
        lines.append(f"    style {ids[node.id]} fill:{color}")
    return "\n".join(lines) + "\n"


def render(graph: Graph, fmt: str = "dot") -> str | bytes:
    """Render a graph in the requested format.

    Text formats return str; image formats return the bytes produced by
    Graphviz.

    Raises:
        BcceError: If the format is unknown
        ExecutionError: If Graphviz is needed but unavailable or fails
    """
    if fmt == "dot":
        return to_dot(graph)
    if fmt == "mermaid":
        return to_mermaid(graph)
    if fmt not in IMAGE_FORMATS:
        raise BcceError(f"Unknown diagram format '{fmt}'. Available: {', '.join(FORMATS)}")

    dot_binary = shutil.which("dot")
    if dot_binary is None:
        raise ExecutionError(f"Graphviz 'dot' is required for {fmt} output but was not found on PATH")
    result = subprocess.run(
        [dot_binary, f"-T{fmt}"],
        input=to_dot(graph).encode(),
        capture_output=True,
    )
    if result.returncode != 0:
        raise ExecutionError(f"Graphviz failed: {result.stderr.decode(errors='replace').strip()}")
    return result.stdout
