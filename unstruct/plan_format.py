# unstruct/plan_format.py
"""Render plan trees as a text outline, a JSON document, or a rich tree.

Example text output::

    Unstructor Execution Plan (estimated costs)
    SchemaAnalysis (cost=12.3, tokens(in=10), fields=[Name, Age, City])
      ├─ PromptCall "basic" (model=gpt-4o, cost=4.4, tokens(in=140,out=46), fields=[Name, Age, City], $0.001620)
      └─ MergeFragments (cost=0.8, fields=[Name, Age, City])
"""

from __future__ import annotations

import json
from typing import List, Literal, Optional

from rich.console import Console
from rich.markup import escape
from rich.tree import Tree

from .plan import PlanNode

TEXT_TITLE = "Unstructor Execution Plan (estimated costs)"


def describe_node(node: PlanNode) -> str:
    """One-line summary of a single node."""
    parts: List[str] = [node.type]
    if node.prompt_name:
        parts.append(f'"{node.prompt_name}"')

    details: List[str] = []
    if node.model:
        details.append(f"model={node.model}")
    details.append(f"cost={node.est_cost:.1f}")
    if node.output_tokens > 0:
        details.append(f"tokens(in={node.input_tokens},out={node.output_tokens})")
    elif node.input_tokens > 0:
        details.append(f"tokens(in={node.input_tokens})")
    if len(node.fields) == 1:
        details.append(f"field={node.fields[0]}")
    elif node.fields:
        details.append(f"fields=[{', '.join(node.fields)}]")
    if node.act_cost is not None:
        details.append(f"${node.act_cost:.6f}")

    parts.append(f"({', '.join(details)})")
    return " ".join(parts)


def _text_lines(node: PlanNode, prefix: str, is_last: bool, lines: List[str]) -> None:
    connector = "" if not prefix else ("└─ " if is_last else "├─ ")
    lines.append(f"{prefix}{connector}{describe_node(node)}")

    if not prefix:
        child_prefix = "  "
    else:
        child_prefix = prefix + ("   " if is_last else "│  ")
    for i, child in enumerate(node.children):
        _text_lines(child, child_prefix, i == len(node.children) - 1, lines)


def format_text(plan: PlanNode) -> str:
    """Indented ASCII outline of *plan*."""
    lines = [TEXT_TITLE]
    _text_lines(plan, "", True, lines)
    return "\n".join(lines) + "\n"


def format_json(plan: PlanNode, indent: int = 2) -> str:
    """Structured document of *plan*, empty and unset values omitted."""
    data = plan.model_dump(exclude_none=True)

    def prune(node: dict) -> dict:
        node = {k: v for k, v in node.items() if v not in ("", [], {}, 0) or k in ("type", "est_cost", "own_cost")}
        if "children" in node:
            node["children"] = [prune(child) for child in node["children"]]
        return node

    return json.dumps(prune(data), indent=indent, ensure_ascii=False)


def format_plan(plan: PlanNode, format: Literal["text", "json"] = "text") -> str:
    if format == "text":
        return format_text(plan)
    if format == "json":
        return format_json(plan)
    raise ValueError(f"unsupported format: {format!r}")


def build_tree(plan: PlanNode) -> Tree:
    """Convert *plan* into a ``rich.tree.Tree``."""

    def label(node: PlanNode) -> str:
        style = {"SchemaAnalysis": "bold", "PromptCall": "cyan", "MergeFragments": "green"}.get(node.type, "")
        text = escape(describe_node(node))
        return f"[{style}]{text}[/{style}]" if style else text

    def add(parent: Tree, node: PlanNode) -> None:
        for child in node.children:
            add(parent.add(label(child)), child)

    tree = Tree(label(plan))
    add(tree, plan)
    return tree


def render_plan(plan: PlanNode, console: Optional[Console] = None) -> None:
    """Print *plan* as a tree with a summary line of total cost and calls."""
    con = console or Console()
    con.print(f"[bold]{TEXT_TITLE}[/bold]")
    con.print(build_tree(plan))
    calls = sum(plan.expected_call_counts.values())
    summary = f"total cost {plan.est_cost:.1f}, {calls} call(s)"
    act = [node.act_cost for node in plan.walk() if node.act_cost is not None]
    if act:
        summary += f", ${sum(act):.6f}"
    con.print(summary, style="dim")


__all__ = [
    "TEXT_TITLE",
    "describe_node",
    "format_text",
    "format_json",
    "format_plan",
    "build_tree",
    "render_plan",
]
