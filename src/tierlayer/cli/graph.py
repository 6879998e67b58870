"""
Graph command: show tiers and dependency edges.
"""

from __future__ import annotations

import json
from typing import Sequence

from rich.markup import escape

from tierlayer.cli.plan import load_orchestrator, print_errors
from tierlayer.cli.ux import console, header, print_table
from tierlayer.core.errors import TierLayerError, ValidationFailed
from tierlayer.graph.scheduler import group_by_tier
from tierlayer.orchestration.validation import ValidationReport


def render_dot(report: ValidationReport) -> str:
    """Graphviz rendering; arrows point from producer to consumer."""
    lines = ["digraph tierlayer {", "  rankdir=LR;"]
    for tier, group in enumerate(group_by_tier(report.tiers)):
        members = " ".join(json.dumps(n) for n in group)
        lines.append(f"  subgraph tier_{tier} {{ rank=same; {members}; }}")
    for edge in sorted(report.edges):
        lines.append(
            f"  {json.dumps(edge.target)} -> {json.dumps(edge.source)} [label={json.dumps(edge.output)}];"
        )
    lines.append("}")
    return "\n".join(lines)


def graph_command(
    declarations: str | None = None,
    env: str | None = None,
    variables: Sequence[str] = (),
    var_files: Sequence[str] = (),
    output_format: str = "text",
    config_path: str | None = None,
) -> int:
    """
    Print the dependency graph.

    Only reference and cycle errors stop the command; the graph does not
    need secrets or lookups.
    """
    try:
        orchestrator = load_orchestrator(
            declarations, env=env, variables=variables, var_files=var_files, config_path=config_path
        )
        report = orchestrator.validate()
    except TierLayerError as e:
        print_errors(e)
        return e.exit_code

    structural = [
        e
        for check in report.checks
        if check.name in ("declarations", "references", "cycles", "spanning")
        for e in check.errors
    ]
    if structural:
        exc = ValidationFailed(structural)
        print_errors(exc)
        return exc.exit_code

    if output_format == "dot":
        print(render_dot(report))
        return 0

    if output_format == "json":
        print(
            json.dumps(
                {
                    "tiers": report.tiers,
                    "spanning": report.spanning,
                    "edges": [
                        {"source": e.source, "target": e.target, "output": e.output}
                        for e in sorted(report.edges)
                    ],
                },
                indent=2,
            )
        )
        return 0

    header(f"Graph: {report.registry.project}")
    for group in group_by_tier(report.tiers):
        console.print(f"[bold cyan]Tier {report.tiers[group[0]]}[/bold cyan]  {escape(', '.join(group))}")
    console.print()
    print_table(
        "Edges",
        ["Consumer", "Producer", "Output"],
        [[e.source, e.target, e.output] for e in sorted(report.edges)],
    )
    if report.spanning:
        console.print(f"[highlight]Spanning nodes:[/highlight] {escape(', '.join(report.spanning))}")
    return 0
