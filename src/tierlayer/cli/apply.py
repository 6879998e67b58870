"""
CLI command for applying a declaration set tier by tier.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Sequence

from rich.markup import escape

from tierlayer.cli.plan import load_orchestrator, plan_command, print_errors, print_plan_summary
from tierlayer.cli.ux import console, spinner
from tierlayer.core.errors import TierLayerError
from tierlayer.orchestration.results import ApplyResult, NodeStatus

STATUS_STYLES = {
    NodeStatus.APPLIED: ("success", "✓"),
    NodeStatus.FAILED: ("error", "✗"),
    NodeStatus.BLOCKED: ("warning", "⊘"),
    NodeStatus.SKIPPED: ("warning", "↷"),
    NodeStatus.NOT_INSTANTIATED: ("muted", "○"),
    NodeStatus.PENDING: ("muted", "…"),
}


def print_apply_summary(result: ApplyResult, verbose: bool = False) -> None:
    """Print apply summary with rich formatting."""
    console.print()

    for node_id, status in sorted(result.statuses.items()):
        style, icon = STATUS_STYLES[status]
        console.print(f"  [{style}]{icon} {escape(node_id):<24}[/{style}] {status}")

    console.print()
    duration = f" in {result.duration_seconds:.1f}s" if result.duration_seconds > 0 else ""
    applied = len(result.nodes_with(NodeStatus.APPLIED))
    if result.success:
        console.print(f"[bold green]Applied {applied} nodes{duration}[/bold green]")
    elif result.cancelled:
        console.print(f"[bold yellow]Apply cancelled after {applied} nodes{duration}[/bold yellow]")
    else:
        console.print(f"[bold yellow]Applied {applied} nodes with errors{duration}[/bold yellow]")

    if result.errors:
        console.print()
        console.print("[yellow]Errors:[/yellow]")
        for err in result.errors:
            if not verbose and len(err) > 120:
                err = err[:117] + "..."
            console.print(f"  [dim]•[/dim] {escape(err)}")

    console.print()


def print_apply_json(result: ApplyResult) -> None:
    """Print apply result in JSON format."""
    output = {
        "project": result.project,
        "statuses": {node_id: str(status) for node_id, status in sorted(result.statuses.items())},
        "outputs": result.rendered_outputs(),
        "errors": result.errors,
        "duration_seconds": result.duration_seconds,
        "cancelled": result.cancelled,
        "success": result.success,
    }
    print(json.dumps(output, indent=2, default=str))


def write_outputs_file(result: ApplyResult, path: str | Path) -> None:
    """Write produced outputs (secrets redacted) for ``tierlayer output``."""
    Path(path).write_text(json.dumps(result.rendered_outputs(), indent=2, default=str) + "\n")


def apply_command(
    declarations: str | None = None,
    env: str | None = None,
    variables: Sequence[str] = (),
    var_files: Sequence[str] = (),
    secrets_file: str | None = None,
    inventory: str | None = None,
    targets: Sequence[str] = (),
    max_workers: int | None = None,
    executor_command: str | None = None,
    outputs_file: str | None = None,
    dry_run: bool = False,
    output_format: str = "text",
    verbose: bool = False,
    config_path: str | None = None,
) -> int:
    """
    Validate, plan and apply tier by tier.

    Nothing is applied when validation fails.

    Returns:
        Exit code: 0 success, 11 apply error, 2 blocked, 130 cancelled, or
        the validation error's exit code
    """
    if dry_run:
        return plan_command(
            declarations,
            env=env,
            variables=variables,
            var_files=var_files,
            secrets_file=secrets_file,
            inventory=inventory,
            targets=targets,
            output_format=output_format,
            verbose=verbose,
            config_path=config_path,
        )

    try:
        orchestrator = load_orchestrator(
            declarations,
            env=env,
            variables=variables,
            var_files=var_files,
            secrets_file=secrets_file,
            inventory=inventory,
            max_workers=max_workers,
            executor_command=executor_command,
            config_path=config_path,
        )
        plan = orchestrator.plan(targets=targets or None)
    except TierLayerError as e:
        print_errors(e)
        return e.exit_code

    if output_format != "json":
        print_plan_summary(plan, verbose=verbose)

    with spinner(f"Applying {len(plan.nodes)} nodes"):
        result = orchestrator.apply(plan=plan)

    if outputs_file:
        write_outputs_file(result, outputs_file)

    if output_format == "json":
        print_apply_json(result)
    else:
        print_apply_summary(result, verbose=verbose)

    return int(result.exit_code)
