"""
CLI command for planning (dry-run) a declaration set.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Sequence

from rich.markup import escape

from tierlayer.cli.ux import console, error, header, info, warning
from tierlayer.config.loader import load_project_config
from tierlayer.config.secrets import SecretResolver
from tierlayer.config.settings import get_settings
from tierlayer.core.errors import TierLayerError, format_error_message
from tierlayer.declarations.loader import load_declarations
from tierlayer.orchestration.executors import CommandExecutor, EchoExecutor
from tierlayer.orchestration.plan_builder import load_previous_plan
from tierlayer.orchestration.registry import ExecutorRegistry
from tierlayer.orchestration.results import Action, Plan, PlannedNode
from tierlayer.orchestrator import Orchestrator
from tierlayer.resolution.lookups import InventoryLookupProvider
from tierlayer.resolution.variables import VariableSource

ACTION_SYMBOLS = {
    Action.CREATE: "[success]+[/success]",
    Action.UPDATE: "[warning]~[/warning]",
    Action.NO_OP: "[muted]=[/muted]",
    Action.DELETE: "[error]-[/error]",
}


def load_orchestrator(
    declarations: str | None = None,
    env: str | None = None,
    variables: Sequence[str] = (),
    var_files: Sequence[str] = (),
    secrets_file: str | None = None,
    inventory: str | None = None,
    max_workers: int | None = None,
    executor_command: str | None = None,
    config_path: str | None = None,
) -> Orchestrator:
    """
    Build an orchestrator from CLI flags, project config and settings.

    Flags win over the project config file, which wins over TIERLAYER_*
    settings.
    """
    settings = get_settings()
    project = load_project_config(config_path)

    environment = env or project.environment or settings.environment
    registry = load_declarations(declarations or project.declarations, environment)

    source = VariableSource.from_sources(
        registry.variables,
        var_files=[*project.var_files, *var_files],
        env_prefix=settings.var_env_prefix,
        assignments=variables,
    )

    inventory_file = inventory or project.inventory_file or settings.inventory_file
    provider = InventoryLookupProvider.from_file(inventory_file) if inventory_file else None

    secret_config = project.secrets
    chosen_secrets = secrets_file or settings.secrets_file
    if chosen_secrets:
        secret_config.secrets_file = Path(chosen_secrets)
    if secret_config.env_prefix == "TIERLAYER_SECRET_":
        secret_config.env_prefix = settings.secret_env_prefix
    secret_sets = SecretResolver(secret_config).resolve_sets(
        node.policy.sensitive for node in registry if node.policy.sensitive
    )

    command = executor_command or project.executor_command or settings.executor_command
    executors = ExecutorRegistry(default=CommandExecutor(command) if command else EchoExecutor())

    return Orchestrator(
        registry,
        variables=source,
        environment=environment,
        lookup_provider=provider,
        secret_sets=secret_sets,
        executors=executors,
        max_workers=max_workers or project.max_workers or settings.max_workers,
    )


def _format_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def _print_node(planned: PlannedNode, verbose: bool) -> None:
    label = f"{planned.node_id} ({planned.node_type})"
    suffix = " [highlight]spanning[/highlight]" if planned.spanning else ""
    if planned.decision.count == 0:
        console.print(f"  [muted]○ {escape(label)}  {escape(planned.decision.describe())}[/muted]")
        return

    console.print(f"  [bold]{escape(label)}[/bold]  [muted]{escape(planned.decision.describe())}[/muted]{suffix}")
    for instance in planned.instances:
        console.print(f"    {ACTION_SYMBOLS[instance.action]} {escape(str(instance.address))}")
        if instance.changes:
            for change in instance.changes:
                console.print(
                    f"        [frost]{escape(change.name)}[/frost]: "
                    f"{escape(_format_value(change.before))} → {escape(_format_value(change.after))}"
                )
        elif verbose or instance.action == Action.CREATE:
            for name, value in instance.rendered_inputs().items():
                console.print(f"        [frost]{escape(name)}[/frost] = {escape(_format_value(value))}")


def print_plan_summary(plan: Plan, verbose: bool = False) -> None:
    """Print plan grouped by tier with secrets redacted."""
    header(f"Plan: {plan.project} ({plan.environment})")
    console.print()

    if not plan.nodes:
        warning("No nodes declared")
        console.print()
        return

    console.print(f"[bold]Execution order:[/bold] {escape(plan.execution_order)}")
    console.print()

    for group in plan.tier_groups:
        console.print(f"[bold cyan]Tier {plan.tiers[group[0]]}[/bold cyan]")
        for node_id in group:
            _print_node(plan.nodes[node_id], verbose)
        console.print()

    if plan.removed:
        console.print("[bold]No longer declared (not destroyed by apply):[/bold]")
        for address in plan.removed:
            console.print(f"    {ACTION_SYMBOLS[Action.DELETE]} {escape(address)}")
        console.print()

    counts = plan.action_counts()
    console.print(
        f"[bold]Plan:[/bold] {counts.get('create', 0)} to create, "
        f"{counts.get('update', 0)} to update, {counts.get('no-op', 0)} unchanged, "
        f"{counts.get('delete', 0)} removed."
    )

    for message in plan.warnings:
        info(message)
    console.print()


def print_plan_json(plan: Plan) -> None:
    """Print plan in JSON format."""
    print(json.dumps(plan.to_dict(), indent=2, default=str))


def print_errors(exc: TierLayerError) -> None:
    """Print an error (and every aggregated validation error)."""
    console.print()
    error(format_error_message(exc))
    console.print()


def plan_command(
    declarations: str | None = None,
    env: str | None = None,
    variables: Sequence[str] = (),
    var_files: Sequence[str] = (),
    secrets_file: str | None = None,
    inventory: str | None = None,
    targets: Sequence[str] = (),
    previous: str | None = None,
    out: str | None = None,
    output_format: str = "text",
    verbose: bool = False,
    config_path: str | None = None,
) -> int:
    """
    Preview the execution plan.

    Args:
        declarations: Path to the declaration YAML file
        env: Environment classification (selects the overlay, feeds ``${env}``)
        variables: ``name=value`` assignments
        var_files: Variable files
        secrets_file: Secret sets file
        inventory: Inventory file for lookups
        targets: Restrict the plan to these nodes and their dependencies
        previous: Previous JSON plan to diff against
        out: Write the JSON plan to this file
        output_format: Output format (text, json)
        verbose: Show inputs of unchanged instances
        config_path: Explicit project config file

    Returns:
        Exit code (0 for success, the error's exit code otherwise)
    """
    try:
        orchestrator = load_orchestrator(
            declarations,
            env=env,
            variables=variables,
            var_files=var_files,
            secrets_file=secrets_file,
            inventory=inventory,
            config_path=config_path,
        )
        plan = orchestrator.plan(
            targets=targets or None,
            previous=load_previous_plan(previous) if previous else None,
        )
    except TierLayerError as e:
        print_errors(e)
        return e.exit_code

    if out:
        Path(out).write_text(json.dumps(plan.to_dict(), indent=2, default=str) + "\n")

    if output_format == "json":
        print_plan_json(plan)
    else:
        print_plan_summary(plan, verbose=verbose)

    return 0
