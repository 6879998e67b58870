"""
Validate command.

Runs every preflight check and reports PASS/FAIL per check, so one run shows
all the problems at once.
"""

from __future__ import annotations

import json
from typing import Sequence

from rich.markup import escape

from tierlayer.cli.plan import load_orchestrator, print_errors
from tierlayer.cli.ux import console, error, header, success
from tierlayer.core.errors import ExitCode, TierLayerError, ValidationFailed
from tierlayer.graph.scheduler import execution_order
from tierlayer.orchestration.validation import ValidationReport


def print_report(report: ValidationReport) -> None:
    for check in report.checks:
        if check.passed:
            console.print(f"  [success]PASS[/success]  {escape(check.name)}")
            continue
        console.print(f"  [error]FAIL[/error]  {escape(check.name)}")
        for err in check.errors:
            console.print(f"          [error]•[/error] {escape(err.message)}")


def print_report_json(report: ValidationReport) -> None:
    output = {
        "project": report.registry.project,
        "valid": report.ok,
        "checks": [
            {
                "name": check.name,
                "status": "pass" if check.passed else "fail",
                "errors": [
                    {"type": type(e).__name__, "exit_code": int(e.exit_code), "message": e.message}
                    for e in check.errors
                ],
            }
            for check in report.checks
        ],
        "tiers": report.tiers,
    }
    print(json.dumps(output, indent=2))


def validate_command(
    declarations: str | None = None,
    env: str | None = None,
    variables: Sequence[str] = (),
    var_files: Sequence[str] = (),
    secrets_file: str | None = None,
    inventory: str | None = None,
    targets: Sequence[str] = (),
    output_format: str = "text",
    config_path: str | None = None,
) -> int:
    """
    Validate a declaration set without applying anything.

    Returns:
        Exit code (0 = valid, otherwise the validation error's exit code)
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
        report = orchestrator.validate(targets=targets or None)
    except TierLayerError as e:
        print_errors(e)
        return e.exit_code

    if output_format == "json":
        print_report_json(report)
    else:
        header(f"Preflight: {report.registry.project} ({orchestrator.environment})")
        console.print()
        print_report(report)
        console.print()

    if report.ok:
        if output_format != "json":
            success(f"All {len(report.checks)} checks passed")
            console.print(f"[bold]Execution order:[/bold] {escape(execution_order(report.tiers))}")
            console.print()
        return ExitCode.SUCCESS

    failed = sum(1 for check in report.checks if check.errors)
    if output_format != "json":
        error(f"{failed} check(s) failed with {len(report.errors)} error(s)")
        console.print()
    return ValidationFailed(report.errors).exit_code
