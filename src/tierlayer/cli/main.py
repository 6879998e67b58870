from __future__ import annotations

import argparse
import sys
from typing import Sequence

from tierlayer import __version__
from tierlayer.config.settings import get_settings
from tierlayer.core.errors import ExitCode, main_with_error_handling
from tierlayer.logging import configure_logging


def _declaration_flags() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "declarations",
        nargs="?",
        help="Path to declarations YAML (default: from project config, else tierlayer.yaml)",
    )
    common.add_argument("--env", "--environment", dest="env", help="Environment classification")
    common.add_argument(
        "--var", dest="variables", action="append", default=[], metavar="NAME=VALUE",
        help="Set a variable (repeatable)",
    )
    common.add_argument(
        "--var-file", dest="var_files", action="append", default=[], metavar="PATH",
        help="Load variables from a YAML file (repeatable)",
    )
    common.add_argument("--config", dest="config_path", help="Project config file")
    return common


def _resolution_flags() -> argparse.ArgumentParser:
    resolution = argparse.ArgumentParser(add_help=False)
    resolution.add_argument("--secrets-file", help="YAML file holding secret sets")
    resolution.add_argument("--inventory", help="Inventory YAML used to answer lookups")
    resolution.add_argument(
        "--target", dest="targets", action="append", default=[], metavar="NODE",
        help="Limit to this node and its dependencies (repeatable)",
    )
    return resolution


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tierlayer", description="Tiered dependency-graph orchestration"
    )
    parser.add_argument("--version", action="version", version=f"tierlayer {__version__}")
    subparsers = parser.add_subparsers(dest="command")

    common = _declaration_flags()
    resolution = _resolution_flags()

    plan_parser = subparsers.add_parser(
        "plan", parents=[common, resolution], help="Preview the tiered execution plan"
    )
    plan_parser.add_argument("--previous", help="Previous JSON plan to diff against")
    plan_parser.add_argument("--out", help="Write the JSON plan to this file")
    plan_parser.add_argument("--output", choices=["text", "json"], default="text", help="Output format")
    plan_parser.add_argument("-v", "--verbose", action="store_true", help="Show all resolved inputs")

    apply_parser = subparsers.add_parser(
        "apply", parents=[common, resolution], help="Apply nodes tier by tier"
    )
    apply_parser.add_argument("--max-workers", type=int, help="Parallel instances per tier")
    apply_parser.add_argument(
        "--executor-command", help="Command run once per instance (JSON request on stdin)"
    )
    apply_parser.add_argument("--outputs-file", help="Write produced outputs to this JSON file")
    apply_parser.add_argument("--dry-run", action="store_true", help="Plan only")
    apply_parser.add_argument("--output", choices=["text", "json"], default="text", help="Output format")
    apply_parser.add_argument("-v", "--verbose", action="store_true", help="Show full error text")

    validate_parser = subparsers.add_parser(
        "validate", parents=[common, resolution], help="Run all preflight checks"
    )
    validate_parser.add_argument("--output", choices=["text", "json"], default="text", help="Output format")

    graph_parser = subparsers.add_parser("graph", parents=[common], help="Show tiers and edges")
    graph_parser.add_argument(
        "--format", dest="output", choices=["text", "dot", "json"], default="text", help="Output format"
    )

    output_parser = subparsers.add_parser("output", help="Read a value from an outputs file")
    output_parser.add_argument("name", help="node or node.output")
    output_parser.add_argument(
        "--outputs-file", default="tierlayer-outputs.json", help="File written by apply --outputs-file"
    )
    output_parser.add_argument("--raw", action="store_true", help="Print strings without quoting")

    return parser


@main_with_error_handling()
def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)

    if args.command == "plan":
        from tierlayer.cli.plan import plan_command

        return plan_command(
            args.declarations,
            env=args.env,
            variables=args.variables,
            var_files=args.var_files,
            secrets_file=args.secrets_file,
            inventory=args.inventory,
            targets=args.targets,
            previous=args.previous,
            out=args.out,
            output_format=args.output,
            verbose=args.verbose,
            config_path=args.config_path,
        )

    if args.command == "apply":
        from tierlayer.cli.apply import apply_command

        return apply_command(
            args.declarations,
            env=args.env,
            variables=args.variables,
            var_files=args.var_files,
            secrets_file=args.secrets_file,
            inventory=args.inventory,
            targets=args.targets,
            max_workers=args.max_workers,
            executor_command=args.executor_command,
            outputs_file=args.outputs_file,
            dry_run=args.dry_run,
            output_format=args.output,
            verbose=args.verbose,
            config_path=args.config_path,
        )

    if args.command == "validate":
        from tierlayer.cli.validate import validate_command

        return validate_command(
            args.declarations,
            env=args.env,
            variables=args.variables,
            var_files=args.var_files,
            secrets_file=args.secrets_file,
            inventory=args.inventory,
            targets=args.targets,
            output_format=args.output,
            config_path=args.config_path,
        )

    if args.command == "graph":
        from tierlayer.cli.graph import graph_command

        return graph_command(
            args.declarations,
            env=args.env,
            variables=args.variables,
            var_files=args.var_files,
            output_format=args.output,
            config_path=args.config_path,
        )

    if args.command == "output":
        from tierlayer.cli.output import output_command

        return output_command(args.name, outputs_file=args.outputs_file, raw=args.raw)

    parser.print_help()
    return ExitCode.WARNING


if __name__ == "__main__":
    sys.exit(main())
