"""
CLI commands for TierLayer.
"""

from tierlayer.cli.apply import apply_command
from tierlayer.cli.graph import graph_command
from tierlayer.cli.output import output_command
from tierlayer.cli.plan import plan_command
from tierlayer.cli.validate import validate_command

__all__ = [
    "apply_command",
    "graph_command",
    "output_command",
    "plan_command",
    "validate_command",
]
