"""
Output command: read one value back from an apply outputs file.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from tierlayer.cli.ux import error
from tierlayer.core.errors import ConfigurationError, ExitCode

DEFAULT_OUTPUTS_FILE = "tierlayer-outputs.json"


def read_output(name: str, outputs_file: str | Path = DEFAULT_OUTPUTS_FILE) -> Any:
    """
    Look up ``node`` or ``node.output`` in an outputs file.

    Raises:
        ConfigurationError: If the file or the name is missing
    """
    path = Path(outputs_file)
    if not path.exists():
        raise ConfigurationError(f"Outputs file not found: {path}", {"path": str(path)})
    try:
        outputs = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Outputs file {path} is not valid JSON: {e}") from e

    node_id, _, output = name.partition(".")
    if node_id not in outputs:
        raise ConfigurationError(f"No outputs recorded for node '{node_id}'", {"node": node_id})
    value = outputs[node_id]
    if not output:
        return value
    if not isinstance(value, dict) or output not in value:
        raise ConfigurationError(f"Node '{node_id}' has no output '{output}'", {"node": node_id})
    return value[output]


def output_command(name: str, outputs_file: str = DEFAULT_OUTPUTS_FILE, raw: bool = False) -> int:
    """
    Print one recorded output.

    Args:
        name: ``node`` or ``node.output``
        outputs_file: File written by ``apply --outputs-file``
        raw: Print strings without JSON quoting
    """
    try:
        value = read_output(name, outputs_file)
    except ConfigurationError as e:
        error(e.message)
        return e.exit_code

    if raw and isinstance(value, str):
        print(value)
    else:
        print(json.dumps(value, indent=None if raw else 2))
    return ExitCode.SUCCESS
