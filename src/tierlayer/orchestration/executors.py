"""Built-in apply executors."""

from __future__ import annotations

import json
import os
import shlex
import subprocess
import threading
from typing import Any, Mapping, Sequence

import structlog
from pydantic import SecretStr

from tierlayer.core.errors import ApplyError
from tierlayer.orchestration.registry import ApplyRequest

logger = structlog.get_logger()


class EchoExecutor:
    """
    Deterministic executor that creates nothing.

    Each declared output echoes the non-sensitive input of the same name when
    there is one, otherwise a placeholder derived from the instance address.
    Useful for dry runs and for exercising the tier ordering.
    """

    def __init__(self) -> None:
        self.applied: list[str] = []
        self._lock = threading.Lock()

    def apply(self, request: ApplyRequest) -> Mapping[str, Any]:
        with self._lock:
            self.applied.append(str(request.address))

        outputs: dict[str, Any] = {}
        for name in sorted(request.outputs):
            value = request.inputs.get(name)
            if value is not None and not isinstance(value, SecretStr):
                outputs[name] = value
            else:
                outputs[name] = f"{request.node_type}:{request.address}:{name}"
        return outputs


class CommandExecutor:
    """
    Executor that runs an external command per instance.

    The request is written to the command's stdin as JSON (secret inputs
    revealed); the command prints a JSON object of outputs on stdout. A
    non-zero exit status or unparsable output is an apply error.
    """

    def __init__(self, command: str | Sequence[str], timeout: float | None = None):
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        self.timeout = timeout

    def apply(self, request: ApplyRequest) -> Mapping[str, Any]:
        address = str(request.address)
        payload = {
            "node": request.node_id,
            "address": address,
            "key": request.key,
            "type": request.node_type,
            "inputs": request.revealed_inputs(),
            "tags": dict(request.tags),
            "decision": request.decision.to_dict(),
            "outputs": sorted(request.outputs),
        }
        env = {**os.environ, "TIERLAYER_NODE": request.node_id, "TIERLAYER_ADDRESS": address}

        logger.debug("executor_command_started", address=address, command=self.command[0])
        try:
            completed = subprocess.run(
                self.command,
                input=json.dumps(payload, default=str),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env,
                check=False,
            )
        except FileNotFoundError as e:
            raise ApplyError(address, f"executor command not found: {self.command[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise ApplyError(address, f"executor command timed out after {self.timeout}s") from e

        if completed.returncode != 0:
            detail = completed.stderr.strip().splitlines()[-1:] or ["no error output"]
            raise ApplyError(address, f"executor exited with {completed.returncode}: {detail[0]}")

        text = completed.stdout.strip()
        if not text:
            return {}
        try:
            outputs = json.loads(text)
        except json.JSONDecodeError as e:
            raise ApplyError(address, f"executor printed invalid JSON: {e}") from e
        if not isinstance(outputs, dict):
            raise ApplyError(address, "executor output must be a JSON object")
        return outputs
