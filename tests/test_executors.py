"""Tests for built-in apply executors and the executor registry."""

import json
import sys

import pytest
from pydantic import SecretStr

from tierlayer.core.errors import ApplyError, ConfigurationError
from tierlayer.orchestration.executors import CommandExecutor, EchoExecutor
from tierlayer.orchestration.registry import ApplyExecutor, ApplyRequest, ExecutorRegistry
from tierlayer.resolution.instantiation import InstantiationDecision
from tierlayer.resolution.secrets import InstanceAddress


def _request(**kwargs):
    defaults = dict(
        node_id="users",
        address=InstanceAddress("users", "alice"),
        node_type="user",
        inputs={"name": "alice", "password": SecretStr("pw")},
        decision=InstantiationDecision("users"),
        outputs=frozenset({"name", "arn"}),
    )
    defaults.update(kwargs)
    return ApplyRequest(**defaults)


ECHO_STDIN = (
    "import json, sys; r = json.load(sys.stdin); "
    "print(json.dumps({'arn': r['address'], 'name': r['inputs']['password']}))"
)


class TestEchoExecutor:
    """Deterministic placeholder executor."""

    def test_echoes_inputs_but_not_secrets(self):
        executor = EchoExecutor()
        outputs = executor.apply(_request(outputs=frozenset({"name", "password"})))
        assert outputs["name"] == "alice"
        assert outputs["password"] == 'user:users["alice"]:password'
        assert executor.applied == ['users["alice"]']

    def test_satisfies_protocol(self):
        assert isinstance(EchoExecutor(), ApplyExecutor)


class TestCommandExecutor:
    """External command per instance."""

    def test_json_round_trip_reveals_secrets_to_command(self):
        executor = CommandExecutor([sys.executable, "-c", ECHO_STDIN])
        outputs = executor.apply(_request())
        assert outputs == {"arn": 'users["alice"]', "name": "pw"}

    def test_non_zero_exit(self):
        executor = CommandExecutor([sys.executable, "-c", "import sys; sys.exit('denied')"])
        with pytest.raises(ApplyError, match="exited with 1: denied"):
            executor.apply(_request())

    def test_invalid_json(self):
        executor = CommandExecutor([sys.executable, "-c", "print('not json')"])
        with pytest.raises(ApplyError, match="invalid JSON"):
            executor.apply(_request())

    def test_non_object_output(self):
        executor = CommandExecutor([sys.executable, "-c", "print('[1]')"])
        with pytest.raises(ApplyError, match="JSON object"):
            executor.apply(_request())

    def test_empty_output(self):
        executor = CommandExecutor([sys.executable, "-c", "pass"])
        assert executor.apply(_request()) == {}

    def test_missing_command(self):
        executor = CommandExecutor("definitely-not-a-real-command-xyz")
        with pytest.raises(ApplyError, match="not found"):
            executor.apply(_request())

    def test_string_command_is_split(self):
        assert CommandExecutor("deploy --fast 'a b'").command == ["deploy", "--fast", "a b"]


class TestExecutorRegistry:
    """Executor lookup by node type."""

    def test_register_and_default(self):
        default = EchoExecutor()
        special = EchoExecutor()
        registry = ExecutorRegistry(default=default)
        registry.register("network", special)
        assert registry.get("network") is special
        assert registry.get("anything") is default
        assert registry.list() == ["network"]

    def test_no_executor(self):
        with pytest.raises(ConfigurationError, match="No apply executor"):
            ExecutorRegistry().get("network")

    def test_request_payload_is_json_safe(self):
        payload = _request().revealed_inputs()
        assert json.loads(json.dumps(payload)) == {"name": "alice", "password": "pw"}
