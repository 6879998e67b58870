"""Tests for binding evaluation."""

from unittest.mock import MagicMock

import pytest
from pydantic import SecretStr

from tierlayer.core.errors import (
    LookupFailedError,
    MalformedBindingError,
    RequiredInputMissingError,
)
from tierlayer.declarations.bindings import parse_binding
from tierlayer.declarations.loader import parse_node
from tierlayer.resolution.evaluator import (
    Evaluator,
    ResolutionContext,
    resolve_inputs,
    resolve_tags,
)
from tierlayer.resolution.lookups import MemoizedLookups
from tierlayer.resolution.values import ABSENT, ValueState
from tierlayer.resolution.variables import VariableSource


def _evaluate(raw, **context):
    return Evaluator(ResolutionContext(**context), "app").evaluate(parse_binding(raw), "field")


class TestScalars:
    """Literals, variables, environment and outputs."""

    def test_literal(self):
        assert _evaluate(5).value == 5

    def test_null_literal_is_absent(self):
        assert _evaluate(None).state == ValueState.ABSENT

    def test_variable(self):
        result = _evaluate("${var.region}", variables=VariableSource({"region": "eu"}))
        assert result.value == "eu"

    def test_missing_variable_is_absent(self):
        assert _evaluate("${var.region}").is_absent

    def test_environment(self):
        assert _evaluate("${env}", environment="prod").value == "prod"

    def test_output_not_yet_applied_is_unknown(self):
        assert _evaluate("${net.id}").is_unknown

    def test_output_present(self):
        assert _evaluate("${net.id}", outputs={"net": {"id": "n-1"}}).value == "n-1"

    def test_output_of_disabled_node_is_absent(self):
        assert _evaluate("${net.id}", outputs={"net": ABSENT}).is_absent


class TestTemplate:
    """String interpolation."""

    def test_interpolation(self):
        result = _evaluate(
            "${var.name}-${env}-${var.flag}",
            variables=VariableSource({"name": "db", "flag": True}),
            environment="prod",
        )
        assert result.value == "db-prod-true"

    def test_secret_makes_result_secret(self):
        variables = VariableSource({"password": SecretStr("hunter2")})
        result = _evaluate("user:${var.password}", variables=variables)
        assert isinstance(result.value, SecretStr)
        assert result.value.get_secret_value() == "user:hunter2"
        assert result.render() == "(sensitive)"

    def test_absent_part_propagates(self):
        assert _evaluate("x-${var.missing}").is_absent


class TestConditional:
    """Conditional bindings."""

    def test_true_branch(self):
        raw = {"if": "${var.ha}", "then": "multi", "else": "single"}
        assert _evaluate(raw, variables=VariableSource({"ha": "yes"})).value == "multi"

    def test_absent_condition_is_false(self):
        raw = {"if": "${var.ha}", "then": "multi", "else": "single"}
        assert _evaluate(raw).value == "single"

    def test_untaken_branch_is_not_evaluated(self):
        raw = {"if": {"equals": ["${env}", "prod"]}, "then": "${net.id}", "else": "local"}
        assert _evaluate(raw, environment="dev").value == "local"

    def test_non_boolean_condition(self):
        raw = {"if": "maybe", "then": 1, "else": 2}
        result = _evaluate(raw)
        assert result.is_error
        assert isinstance(result.error, MalformedBindingError)


class TestFallbackChain:
    """First present, non-empty candidate wins."""

    RAW = {"first_of": ["${var.override}", "${var.computed}"], "default": "fallback"}

    def test_first_candidate(self):
        variables = VariableSource({"override": "a", "computed": "b"})
        assert _evaluate(self.RAW, variables=variables).value == "a"

    def test_blank_counts_as_unset(self):
        variables = VariableSource({"override": "  ", "computed": "b"})
        assert _evaluate(self.RAW, variables=variables).value == "b"

    def test_empty_collection_counts_as_unset(self):
        raw = {"first_of": ["${var.list}", ["x"]]}
        assert _evaluate(raw, variables=VariableSource({"list": []})).value == ["x"]

    def test_default(self):
        assert _evaluate(self.RAW).value == "fallback"

    def test_exhausted_without_default(self):
        result = _evaluate({"first_of": ["${var.a}"]})
        assert result.is_error
        assert isinstance(result.error, RequiredInputMissingError)
        assert result.error.input_name == "field"

    def test_unknown_candidate_makes_chain_unknown(self):
        raw = {"first_of": ["${net.name}", "${var.b}"]}
        assert _evaluate(raw, variables=VariableSource({"b": "x"})).is_unknown

    def test_deterministic(self):
        variables = VariableSource({"override": "", "computed": "b"})
        context = ResolutionContext(variables=variables, environment="prod")
        binding = parse_binding(self.RAW)
        first = Evaluator(context, "app").evaluate(binding, "field")
        second = Evaluator(context, "app").evaluate(binding, "field")
        assert first == second

    def test_environment_classification_drives_choice(self):
        raw = {
            "first_of": [
                "${var.size}",
                {"if": {"equals": ["${env}", "prod"]}, "then": "large", "else": ""},
            ],
            "default": "small",
        }
        assert _evaluate(raw, environment="prod").value == "large"
        assert _evaluate(raw, environment="dev").value == "small"


class TestLookup:
    """Memoized inventory lookups."""

    def test_lookup_result(self):
        provider = MagicMock()
        provider.lookup.return_value = "net-123"
        lookups = MemoizedLookups(provider)
        raw = {"lookup": "network", "query": {"name": "main"}}
        assert _evaluate(raw, lookups=lookups).value == "net-123"
        provider.lookup.assert_called_once_with("network", {"name": "main"})

    def test_no_match_is_absent(self):
        provider = MagicMock()
        provider.lookup.return_value = None
        raw = {"lookup": "network", "query": {"name": "main"}}
        assert _evaluate(raw, lookups=MemoizedLookups(provider)).is_absent

    def test_absent_query_value_skips_lookup(self):
        provider = MagicMock()
        raw = {"lookup": "network", "query": {"name": "${var.net}"}}
        assert _evaluate(raw, lookups=MemoizedLookups(provider)).is_absent
        provider.lookup.assert_not_called()

    def test_failure_is_an_error_state(self):
        raw = {"lookup": "network", "query": {"name": "main"}}
        result = _evaluate(raw)
        assert result.is_error
        assert isinstance(result.error, LookupFailedError)


class TestResolveInputs:
    """Concrete input values for the apply executor."""

    def test_guarded_absent_becomes_none(self):
        node = parse_node({"id": "app", "inputs": {"cache": "${cache.host?}", "port": 80}})
        context = ResolutionContext(outputs={"cache": ABSENT})
        assert resolve_inputs(node, context) == {"cache": None, "port": 80}

    def test_explicit_null_is_allowed(self):
        node = parse_node({"id": "app", "inputs": {"extra": None}})
        assert resolve_inputs(node, ResolutionContext()) == {"extra": None}

    def test_unguarded_absent_is_required(self):
        node = parse_node({"id": "app", "inputs": {"region": "${var.region}"}})
        with pytest.raises(RequiredInputMissingError):
            resolve_inputs(node, ResolutionContext())

    def test_fallback_error_is_raised(self):
        node = parse_node({"id": "app", "inputs": {"name": {"first_of": ["${var.a}"]}}})
        with pytest.raises(RequiredInputMissingError, match="input 'name'"):
            resolve_inputs(node, ResolutionContext())


class TestResolveTags:
    """Pure tag merge at resolution time."""

    def test_defaults_merged_with_node_tags(self):
        node = parse_node({"id": "app", "tags": {"env": "${env}", "role": "web"}})
        defaults = {"env": parse_binding("shared"), "team": parse_binding("core")}
        tags = resolve_tags(node, defaults, ResolutionContext(environment="prod"))
        assert dict(tags) == {"env": "prod", "role": "web", "team": "core"}

    def test_absent_tags_are_dropped(self):
        node = parse_node({"id": "app", "tags": {"owner": "${var.owner}"}})
        assert dict(resolve_tags(node, {}, ResolutionContext())) == {}

    def test_secret_tags_are_rejected(self):
        node = parse_node({"id": "app", "tags": {"pw": "${var.pw}"}})
        context = ResolutionContext(variables=VariableSource({"pw": SecretStr("x")}))
        with pytest.raises(MalformedBindingError):
            resolve_tags(node, {}, context)
