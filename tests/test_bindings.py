"""Tests for binding token parsing."""

import pytest

from tierlayer.core.errors import MalformedBindingError
from tierlayer.declarations.bindings import (
    Conditional,
    EachKey,
    EnvironmentRef,
    Equals,
    FallbackChain,
    ListOf,
    Literal,
    Lookup,
    MapOf,
    OutputRef,
    Template,
    VariableRef,
    is_static,
    output_refs,
    parse_binding,
)


class TestStringTokens:
    """Tokens embedded in strings."""

    def test_plain_string_is_literal(self):
        assert parse_binding("hello") == Literal("hello")

    def test_whole_string_reference(self):
        assert parse_binding("${net.id}") == OutputRef("net", "id")

    def test_guarded_reference(self):
        assert parse_binding("${net.id?}") == OutputRef("net", "id", guarded=True)

    def test_variable_env_and_each(self):
        assert parse_binding("${var.region}") == VariableRef("region")
        assert parse_binding("${env}") == EnvironmentRef()
        assert parse_binding("${each.key}") == EachKey()

    def test_template(self):
        binding = parse_binding("db-${env}-${var.suffix}")
        assert binding == Template(("db-", EnvironmentRef(), "-", VariableRef("suffix")))

    def test_escaped_dollar(self):
        assert parse_binding("cost: $${price}") == Literal("cost: ${price}")

    def test_unterminated_reference(self):
        with pytest.raises(MalformedBindingError, match="unterminated"):
            parse_binding("${net.id", node_id="app", field="network")

    def test_invalid_reference(self):
        with pytest.raises(MalformedBindingError):
            parse_binding("${justanode}")

    def test_reserved_head_is_rejected(self):
        with pytest.raises(MalformedBindingError):
            parse_binding("${each.value}")

    def test_error_names_node_and_field(self):
        with pytest.raises(MalformedBindingError) as exc_info:
            parse_binding("${1bad.id}", node_id="app", field="network")
        assert exc_info.value.message.startswith("app.network:")


class TestReservedMappings:
    """Conditional, fallback, lookup, equals and ref mappings."""

    def test_conditional(self):
        binding = parse_binding({"if": "${var.ha}", "then": "${a.id}", "else": "${b.id}"})
        assert isinstance(binding, Conditional)
        assert [str(r) for r in output_refs(binding)] == ["a.id", "b.id"]

    def test_conditional_needs_all_keys(self):
        with pytest.raises(MalformedBindingError):
            parse_binding({"if": True, "then": 1})

    def test_fallback_chain(self):
        binding = parse_binding({"first_of": ["${var.name}", "${env}"], "default": "x"})
        assert isinstance(binding, FallbackChain)
        assert binding.default == Literal("x")
        assert len(binding.candidates) == 2

    def test_fallback_requires_candidates(self):
        with pytest.raises(MalformedBindingError, match="non-empty"):
            parse_binding({"first_of": []})

    def test_lookup(self):
        binding = parse_binding({"lookup": "network", "query": {"name": "${var.net}"}})
        assert isinstance(binding, Lookup)
        assert binding.kind == "network"
        assert binding.query == MapOf((("name", VariableRef("net")),))

    def test_equals(self):
        binding = parse_binding({"equals": ["${env}", "prod"]})
        assert binding == Equals(EnvironmentRef(), Literal("prod"))

    def test_ref_mapping(self):
        assert parse_binding({"ref": "net.id", "optional": True}) == OutputRef("net", "id", True)

    def test_plain_mapping_of_literals_collapses(self):
        assert parse_binding({"a": 1, "b": [1, 2]}) == Literal({"a": 1, "b": [1, 2]})

    def test_list_with_reference(self):
        binding = parse_binding(["x", "${a.id}"])
        assert binding == ListOf((Literal("x"), OutputRef("a", "id")))


class TestStaticness:
    """Bindings that can be evaluated before anything is applied."""

    def test_variables_and_lookups_are_static(self):
        assert is_static(parse_binding({"lookup": "net", "query": {"name": "${var.n}"}}))

    def test_output_reference_is_not_static(self):
        assert not is_static(parse_binding({"first_of": ["${var.n}", "${a.id}"]}))
