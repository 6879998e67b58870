"""Input resolution: value states, variables, lookups, instantiation and secrets."""

from tierlayer.resolution.evaluator import (
    Evaluator,
    ResolutionContext,
    concrete_value,
    resolve_input_states,
    resolve_inputs,
    resolve_tags,
)
from tierlayer.resolution.instantiation import (
    InstantiationDecision,
    absent_outputs,
    decide,
    decide_all,
    find_unguarded_absent_references,
)
from tierlayer.resolution.lookups import InventoryLookupProvider, LookupProvider, MemoizedLookups
from tierlayer.resolution.secrets import InstanceAddress, SecretIsolator, instances
from tierlayer.resolution.values import (
    ABSENT,
    Resolved,
    ValueState,
    coerce_bool,
    is_empty,
    render_value,
)
from tierlayer.resolution.variables import (
    VariableSource,
    load_var_file,
    parse_var_assignments,
    variables_from_environ,
)

__all__ = [
    "ABSENT",
    "Evaluator",
    "InstanceAddress",
    "InstantiationDecision",
    "InventoryLookupProvider",
    "LookupProvider",
    "MemoizedLookups",
    "ResolutionContext",
    "Resolved",
    "SecretIsolator",
    "ValueState",
    "VariableSource",
    "absent_outputs",
    "coerce_bool",
    "concrete_value",
    "decide",
    "decide_all",
    "find_unguarded_absent_references",
    "instances",
    "is_empty",
    "load_var_file",
    "parse_var_assignments",
    "render_value",
    "resolve_input_states",
    "resolve_inputs",
    "resolve_tags",
    "variables_from_environ",
]
