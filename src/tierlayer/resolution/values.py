"""Resolved value states.

Every evaluated binding yields a ``Resolved`` with an explicit state. An
empty string is never used to mean "unset": absence is its own state, and
disabled nodes expose the ``ABSENT`` marker for all of their outputs.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import SecretStr

from tierlayer.core.errors import TierLayerError

SENSITIVE_PLACEHOLDER = "(sensitive)"
ABSENT_PLACEHOLDER = "(absent)"
UNKNOWN_PLACEHOLDER = "(known after apply)"

_TRUE_STRINGS = frozenset({"true", "yes", "on", "1"})
_FALSE_STRINGS = frozenset({"false", "no", "off", "0"})


class _Absent:
    """Marker stored for every output of a node with zero instances."""

    _instance: _Absent | None = None

    def __new__(cls) -> _Absent:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT: Any = _Absent()


class ValueState(StrEnum):
    PRESENT = "present"
    ABSENT = "absent"
    UNKNOWN = "unknown"
    ERROR = "error"


@dataclass(frozen=True)
class Resolved:
    """Result of evaluating one binding."""

    state: ValueState
    value: Any = None
    error: TierLayerError | None = None

    @classmethod
    def present(cls, value: Any) -> Resolved:
        return cls(ValueState.PRESENT, value)

    @classmethod
    def absent(cls) -> Resolved:
        return cls(ValueState.ABSENT)

    @classmethod
    def unknown(cls) -> Resolved:
        return cls(ValueState.UNKNOWN)

    @classmethod
    def failed(cls, error: TierLayerError) -> Resolved:
        return cls(ValueState.ERROR, error=error)

    @property
    def is_present(self) -> bool:
        return self.state == ValueState.PRESENT

    @property
    def is_absent(self) -> bool:
        return self.state == ValueState.ABSENT

    @property
    def is_unknown(self) -> bool:
        return self.state == ValueState.UNKNOWN

    @property
    def is_error(self) -> bool:
        return self.state == ValueState.ERROR

    @property
    def sensitive(self) -> bool:
        return self.is_present and contains_secret(self.value)

    def render(self) -> Any:
        """Display form with secrets redacted."""
        if self.is_present:
            return render_value(self.value)
        if self.is_absent:
            return ABSENT_PLACEHOLDER
        if self.is_unknown:
            return UNKNOWN_PLACEHOLDER
        return f"(error: {self.error.message if self.error else 'unknown'})"


def is_empty(value: Any) -> bool:
    """Whether a value counts as unset in a fallback chain.

    ``None``, the absent marker, blank strings and empty collections are unset.
    """
    if value is None or value is ABSENT:
        return True
    if isinstance(value, SecretStr):
        return value.get_secret_value().strip() == ""
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


def contains_secret(value: Any) -> bool:
    if isinstance(value, SecretStr):
        return True
    if isinstance(value, dict):
        return any(contains_secret(v) for v in value.values())
    if isinstance(value, (list, tuple, set, frozenset)):
        return any(contains_secret(v) for v in value)
    return False


def render_value(value: Any) -> Any:
    """JSON-friendly rendering of a concrete value, secrets redacted."""
    if isinstance(value, SecretStr):
        return SENSITIVE_PLACEHOLDER
    if value is ABSENT:
        return ABSENT_PLACEHOLDER
    if isinstance(value, dict):
        return {str(k): render_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [render_value(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(render_value(v) for v in value)
    return value


def stringify(value: Any) -> str:
    """String form used for interpolation."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def coerce_bool(value: Any) -> bool:
    """Coerce a toggle value to bool.

    Raises:
        ValueError: If the value is not a recognizable boolean
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValueError(f"not a boolean: {value!r}")
