"""
Unified error handling for TierLayer.

Every error kind maps to a distinct exit code so scripted consumers can tell
a cycle from a missing secret from an apply failure.

Exit Codes:
- 0: Success
- 1: Warning (advisory, operation succeeded with warnings)
- 2: Blocked (dependents of a failed node were not attempted)
- 10: Configuration error
- 11: Apply error (external executor failure)
- 12: Validation error (several error kinds reported together)
- 13: Lookup failure (external inventory query failed)
- 20-27: Structural validation errors, one code per kind
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, Sequence, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    WARNING = 1
    BLOCKED = 2
    CONFIG_ERROR = 10
    APPLY_ERROR = 11
    VALIDATION_ERROR = 12
    LOOKUP_ERROR = 13
    UNRESOLVED_REFERENCE = 20
    CYCLE = 21
    SPANNING_CYCLE = 22
    REQUIRED_INPUT_MISSING = 23
    MISSING_SECRET = 24
    UNGUARDED_ABSENT_REFERENCE = 25
    DUPLICATE_NODE = 26
    MALFORMED_BINDING = 27
    UNKNOWN_ERROR = 127
    INTERRUPTED = 130


class TierLayerError(Exception):
    """Base exception for TierLayer errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(TierLayerError):
    """Raised for configuration-related errors."""

    exit_code = ExitCode.CONFIG_ERROR


class DuplicateNodeError(TierLayerError):
    """Raised when two declarations share an id, or an id is reserved."""

    exit_code = ExitCode.DUPLICATE_NODE

    def __init__(self, node_id: str, reason: str = "declared more than once"):
        super().__init__(f"Node '{node_id}' {reason}", {"node": node_id})
        self.node_id = node_id


class MalformedBindingError(TierLayerError):
    """Raised when a declaration or input binding cannot be parsed."""

    exit_code = ExitCode.MALFORMED_BINDING

    def __init__(self, message: str, node_id: str | None = None, field: str | None = None):
        details: dict[str, Any] = {}
        if node_id:
            details["node"] = node_id
        if field:
            details["field"] = field
        prefix = f"{node_id}.{field}: " if node_id and field else (f"{node_id}: " if node_id else "")
        super().__init__(f"{prefix}{message}", details)
        self.node_id = node_id
        self.field = field


class UnresolvedReferenceError(TierLayerError):
    """Raised when a reference names a node, output or variable that does not exist."""

    exit_code = ExitCode.UNRESOLVED_REFERENCE

    def __init__(self, node_id: str, reference: str, reason: str):
        super().__init__(
            f"Node '{node_id}' references '{reference}': {reason}",
            {"node": node_id, "reference": reference},
        )
        self.node_id = node_id
        self.reference = reference


class CycleError(TierLayerError):
    """Raised when the dependency graph contains a cycle.

    ``chain`` lists node ids in dependency order and is closed, i.e. the first
    and last element are the same node and each element depends on the next.
    """

    exit_code = ExitCode.CYCLE

    def __init__(self, chain: Sequence[str]):
        self.chain = list(chain)
        super().__init__(
            f"Dependency cycle: {' -> '.join(self.chain)}",
            {"chain": " -> ".join(self.chain)},
        )


class SpanningCycleError(CycleError):
    """Raised when an edge closes a cycle back through a spanning node."""

    exit_code = ExitCode.SPANNING_CYCLE

    def __init__(self, spanning_node: str, back_edge: tuple[str, str], chain: Sequence[str] = ()):
        self.spanning_node = spanning_node
        self.back_edge = back_edge
        self.chain = list(chain) or [back_edge[1], back_edge[0], back_edge[1]]
        TierLayerError.__init__(
            self,
            f"Edge {back_edge[0]} -> {back_edge[1]} closes a cycle through spanning node "
            f"'{spanning_node}'",
            {"back_edge": f"{back_edge[0]}->{back_edge[1]}", "spanning_node": spanning_node},
        )


class RequiredInputMissingError(TierLayerError):
    """Raised when a fallback chain is exhausted and the input has no default."""

    exit_code = ExitCode.REQUIRED_INPUT_MISSING

    def __init__(self, node_id: str, input_name: str):
        super().__init__(
            f"Node '{node_id}' input '{input_name}' has no value and no default",
            {"node": node_id, "input": input_name},
        )
        self.node_id = node_id
        self.input_name = input_name


class MissingSecretValueError(TierLayerError):
    """Raised when a keyed set names keys with no secret value supplied."""

    exit_code = ExitCode.MISSING_SECRET

    def __init__(self, node_id: str, secret_set: str, missing: Sequence[str]):
        self.missing = sorted(missing)
        super().__init__(
            f"Node '{node_id}' has no value in secret set '{secret_set}' for keys: "
            f"{', '.join(self.missing)}",
            {"node": node_id, "secret_set": secret_set, "missing": ",".join(self.missing)},
        )
        self.node_id = node_id
        self.secret_set = secret_set


class UnguardedAbsentReferenceError(TierLayerError):
    """Raised when a consumer dereferences a conditionally-absent output without a guard."""

    exit_code = ExitCode.UNGUARDED_ABSENT_REFERENCE

    def __init__(self, node_id: str, input_name: str, reference: str):
        super().__init__(
            f"Node '{node_id}' input '{input_name}' dereferences absent output '{reference}' "
            "without a guard",
            {"node": node_id, "input": input_name, "reference": reference},
        )
        self.node_id = node_id
        self.input_name = input_name
        self.reference = reference


class LookupFailedError(TierLayerError):
    """Raised when an external inventory lookup fails or is ambiguous."""

    exit_code = ExitCode.LOOKUP_ERROR


class ApplyError(TierLayerError):
    """Raised when the apply executor fails for a node. Never retried."""

    exit_code = ExitCode.APPLY_ERROR

    def __init__(self, address: str, message: str):
        super().__init__(f"{address}: {message}", {"address": address})
        self.address = address


class BlockedError(TierLayerError):
    """Raised when an operation is blocked (e.g., dependents of a failed node)."""

    exit_code = ExitCode.BLOCKED


class ValidationFailed(TierLayerError):
    """Aggregates every error found by a validation pass."""

    def __init__(self, errors: Sequence[TierLayerError]):
        self.errors = list(errors)
        kinds = {type(e).exit_code for e in self.errors}
        self.exit_code = kinds.pop() if len(kinds) == 1 else ExitCode.VALIDATION_ERROR
        super().__init__(
            f"Validation failed with {len(self.errors)} error(s)",
            {"error_count": len(self.errors)},
        )


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI command functions that provides unified error handling.

    Exit codes:
        - TierLayerError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except TierLayerError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=int(e.exit_code),
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return ExitCode.INTERRUPTED
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=int(ExitCode.UNKNOWN_ERROR),
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: TierLayerError) -> str:
    """Format an error message for display to users."""
    if isinstance(error, ValidationFailed):
        lines = [error.message]
        lines.extend(f"  - {format_error_message(e)}" for e in error.errors)
        return "\n".join(lines)
    return error.message


def exit_with_error(error: TierLayerError) -> None:
    """Print error and exit with appropriate code."""
    from tierlayer.cli.ux import error as print_error

    print_error(format_error_message(error))
    sys.exit(error.exit_code)
