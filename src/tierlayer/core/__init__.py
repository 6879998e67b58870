"""Core modules for TierLayer - centralized error definitions and exit codes."""

from tierlayer.core.errors import (
    ApplyError,
    BlockedError,
    ConfigurationError,
    CycleError,
    DuplicateNodeError,
    ExitCode,
    LookupFailedError,
    MalformedBindingError,
    MissingSecretValueError,
    RequiredInputMissingError,
    SpanningCycleError,
    TierLayerError,
    UnguardedAbsentReferenceError,
    UnresolvedReferenceError,
    ValidationFailed,
    exit_with_error,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "TierLayerError",
    "ConfigurationError",
    "DuplicateNodeError",
    "MalformedBindingError",
    "UnresolvedReferenceError",
    "CycleError",
    "SpanningCycleError",
    "RequiredInputMissingError",
    "MissingSecretValueError",
    "UnguardedAbsentReferenceError",
    "LookupFailedError",
    "ApplyError",
    "BlockedError",
    "ValidationFailed",
    "main_with_error_handling",
    "format_error_message",
    "exit_with_error",
]
