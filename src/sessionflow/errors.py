"""Error taxonomy for protocol definition and session execution.

Definition-time problems are reported as diagnostics by the validator
(see ``sessionflow.validator``); this module names their categories and
kinds. Runtime problems are raised as ``SessionError`` subclasses carrying
a stable error code and a details mapping.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sessionflow.validator import Diagnostic


class DiagnosticCategory(str, Enum):
    """Families of well-formedness problems."""

    PARTICIPANT = "participant"
    RECURSION = "recursion"
    SEMANTIC = "semantic"
    SCHEMA = "schema"


class DiagnosticKind(str, Enum):
    """Individual well-formedness problems."""

    # Participant errors
    DUPLICATE_PARTICIPANT = "duplicate_participant"
    UNDEFINED_PARTICIPANT = "undefined_participant"
    INVALID_PARTICIPANT_NAME = "invalid_participant_name"
    SELF_MESSAGE = "self_message"
    NO_PARTICIPANTS = "no_participants"
    UNUSED_PARTICIPANT = "unused_participant"

    # Recursion errors
    UNDEFINED_RECURSION_LABEL = "undefined_recursion_label"
    DUPLICATE_RECURSION_LABEL = "duplicate_recursion_label"
    CONTINUE_OUTSIDE_RECURSION = "continue_outside_recursion"
    UNGUARDED_RECURSION = "unguarded_recursion"

    # Semantic errors
    EMPTY_CHOICE = "empty_choice"
    INVALID_CHOICE_ROLE = "invalid_choice_role"
    DUPLICATE_BRANCH_LABEL = "duplicate_branch_label"
    UNREACHABLE_CODE = "unreachable_code"
    PARALLEL_OVERLAP = "parallel_overlap"

    # Schema errors
    UNKNOWN_SCHEMA = "unknown_schema"
    UNSUPPORTED_SCHEMA = "unsupported_schema"

    @property
    def category(self) -> DiagnosticCategory:
        return _KIND_CATEGORIES[self]


_KIND_CATEGORIES: dict[DiagnosticKind, DiagnosticCategory] = {
    DiagnosticKind.DUPLICATE_PARTICIPANT: DiagnosticCategory.PARTICIPANT,
    DiagnosticKind.UNDEFINED_PARTICIPANT: DiagnosticCategory.PARTICIPANT,
    DiagnosticKind.INVALID_PARTICIPANT_NAME: DiagnosticCategory.PARTICIPANT,
    DiagnosticKind.SELF_MESSAGE: DiagnosticCategory.PARTICIPANT,
    DiagnosticKind.NO_PARTICIPANTS: DiagnosticCategory.PARTICIPANT,
    DiagnosticKind.UNUSED_PARTICIPANT: DiagnosticCategory.PARTICIPANT,
    DiagnosticKind.UNDEFINED_RECURSION_LABEL: DiagnosticCategory.RECURSION,
    DiagnosticKind.DUPLICATE_RECURSION_LABEL: DiagnosticCategory.RECURSION,
    DiagnosticKind.CONTINUE_OUTSIDE_RECURSION: DiagnosticCategory.RECURSION,
    DiagnosticKind.UNGUARDED_RECURSION: DiagnosticCategory.RECURSION,
    DiagnosticKind.EMPTY_CHOICE: DiagnosticCategory.SEMANTIC,
    DiagnosticKind.INVALID_CHOICE_ROLE: DiagnosticCategory.SEMANTIC,
    DiagnosticKind.DUPLICATE_BRANCH_LABEL: DiagnosticCategory.SEMANTIC,
    DiagnosticKind.UNREACHABLE_CODE: DiagnosticCategory.SEMANTIC,
    DiagnosticKind.PARALLEL_OVERLAP: DiagnosticCategory.SEMANTIC,
    DiagnosticKind.UNKNOWN_SCHEMA: DiagnosticCategory.SCHEMA,
    DiagnosticKind.UNSUPPORTED_SCHEMA: DiagnosticCategory.SCHEMA,
}


class ProtocolDefinitionError(Exception):
    """Raised when a protocol fails validation.

    Carries every diagnostic the validator produced so callers can report
    all problems at once.

    Attributes:
        diagnostics: Error diagnostics, in discovery order
    """

    def __init__(self, diagnostics: Sequence[Diagnostic], protocol: str = "") -> None:
        self.diagnostics = list(diagnostics)
        self.protocol = protocol
        summary = "; ".join(str(d) for d in self.diagnostics) or "no diagnostics"
        prefix = f"Protocol '{protocol}' is not well-formed" if protocol else "Not well-formed"
        super().__init__(f"{prefix}: {summary}")

    @property
    def kinds(self) -> list[DiagnosticKind]:
        return [d.kind for d in self.diagnostics]


# =============================================================================
# Runtime errors
# =============================================================================


class SessionError(Exception):
    """Base exception for all runtime session errors.

    Attributes:
        code: Stable error code (``session:<family>/<reason>``)
        message: Human-readable error message
        details: Additional error context
    """

    code = "session:error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize to ``{code, message, details}`` dict."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class TransportError(SessionError):
    """Underlying I/O failure while moving a payload.

    Attributes:
        cause: The wrapped exception, if any
    """

    code = "session:transport/io"

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.cause = cause


class SerializationError(SessionError):
    """A payload or frame could not be encoded or decoded."""

    code = "session:transport/serialization"


class ProtocolViolation(SessionError):
    """An operation was attempted that the protocol does not allow here.

    Covers out-of-sequence operations, unknown branch labels, unknown roles
    and reuse of a consumed session handle.
    """

    code = "session:protocol/violation"


class SchemaMismatch(ProtocolViolation):
    """A payload does not match the schema the protocol expects."""

    code = "session:protocol/schema_mismatch"

    def __init__(self, schema: str, value: Any, details: dict[str, Any] | None = None) -> None:
        message = f"Payload of type {type(value).__name__} does not match schema '{schema}'"
        super().__init__(message, {"schema": schema, **(details or {})})
        self.schema = schema


class UnexpectedClose(SessionError):
    """The peer or channel closed before the expected message arrived."""

    code = "session:transport/unexpected_close"

    def __init__(
        self,
        message: str = "Channel closed unexpectedly",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)


class SessionTimeout(SessionError):
    """A blocking receive exceeded its time budget.

    Attributes:
        duration: Timeout in seconds
    """

    code = "session:transport/timeout"

    def __init__(self, duration: float, details: dict[str, Any] | None = None) -> None:
        super().__init__(f"Operation timed out after {duration}s", details)
        self.duration = duration


class ConcurrencyGuardFailure(SessionError):
    """A shared-state guard could not be acquired cleanly."""

    code = "session:concurrency/guard"


__all__ = [
    "DiagnosticCategory",
    "DiagnosticKind",
    "ProtocolDefinitionError",
    "SessionError",
    "TransportError",
    "SerializationError",
    "ProtocolViolation",
    "SchemaMismatch",
    "UnexpectedClose",
    "SessionTimeout",
    "ConcurrencyGuardFailure",
]
