"""
sessionflow -- Multiparty session types for Python.

Describe a conversation once as a global protocol, check it, project it
onto every role, and run each role behind a session handle that only
allows the next step the protocol permits.

Global protocols | Validation | Projection | Typestate sessions | Broker

Pure Python, no runtime dependencies.
"""

from sessionflow._version import __version__
from sessionflow.broker import Broker, BrokerConfig, Channel
from sessionflow.duality import dual, verify_dual
from sessionflow.errors import (
    ConcurrencyGuardFailure,
    DiagnosticCategory,
    DiagnosticKind,
    ProtocolDefinitionError,
    ProtocolViolation,
    SchemaMismatch,
    SerializationError,
    SessionError,
    SessionTimeout,
    TransportError,
    UnexpectedClose,
)
from sessionflow.global_types import (
    Choice,
    End,
    GlobalInteraction,
    GlobalProtocol,
    Message,
    Par,
    Rec,
    Seq,
    Var,
    choice,
    end,
    msg,
    par,
    protocol,
    rec,
    seq,
    var,
)
from sessionflow.local_types import (
    LocalEnd,
    LocalProtocol,
    LocalRec,
    LocalVar,
    Offer,
    Projector,
    Receive,
    Select,
    Send,
    project,
    project_all,
)
from sessionflow.schemas import Schema, SchemaRegistry
from sessionflow.session import Session, SessionConfig, open_session, open_sessions
from sessionflow.transport import Endpoint, MemoryTransport, Transport, TransportEndpoint
from sessionflow.types import Participant, ProjectionError, RoleIdentifier
from sessionflow.validator import Diagnostic, ProtocolValidator, ValidationResult, validate

# NOTE: Further APIs are accessible via direct imports:
#   from sessionflow.codec import Frame, encode_frame, decode_frame
#   from sessionflow.duality import check_multiparty_compatibility
#   from sessionflow.monitor import StateTransitionMonitor
#   from sessionflow.properties import ProtocolSpecification, ...
#   from sessionflow.serialization import protocol_to_dict, ...
#   from sessionflow.patterns import ping_pong, bounded_counter, ...

__all__ = [
    "__version__",
    # Core types
    "RoleIdentifier",
    "Participant",
    "ProjectionError",
    # Global protocols
    "GlobalInteraction",
    "GlobalProtocol",
    "Message",
    "Choice",
    "Rec",
    "Var",
    "End",
    "Seq",
    "Par",
    "msg",
    "choice",
    "rec",
    "var",
    "end",
    "seq",
    "par",
    "protocol",
    # Validation
    "Diagnostic",
    "DiagnosticCategory",
    "DiagnosticKind",
    "ValidationResult",
    "ProtocolValidator",
    "validate",
    # Projection
    "LocalProtocol",
    "Send",
    "Receive",
    "Select",
    "Offer",
    "LocalRec",
    "LocalVar",
    "LocalEnd",
    "Projector",
    "project",
    "project_all",
    "dual",
    "verify_dual",
    # Schemas
    "Schema",
    "SchemaRegistry",
    # Runtime
    "Session",
    "SessionConfig",
    "open_session",
    "open_sessions",
    "Broker",
    "BrokerConfig",
    "Channel",
    "Endpoint",
    "Transport",
    "MemoryTransport",
    "TransportEndpoint",
    # Errors
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
