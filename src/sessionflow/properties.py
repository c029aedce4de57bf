"""Executable properties of protocols and their projections.

Each property can be checked against a global protocol and returns a
``PropertyResult`` with a status, a message and, when violated, a
counterexample.

Key Properties:
- ProjectionSoundness: every projection is a closed, well-formed local
  protocol, and the projections agree with each other
- Duality: in a two-role protocol each projection is the dual of the other
- PruningCorrectness: a role absent from a closed loop never sees it
- ValidationIdempotence: validating twice gives the same diagnostics
- RoundTripExecutability: running every role to completion over a broker
  never raises a protocol violation

References:
- Honda, Yoshida, Carbone (2008) - Multiparty Session Types
- Scalas, Yoshida (2019) - Less is More: Multiparty Session Types Revisited
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sessionflow.broker import Broker, BrokerConfig
from sessionflow.duality import check_multiparty_compatibility, verify_dual
from sessionflow.errors import SessionError, UnexpectedClose
from sessionflow.global_types import (
    GlobalProtocol,
    Rec,
    free_variables,
    iter_interactions,
)
from sessionflow.local_types import (
    LocalRec,
    LocalVar,
    Offer,
    Projector,
    Receive,
    Select,
    Send,
    free_vars,
    iter_nodes,
)
from sessionflow.schemas import Schema, SchemaRegistry, default_registry
from sessionflow.session import ABORTED, CLOSED, Session, SessionConfig, open_sessions
from sessionflow.types import ProjectionError, RoleIdentifier

logger = logging.getLogger(__name__)


class PropertyType(str, Enum):
    """Types of protocol properties."""

    WELL_FORMEDNESS = "well_formedness"  # Structural correctness
    PROJECTION = "projection"  # Relation between global and local views
    SAFETY = "safety"  # Nothing bad happens at runtime


class PropertyStatus(str, Enum):
    """Status of property verification."""

    SATISFIED = "satisfied"
    VIOLATED = "violated"
    UNKNOWN = "unknown"
    TIMEOUT = "timeout"


@dataclass
class PropertyResult:
    """Result of property verification.

    Attributes:
        property_name: Name of the property
        property_type: Type of property
        status: Verification status
        message: Human-readable message
        counterexample: Counterexample if violated
        participants: Participants involved
        timestamp: When verification was performed
    """

    property_name: str
    property_type: PropertyType
    status: PropertyStatus
    message: str = ""
    counterexample: Any | None = None
    participants: set[RoleIdentifier] = field(default_factory=set)
    timestamp: float = field(default_factory=time.time)

    def is_satisfied(self) -> bool:
        """Check if property was satisfied."""
        return self.status == PropertyStatus.SATISFIED


class ProtocolProperty(ABC):
    """Base class for protocol properties."""

    def __init__(self, name: str, property_type: PropertyType):
        self.name = name
        self.property_type = property_type

    @abstractmethod
    def check(self, protocol: GlobalProtocol | None = None) -> PropertyResult:
        """Check if the property holds for a protocol."""
        pass

    def _result(self, status: PropertyStatus, message: str, **kwargs: Any) -> PropertyResult:
        return PropertyResult(
            property_name=self.name,
            property_type=self.property_type,
            status=status,
            message=message,
            **kwargs,
        )

    def _unknown(self, message: str = "No protocol provided") -> PropertyResult:
        return self._result(PropertyStatus.UNKNOWN, message)

    def _needs_valid(self, protocol: GlobalProtocol) -> PropertyResult | None:
        validation = protocol.validate()
        if not validation.is_valid:
            return self._unknown(f"Protocol is not well-formed: {validation.errors}")
        return None


# =============================================================================
# Well-Formedness Properties
# =============================================================================


class ValidationIdempotence(ProtocolProperty):
    """Property: validation is a pure function of the protocol.

    Validating the same protocol twice yields the same diagnostics.
    """

    def __init__(self) -> None:
        super().__init__("ValidationIdempotence", PropertyType.WELL_FORMEDNESS)

    def check(self, protocol: GlobalProtocol | None = None) -> PropertyResult:
        if protocol is None:
            return self._unknown()
        first = protocol.validate()
        second = protocol.validate()
        if first.diagnostics != second.diagnostics or first.warnings != second.warnings:
            return self._result(
                PropertyStatus.VIOLATED,
                "Repeated validation produced different diagnostics",
                counterexample={"first": first.errors, "second": second.errors},
            )
        return self._result(
            PropertyStatus.SATISFIED,
            f"Validation is stable ({len(first.diagnostics)} diagnostics)",
            participants=first.participants,
        )


# =============================================================================
# Projection Properties
# =============================================================================


class ProjectionSoundness(ProtocolProperty):
    """Property: projections of a well-formed protocol are well-formed.

    For every declared role r, G ↓ r is defined, has no free recursion
    variables, no empty Select/Offer, never names r as a peer, and the
    projections are pairwise compatible.
    """

    def __init__(self) -> None:
        super().__init__("ProjectionSoundness", PropertyType.PROJECTION)

    def check(self, protocol: GlobalProtocol | None = None) -> PropertyResult:
        if protocol is None:
            return self._unknown()
        skipped = self._needs_valid(protocol)
        if skipped is not None:
            return skipped

        problems: dict[str, list[str]] = {}
        try:
            locals_ = protocol.project_all()
        except ProjectionError as e:
            return self._result(
                PropertyStatus.VIOLATED,
                f"Projection undefined: {e}",
                counterexample={"role": e.role.name if e.role else None},
            )

        for role, local in locals_.items():
            issues = []
            if free_vars(local):
                issues.append(f"free recursion variables {sorted(free_vars(local))}")
            if role in local.participants():
                issues.append("names itself as a peer")
            for node in iter_nodes(local):
                if isinstance(node, (Select, Offer)) and not node.branches:
                    issues.append(f"empty {type(node).__name__}")
            if issues:
                problems[role.name] = issues

        compatibility = check_multiparty_compatibility(locals_)
        if problems or not compatibility.is_compatible:
            return self._result(
                PropertyStatus.VIOLATED,
                f"Unsound projections: {problems or compatibility.errors}",
                counterexample={"roles": problems, "compatibility": compatibility.errors},
                participants=set(locals_),
            )
        return self._result(
            PropertyStatus.SATISFIED,
            f"Projections sound for all {len(locals_)} roles",
            participants=set(locals_),
        )


class Duality(ProtocolProperty):
    """Property: in a two-role protocol, G ↓ A is the dual of G ↓ B."""

    def __init__(self) -> None:
        super().__init__("Duality", PropertyType.PROJECTION)

    def check(self, protocol: GlobalProtocol | None = None) -> PropertyResult:
        if protocol is None:
            return self._unknown()
        skipped = self._needs_valid(protocol)
        if skipped is not None:
            return skipped

        roles = protocol.role_ids()
        if len(roles) != 2:
            return self._unknown(f"Duality needs exactly two roles, got {len(roles)}")
        a, b = roles
        local_a, local_b = protocol.project(a), protocol.project(b)
        if verify_dual(local_a, local_b):
            return self._result(
                PropertyStatus.SATISFIED,
                f"{a.name} and {b.name} are dual",
                participants={a, b},
            )
        return self._result(
            PropertyStatus.VIOLATED,
            f"{a.name} and {b.name} are not dual",
            counterexample={a.name: repr(local_a), b.name: repr(local_b)},
            participants={a, b},
        )


class PruningCorrectness(ProtocolProperty):
    """Property: loops a role cannot observe vanish from its projection.

    For every closed loop μX.G and every declared role r absent from G,
    (μX.G) ↓ r contains no recursion at all.
    """

    def __init__(self) -> None:
        super().__init__("PruningCorrectness", PropertyType.PROJECTION)

    def check(self, protocol: GlobalProtocol | None = None) -> PropertyResult:
        if protocol is None:
            return self._unknown()
        skipped = self._needs_valid(protocol)
        if skipped is not None:
            return skipped

        roles = protocol.role_ids()
        projector = Projector(roles=roles)
        leaks = []
        for node in iter_interactions(protocol.resolved_body):
            if not isinstance(node, Rec) or not free_variables(node.body) <= {node.label}:
                continue
            inside = node.body.participants()
            for role in roles:
                if role in inside:
                    continue
                local = projector.project(node, role)
                if local is None:
                    continue
                if any(isinstance(n, (LocalRec, LocalVar)) for n in iter_nodes(local)):
                    leaks.append({"loop": str(node.label), "role": role.name, "local": repr(local)})

        if leaks:
            return self._result(
                PropertyStatus.VIOLATED,
                f"Recursion leaked into {len(leaks)} projections",
                counterexample=leaks,
            )
        return self._result(PropertyStatus.SATISFIED, "Unobservable loops are pruned")


# =============================================================================
# Safety Properties
# =============================================================================


class _NoSample(Exception):
    pass


_SAMPLES: dict[Any, Any] = {
    str: "sample",
    int: 1,
    float: 1.0,
    bool: True,
    type(None): None,
    list: [],
    dict: {},
    "str": "sample",
    "int": 1,
    "float": 1.0,
    "bool": True,
}


def sample_value(schema: Schema | None) -> Any:
    """Build a value matching a schema, for driving sessions in tests."""
    if schema is None:
        raise _NoSample("unknown schema")
    if schema.python_type is None:
        return None
    if schema.is_dataclass:
        kwargs = {}
        for f in dataclasses.fields(schema.python_type):
            if f.default is not dataclasses.MISSING or f.default_factory is not dataclasses.MISSING:
                continue
            if f.type not in _SAMPLES:
                raise _NoSample(f"cannot build field {f.name} of {schema.name}")
            kwargs[f.name] = _SAMPLES[f.type]
        return schema.python_type(**kwargs)
    if schema.python_type in _SAMPLES:
        return _SAMPLES[schema.python_type]
    raise _NoSample(f"no sample for {schema.name}")


class RoundTripExecutability(ProtocolProperty):
    """Property: a validated protocol runs without protocol violations.

    Every role runs in its own thread over a fresh broker, sending sample
    payloads and picking the first branch of each choice until half the
    step budget is spent, then preferring branches that leave their loop.
    A role that exhausts its budget aborts, which ends the run; errors
    caused by that abort are expected and ignored.
    """

    def __init__(self, max_steps: int = 200, timeout: float = 5.0) -> None:
        super().__init__("RoundTripExecutability", PropertyType.SAFETY)
        self.max_steps = max_steps
        self.timeout = timeout

    def check(self, protocol: GlobalProtocol | None = None) -> PropertyResult:
        if protocol is None:
            return self._unknown()
        skipped = self._needs_valid(protocol)
        if skipped is not None:
            return skipped

        registry = protocol.schemas or default_registry
        sessions = open_sessions(
            protocol,
            Broker(BrokerConfig(default_timeout=self.timeout)),
            SessionConfig(receive_timeout=self.timeout, validate_on_open=False),
        )
        stop = threading.Event()
        errors: dict[str, SessionError | Exception] = {}
        outcomes: dict[str, str] = {}
        lock = threading.Lock()

        def run(role: RoleIdentifier, session: Session) -> None:
            status = self._drive(session, registry, stop)
            with lock:
                outcomes[role.name] = status

        def guarded(role: RoleIdentifier, session: Session) -> None:
            try:
                run(role, session)
            except _NoSample as e:
                stop.set()
                with lock:
                    errors[role.name] = e
            except UnexpectedClose as e:
                if not stop.is_set():
                    with lock:
                        errors[role.name] = e
            except SessionError as e:
                stop.set()
                with lock:
                    errors[role.name] = e

        threads = [
            threading.Thread(target=guarded, args=(role, s), name=f"roundtrip-{role.name}")
            for role, s in sessions.items()
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(self.timeout * 4)

        if any(t.is_alive() for t in threads):
            stop.set()
            return self._result(PropertyStatus.TIMEOUT, "Sessions did not finish in time")
        if any(isinstance(e, _NoSample) for e in errors.values()):
            return self._unknown(f"Cannot build sample payloads: {errors}")
        if errors:
            return self._result(
                PropertyStatus.VIOLATED,
                f"Run failed: {', '.join(f'{r}: {e}' for r, e in errors.items())}",
                counterexample={r: repr(e) for r, e in errors.items()},
                participants=set(sessions),
            )
        return self._result(
            PropertyStatus.SATISFIED,
            f"All {len(sessions)} roles finished ({outcomes})",
            participants=set(sessions),
        )

    def _drive(self, session: Session, registry: SchemaRegistry, stop: threading.Event) -> str:
        steps = 0
        try:
            while not session.is_complete():
                if stop.is_set() or steps >= self.max_steps:
                    stop.set()
                    session.abort("step budget exhausted")
                    return ABORTED
                state = session.state
                if isinstance(state, Send):
                    session = session.send(sample_value(registry.lookup(state.schema)))
                elif isinstance(state, Receive):
                    _, session = session.receive()
                elif isinstance(state, Select):
                    session = session.select(self._choose(state, steps))
                elif isinstance(state, Offer):
                    _, session = session.offer()
                else:
                    session = session.enter()
                steps += 1
            session.close()
            return CLOSED
        finally:
            if session.status not in (CLOSED, ABORTED):
                session.abort("run ended early")

    def _choose(self, state: Select, steps: int) -> str:
        labels = state.labels()
        if steps < self.max_steps // 2:
            return labels[0]
        for label in labels:
            if not free_vars(state.branch(label)):
                return label
        return labels[0]


# =============================================================================
# Specification
# =============================================================================


class ProtocolSpecification:
    """Runs a set of properties against a protocol."""

    def __init__(self, custom_properties: list[ProtocolProperty] | None = None):
        self.properties: list[ProtocolProperty] = [
            ValidationIdempotence(),
            ProjectionSoundness(),
            Duality(),
            PruningCorrectness(),
        ]
        if custom_properties:
            self.properties.extend(custom_properties)

    def verify(self, protocol: GlobalProtocol) -> list[PropertyResult]:
        return [prop.check(protocol) for prop in self.properties]

    def is_valid(self, protocol: GlobalProtocol) -> bool:
        """Check that no property is violated."""
        return not any(r.status == PropertyStatus.VIOLATED for r in self.verify(protocol))

    def summary(self, protocol: GlobalProtocol) -> str:
        """Generate verification summary."""
        lines = [f"Protocol {protocol.name}", "=" * 40, "", "Property Results:"]
        results = self.verify(protocol)
        for result in results:
            icon = {
                PropertyStatus.SATISFIED: "✓",
                PropertyStatus.VIOLATED: "✗",
                PropertyStatus.UNKNOWN: "?",
                PropertyStatus.TIMEOUT: "⏱",
            }.get(result.status, "?")
            lines.append(f"  {icon} {result.property_name}: {result.message}")
        failed = any(r.status == PropertyStatus.VIOLATED for r in results)
        lines.append("")
        lines.append(f"Overall: {'FAIL' if failed else 'PASS'}")
        return "\n".join(lines)


__all__ = [
    "PropertyType",
    "PropertyStatus",
    "PropertyResult",
    "ProtocolProperty",
    "ValidationIdempotence",
    "ProjectionSoundness",
    "Duality",
    "PruningCorrectness",
    "RoundTripExecutability",
    "ProtocolSpecification",
    "sample_value",
]
