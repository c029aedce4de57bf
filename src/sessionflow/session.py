"""Runtime sessions.

A ``Session`` is a handle on one role's progress through its local
protocol. Handles are linear: every operation consumes the handle it is
called on and returns a new one for the next state, and a consumed handle
refuses any further use. Only the operation the current state allows is
accepted; anything else raises ``ProtocolViolation`` before touching the
endpoint.

State → operation:
- Send       → send(payload)
- Receive    → receive()  -> (payload, Session)
- Select     → select(label)
- Offer      → offer()    -> (label, Session)
- LocalRec   → enter()
- LocalEnd   → close()
- any state  → abort(reason)

Recursion variables are never exposed: reaching ``X`` jumps straight to
the body of the innermost loop ``μX`` that was entered.

Usage:
    broker = Broker()
    sessions = open_sessions(ping_pong, broker)

    # Thread of role Client
    s = sessions["Client"].send("ping")
    reply, s = s.receive()
    s.close()
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from sessionflow.broker import Broker
from sessionflow.codec import Frame, decode_frame, encode_frame
from sessionflow.errors import (
    ProtocolViolation,
    SchemaMismatch,
    SerializationError,
    SessionError,
    SessionTimeout,
)
from sessionflow.global_types import GlobalProtocol
from sessionflow.local_types import (
    LocalEnd,
    LocalProtocol,
    LocalRec,
    LocalVar,
    Offer,
    Receive,
    Select,
    Send,
)
from sessionflow.monitor import StateTransitionMonitor, Transition
from sessionflow.schemas import SchemaRegistry, default_registry
from sessionflow.transport import Endpoint
from sessionflow.types import Participant, RecursionLabel, RoleIdentifier, TypeKind, as_role

logger = logging.getLogger(__name__)

_session_ids = itertools.count(1)

ALLOWED_ACTIONS: dict[str, set[str]] = {
    TypeKind.SEND.value: {"send", "abort"},
    TypeKind.RECEIVE.value: {"receive", "abort"},
    TypeKind.SELECT.value: {"select", "abort"},
    TypeKind.OFFER.value: {"offer", "abort"},
    TypeKind.RECURSION.value: {"enter", "abort"},
    TypeKind.END.value: {"close", "abort"},
}

OPEN = "open"
CLOSED = "closed"
ABORTED = "aborted"
FAILED = "failed"

LoopEnv = tuple[tuple[RecursionLabel, LocalProtocol], ...]


@dataclass
class SessionConfig:
    """Configuration for a session."""

    receive_timeout: float | None = None
    """Seconds receive/offer wait for a peer (None: block)"""

    strict_schemas: bool = True
    """Check payloads against their schema on send and receive"""

    validate_on_open: bool = True
    """Validate the global protocol before opening a session on it"""

    session_id: str = ""
    """Identifier used in logs and telemetry (generated if empty)"""


class _SessionCore:
    """State shared by every handle of one session."""

    def __init__(
        self,
        role: RoleIdentifier,
        endpoint: Endpoint,
        config: SessionConfig,
        schemas: SchemaRegistry,
    ) -> None:
        self.role = role
        self.endpoint = endpoint
        self.config = config
        self.schemas = schemas
        self.session_id = config.session_id or f"{role.name}-{next(_session_ids)}"
        self.status = OPEN
        self.lock = threading.Lock()
        self.monitor = StateTransitionMonitor(name=self.session_id, allowed_actions=ALLOWED_ACTIONS)


class Session:
    """Linear handle on a role's position in its local protocol.

    Args:
        local: Local protocol to follow
        role: Role this session plays
        endpoint: Endpoint used to reach the other roles
        config: Session configuration
        schemas: Registry used to check and encode payloads
    """

    def __init__(
        self,
        local: LocalProtocol,
        role: RoleIdentifier | str,
        endpoint: Endpoint,
        config: SessionConfig | None = None,
        schemas: SchemaRegistry | None = None,
    ) -> None:
        core = _SessionCore(
            role=as_role(role),
            endpoint=endpoint,
            config=config or SessionConfig(),
            schemas=schemas or default_registry,
        )
        state, env = _resolve(local, ())
        self._init(core, state, env)
        logger.debug(f"[{core.session_id}] Opened session for {core.role.name}: {state!r}")

    def _init(self, core: _SessionCore, state: LocalProtocol, env: LoopEnv) -> None:
        self._core = core
        self._state = state
        self._env = env
        self._consumed = False

    @classmethod
    def _next(cls, core: _SessionCore, state: LocalProtocol, env: LoopEnv) -> Session:
        handle = cls.__new__(cls)
        handle._init(core, state, env)
        return handle

    # -- introspection ----------------------------------------------------------

    @property
    def role(self) -> RoleIdentifier:
        return self._core.role

    @property
    def session_id(self) -> str:
        return self._core.session_id

    @property
    def state(self) -> LocalProtocol:
        """Current local state (never a recursion variable)."""
        return self._state

    @property
    def kind(self) -> TypeKind:
        return self._state.kind

    @property
    def status(self) -> str:
        """``open``, ``closed``, ``aborted`` or ``failed``."""
        return self._core.status

    @property
    def consumed(self) -> bool:
        return self._consumed

    @property
    def monitor(self) -> StateTransitionMonitor:
        return self._core.monitor

    def is_complete(self) -> bool:
        """Whether the protocol is over for this role."""
        return isinstance(self._state, LocalEnd)

    def can_send(self) -> bool:
        return isinstance(self._state, Send)

    def can_receive(self) -> bool:
        return isinstance(self._state, Receive)

    def expected(self) -> str:
        """Human-readable description of the next allowed operation."""
        state = self._state
        if isinstance(state, Send):
            return f"send {state.schema} to {state.receiver.name}"
        if isinstance(state, Receive):
            return f"receive {state.schema} from {state.sender.name}"
        if isinstance(state, Select):
            to = ", ".join(r.name for r in state.receivers) or "nobody"
            return f"select one of {state.labels()} (informing {to})"
        if isinstance(state, Offer):
            return f"offer one of {state.labels()} from {state.sender.name}"
        if isinstance(state, LocalRec):
            return f"enter loop {state.label}"
        return "close"

    def history(self) -> list[Transition]:
        return self._core.monitor.get_history()

    def __repr__(self) -> str:
        return f"Session({self.role.name}, {self._state!r}, {self.status})"

    # -- handle bookkeeping -------------------------------------------------------

    def _claim(self, action: str) -> None:
        core = self._core
        with core.lock:
            if self._consumed:
                self._refuse(action, "Session handle has already been used")
            if core.status != OPEN:
                self._refuse(action, f"Session is {core.status}")
            self._consumed = True

    def _release(self) -> None:
        with self._core.lock:
            self._consumed = False

    def _refuse(self, action: str, reason: str, release: bool = False) -> None:
        core = self._core
        if release:
            self._release()
        core.monitor.reject(action, repr(self._state), reason)
        logger.warning(f"[{core.session_id}] {core.role.name} cannot {action}: {reason}")
        raise ProtocolViolation(
            reason,
            {"role": core.role.name, "action": action, "state": repr(self._state)},
        )

    def _require(self, action: str, node_type: type) -> None:
        if not isinstance(self._state, node_type):
            self._refuse(
                action,
                f"Cannot {action} here: {self.role.name} must {self.expected()}",
                release=True,
            )

    def _fail(self, action: str, error: SessionError) -> None:
        core = self._core
        with core.lock:
            core.status = FAILED
        core.monitor.reject(action, repr(self._state), error.message)
        logger.warning(f"[{core.session_id}] {core.role.name} {action} failed: {error.message}")

    def _advance(
        self,
        action: str,
        state: LocalProtocol,
        env: LoopEnv,
        peer: RoleIdentifier | None = None,
        detail: str | None = None,
    ) -> Session:
        core = self._core
        core.monitor.transition(
            action,
            from_kind=self._state.kind.value,
            from_state=repr(self._state),
            to_state=repr(state),
            peer=peer.name if peer is not None else None,
            detail=detail,
        )
        logger.debug(f"[{core.session_id}] {core.role.name} {action} → {state!r}")
        return Session._next(core, state, env)

    # -- operations ------------------------------------------------------------

    def send(self, payload: Any) -> Session:
        """Send a payload to the peer the current Send state names.

        Raises:
            ProtocolViolation: If the current state is not a Send
            SchemaMismatch: If the payload does not match the schema
            SerializationError: If the payload cannot be encoded
        """
        self._claim("send")
        self._require("send", Send)
        state: Send = self._state  # type: ignore[assignment]
        core = self._core

        if core.config.strict_schemas and not core.schemas.matches(state.schema, payload):
            self._release()
            core.monitor.reject("send", repr(state), f"schema mismatch for {state.schema}")
            raise SchemaMismatch(state.schema, payload, {"role": core.role.name})
        try:
            wire = core.schemas.to_wire(state.schema, payload)
            data = encode_frame(Frame.message(core.role, state.schema, wire))
        except (TypeError, ValueError) as e:
            self._release()
            raise SerializationError(
                f"Cannot encode {state.schema} payload: {e}", {"role": core.role.name}
            ) from e
        except SessionError:
            self._release()
            raise

        try:
            core.endpoint.send_to(state.receiver, data)
        except SessionError as e:
            self._fail("send", e)
            raise
        next_state, env = _resolve(state.continuation, self._env)
        return self._advance("send", next_state, env, state.receiver, state.schema)

    def receive(self, timeout: float | None = None) -> tuple[Any, Session]:
        """Receive the payload the current Receive state expects.

        Args:
            timeout: Seconds to wait (default: ``SessionConfig.receive_timeout``)

        Returns:
            (payload, next session)

        Raises:
            ProtocolViolation: If the current state is not a Receive, or a
                choice arrives where a message was expected
            SchemaMismatch: If the payload does not match the schema
            UnexpectedClose: If the sender went away
            SessionTimeout: If nothing arrived in time (the handle stays usable)
        """
        self._claim("receive")
        self._require("receive", Receive)
        state: Receive = self._state  # type: ignore[assignment]
        frame = self._read("receive", state.sender, timeout)
        core = self._core

        if frame.is_choice:
            error = ProtocolViolation(
                f"Expected {state.schema} from {state.sender.name}, got choice '{frame.label}'",
                {"role": core.role.name, "label": frame.label},
            )
            self._fail("receive", error)
            raise error
        try:
            value = core.schemas.from_wire(state.schema, frame.value)
        except SessionError as e:
            self._fail("receive", e)
            raise
        if frame.schema != state.schema or (
            core.config.strict_schemas and not core.schemas.matches(state.schema, value)
        ):
            mismatch = SchemaMismatch(state.schema, value, {"received_schema": frame.schema})
            self._fail("receive", mismatch)
            raise mismatch

        next_state, env = _resolve(state.continuation, self._env)
        return value, self._advance("receive", next_state, env, state.sender, state.schema)

    def select(self, label: str) -> Session:
        """Choose a branch and tell every informed role.

        Raises:
            ProtocolViolation: If the current state is not a Select, or the
                label is not one of its branches
        """
        self._claim("select")
        self._require("select", Select)
        state: Select = self._state  # type: ignore[assignment]
        core = self._core
        if label not in state.labels():
            self._refuse(
                "select",
                f"Unknown branch '{label}': expected one of {state.labels()}",
                release=True,
            )

        data = encode_frame(Frame.choice(core.role, label))
        for receiver in state.receivers:
            try:
                core.endpoint.send_to(receiver, data)
            except SessionError as e:
                self._fail("select", e)
                raise
        next_state, env = _resolve(state.branch(label), self._env)
        return self._advance("select", next_state, env, detail=label)

    def offer(self, timeout: float | None = None) -> tuple[str, Session]:
        """Wait for the decider's choice.

        Returns:
            (label, session positioned at the chosen branch)

        Raises:
            ProtocolViolation: If the current state is not an Offer, a data
                message arrives instead of a choice, or the label is unknown
            UnexpectedClose: If the decider went away
            SessionTimeout: If nothing arrived in time (the handle stays usable)
        """
        self._claim("offer")
        self._require("offer", Offer)
        state: Offer = self._state  # type: ignore[assignment]
        frame = self._read("offer", state.sender, timeout)
        core = self._core

        if not frame.is_choice:
            error = ProtocolViolation(
                f"Expected a choice from {state.sender.name}, got {frame.schema} message",
                {"role": core.role.name, "schema": frame.schema},
            )
            self._fail("offer", error)
            raise error
        if frame.label not in state.labels():
            error = ProtocolViolation(
                f"Unknown branch '{frame.label}' from {state.sender.name}: "
                f"expected one of {state.labels()}",
                {"role": core.role.name, "label": frame.label},
            )
            self._fail("offer", error)
            raise error

        label = str(frame.label)
        next_state, env = _resolve(state.branch(label), self._env)
        return label, self._advance("offer", next_state, env, state.sender, label)

    def enter(self) -> Session:
        """Enter the loop at the current LocalRec state.

        Raises:
            ProtocolViolation: If the current state is not a LocalRec
        """
        self._claim("enter")
        self._require("enter", LocalRec)
        state: LocalRec = self._state  # type: ignore[assignment]
        env = self._env + ((state.label, state.body),)
        next_state, env = _resolve(state.body, env)
        return self._advance("enter", next_state, env, detail=str(state.label))

    def close(self) -> None:
        """Finish the session and release the endpoint.

        Raises:
            ProtocolViolation: If the protocol is not over for this role
        """
        self._claim("close")
        self._require("close", LocalEnd)
        core = self._core
        try:
            core.endpoint.close()
        except SessionError as e:
            self._fail("close", e)
            raise
        with core.lock:
            core.status = CLOSED
        core.monitor.transition(
            "close", from_kind=self._state.kind.value, from_state="end", to_state=CLOSED
        )
        logger.info(f"[{core.session_id}] Session for {core.role.name} closed")

    def abort(self, reason: str = "") -> None:
        """Abandon the session from any state and release the endpoint.

        Allowed on a session that failed, so its endpoint can still be
        released.

        Raises:
            ProtocolViolation: If the session is already closed or aborted,
                or this handle was used while the session is still open
        """
        core = self._core
        with core.lock:
            if core.status in (CLOSED, ABORTED):
                self._refuse("abort", f"Session is {core.status}")
            if core.status == OPEN and self._consumed:
                self._refuse("abort", "Session handle has already been used")
            self._consumed = True
            core.status = ABORTED
        core.monitor.transition(
            "abort",
            from_kind=self._state.kind.value,
            from_state=repr(self._state),
            to_state=ABORTED,
            detail=reason or None,
        )
        logger.warning(
            f"[{core.session_id}] Session for {core.role.name} aborted at "
            f"{self._state!r}: {reason or 'no reason given'}"
        )
        core.endpoint.close()

    def _read(self, action: str, sender: RoleIdentifier, timeout: float | None) -> Frame:
        core = self._core
        if timeout is None:
            timeout = core.config.receive_timeout
        try:
            data = core.endpoint.receive_from(sender, timeout)
        except SessionTimeout as e:
            self._release()
            core.monitor.reject(action, repr(self._state), e.message)
            raise
        except SessionError as e:
            self._fail(action, e)
            raise
        try:
            frame = decode_frame(data)
        except SessionError as e:
            self._fail(action, e)
            raise
        if frame.sender != sender:
            error = ProtocolViolation(
                f"Expected a frame from {sender.name}, got one from {frame.sender.name}",
                {"role": core.role.name},
            )
            self._fail(action, error)
            raise error
        return frame


def _resolve(state: LocalProtocol, env: LoopEnv) -> tuple[LocalProtocol, LoopEnv]:
    """Replace a recursion variable by the body of its innermost loop."""
    seen: set[str] = set()
    while isinstance(state, LocalVar):
        for index in range(len(env) - 1, -1, -1):
            if env[index][0] == state.label:
                break
        else:
            raise ProtocolViolation(f"Recursion variable '{state.label}' is not bound")
        if state.label in seen:
            raise ProtocolViolation(f"Loop '{state.label}' has no interaction")
        seen.add(state.label)
        # Loops entered after this one are left behind
        env = env[: index + 1]
        state = env[index][1]
    return state, env


# Convenience functions


def open_session(
    protocol: GlobalProtocol,
    role: str | Participant,
    endpoint: Endpoint,
    config: SessionConfig | None = None,
    schemas: SchemaRegistry | None = None,
) -> Session:
    """Open a session for one role of a global protocol.

    Args:
        protocol: Global protocol
        role: Role to play (name, alias or role enum member)
        endpoint: Endpoint reaching the other roles
        config: Session configuration
        schemas: Registry overriding the protocol's own

    Returns:
        Session positioned at the start of the role's local protocol

    Raises:
        ProtocolDefinitionError: If the protocol is not well-formed
        ProtocolViolation: If the role is not declared by the protocol
    """
    config = config or SessionConfig()
    registry = schemas or protocol.schemas or default_registry
    if config.validate_on_open:
        protocol.validate(registry).raise_for_errors(protocol.name)

    rid = protocol.resolve_role(role)
    if rid not in protocol.role_ids():
        raise ProtocolViolation(
            f"Role '{rid.name}' is not declared by protocol '{protocol.name}'",
            {"role": rid.name, "protocol": protocol.name},
        )
    return Session(protocol.project(rid), rid, endpoint, config=config, schemas=registry)


def open_sessions(
    protocol: GlobalProtocol,
    broker: Broker | None = None,
    config: SessionConfig | None = None,
    schemas: SchemaRegistry | None = None,
) -> Mapping[RoleIdentifier, Session]:
    """Open a session for every declared role over a broker.

    Args:
        protocol: Global protocol
        broker: Broker to route through (a new one if omitted); the
            protocol's roles must not be registered with it yet
        config: Configuration shared by all sessions (the session id is
            generated per role)
        schemas: Registry overriding the protocol's own

    Returns:
        Mapping from role to its session
    """
    config = config or SessionConfig()
    registry = schemas or protocol.schemas or default_registry
    if config.validate_on_open:
        protocol.validate(registry).raise_for_errors(protocol.name)

    broker = broker or Broker()
    for rid in protocol.role_ids():
        broker.register_participant(rid)

    per_role = SessionConfig(
        receive_timeout=config.receive_timeout,
        strict_schemas=config.strict_schemas,
        validate_on_open=False,
    )
    return {
        rid: open_session(protocol, rid, broker.create_channel(rid), per_role, registry)
        for rid in protocol.role_ids()
    }


__all__ = [
    "SessionConfig",
    "Session",
    "open_session",
    "open_sessions",
    "ALLOWED_ACTIONS",
]
