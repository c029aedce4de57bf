"""Transports and session endpoints.

A session talks to its peers through an ``Endpoint``: something that can
send bytes to a named role, receive bytes from a named role, and be
closed. Two endpoints ship with the package:

- ``Channel`` (see ``sessionflow.broker``): a role's handle on a shared
  multiparty broker
- ``TransportEndpoint``: adapts a point-to-point ``Transport`` for
  two-party sessions

``MemoryTransport.pair()`` builds an in-memory duplex transport, useful for
tests and for running both roles of a protocol in one process.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import deque

from sessionflow.errors import (
    ProtocolViolation,
    SessionTimeout,
    TransportError,
    UnexpectedClose,
)
from sessionflow.types import RoleIdentifier, as_role

logger = logging.getLogger(__name__)


class Endpoint(ABC):
    """Role-addressed byte channel used by a session."""

    @abstractmethod
    def send_to(self, role: RoleIdentifier | str, data: bytes) -> None:
        """Deliver ``data`` to ``role``."""
        ...

    @abstractmethod
    def receive_from(self, role: RoleIdentifier | str, timeout: float | None = None) -> bytes:
        """Return the oldest pending data sent by ``role``, blocking up to ``timeout``."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Release the endpoint."""
        ...


class Transport(ABC):
    """Point-to-point, ordered, reliable byte transport."""

    @abstractmethod
    def send_payload(self, data: bytes) -> None: ...

    @abstractmethod
    def receive_payload(self, timeout: float | None = None) -> bytes: ...

    @abstractmethod
    def close(self) -> None: ...


class _Pipe:
    """One direction of a memory transport."""

    def __init__(self) -> None:
        self.cond = threading.Condition()
        self.items: deque[bytes] = deque()
        self.closed = False


class MemoryTransport(Transport):
    """In-memory duplex transport.

    Create connected ends with ``MemoryTransport.pair()``. Closing either
    end closes both directions; data already in flight can still be read.
    """

    def __init__(self, inbound: _Pipe, outbound: _Pipe) -> None:
        self._inbound = inbound
        self._outbound = outbound
        self._closed = False

    @classmethod
    def pair(cls) -> tuple[MemoryTransport, MemoryTransport]:
        """Create two connected transport ends."""
        a_to_b, b_to_a = _Pipe(), _Pipe()
        return cls(inbound=b_to_a, outbound=a_to_b), cls(inbound=a_to_b, outbound=b_to_a)

    @property
    def closed(self) -> bool:
        return self._closed

    def send_payload(self, data: bytes) -> None:
        if not isinstance(data, (bytes, bytearray)):
            raise TransportError(f"Transport carries bytes, got {type(data).__name__}")
        if self._closed:
            raise TransportError("Transport is closed")
        with self._outbound.cond:
            if self._outbound.closed:
                raise UnexpectedClose("Peer closed the transport")
            self._outbound.items.append(bytes(data))
            self._outbound.cond.notify_all()

    def receive_payload(self, timeout: float | None = None) -> bytes:
        if self._closed:
            raise TransportError("Transport is closed")
        pipe = self._inbound
        deadline = None if timeout is None else time.monotonic() + timeout
        with pipe.cond:
            while not pipe.items:
                if pipe.closed:
                    raise UnexpectedClose("Peer closed the transport")
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise SessionTimeout(timeout)  # type: ignore[arg-type]
                pipe.cond.wait(remaining)
            return pipe.items.popleft()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for pipe in (self._inbound, self._outbound):
            with pipe.cond:
                pipe.closed = True
                pipe.cond.notify_all()


class TransportEndpoint(Endpoint):
    """Endpoint over a point-to-point transport.

    Args:
        transport: Underlying transport
        peer: The only role reachable through the transport. If given,
            addressing any other role is a protocol violation.
    """

    def __init__(self, transport: Transport, peer: RoleIdentifier | str | None = None) -> None:
        self.transport = transport
        self.peer = None if peer is None else as_role(peer)

    def _check_peer(self, role: RoleIdentifier | str) -> None:
        if self.peer is not None and as_role(role) != self.peer:
            raise ProtocolViolation(
                f"Endpoint is connected to '{self.peer.name}', not '{as_role(role).name}'",
                {"peer": self.peer.name, "role": as_role(role).name},
            )

    def send_to(self, role: RoleIdentifier | str, data: bytes) -> None:
        self._check_peer(role)
        try:
            self.transport.send_payload(data)
        except OSError as e:
            raise TransportError(f"Send to '{as_role(role).name}' failed: {e}", cause=e) from e

    def receive_from(self, role: RoleIdentifier | str, timeout: float | None = None) -> bytes:
        self._check_peer(role)
        try:
            return self.transport.receive_payload(timeout)
        except OSError as e:
            raise TransportError(
                f"Receive from '{as_role(role).name}' failed: {e}", cause=e
            ) from e

    def close(self) -> None:
        try:
            self.transport.close()
        except OSError as e:
            raise TransportError(f"Close failed: {e}", cause=e) from e
        logger.debug("Transport endpoint closed")


__all__ = [
    "Endpoint",
    "Transport",
    "MemoryTransport",
    "TransportEndpoint",
]
