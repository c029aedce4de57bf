"""In-process multiparty message broker.

The broker keeps one inbox per registered role. Each inbox holds a FIFO
queue per sender, so a role can wait for the next message from a specific
peer while messages from other peers keep arriving. Every inbox is guarded
by its own condition variable; the only broker-wide lock is the short
registry lock taken to look an inbox up.

Thread Safety:
    Any number of threads may route and receive concurrently. Ordering is
    FIFO per (sender, receiver) pair; nothing is promised across pairs.

Usage:
    broker = Broker()
    for role in ("Client", "Server", "Logger"):
        broker.register_participant(role)
    client = broker.create_channel("Client")
    client.send("Server", b"...")
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict, deque
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from sessionflow.errors import (
    ConcurrencyGuardFailure,
    ProtocolViolation,
    SessionTimeout,
    UnexpectedClose,
)
from sessionflow.transport import Endpoint
from sessionflow.types import RoleIdentifier, as_role

logger = logging.getLogger(__name__)


@dataclass
class BrokerConfig:
    """Configuration for a Broker."""

    guard_timeout: float | None = 5.0
    """Seconds to wait for an inbox guard before failing (None: wait forever)"""

    default_timeout: float | None = None
    """Receive timeout used when a call gives none (None: block)"""


class _Inbox:
    """Per-role mailbox: one queue per sender."""

    def __init__(self) -> None:
        self.cond = threading.Condition()
        self.queues: defaultdict[RoleIdentifier, deque[Any]] = defaultdict(deque)
        self.closed = False


class Broker:
    """Routes payloads between registered roles.

    Args:
        config: Broker configuration
    """

    def __init__(self, config: BrokerConfig | None = None) -> None:
        self.config = config or BrokerConfig()
        self._lock = threading.Lock()
        self._inboxes: dict[RoleIdentifier, _Inbox] = {}
        self._closed: set[RoleIdentifier] = set()

    def register(self, role: RoleIdentifier | str) -> RoleIdentifier:
        """Register a role and create its inbox.

        Raises:
            ProtocolViolation: If the role is already registered
        """
        rid = as_role(role)
        with self._lock:
            if rid in self._inboxes:
                raise ProtocolViolation(
                    f"Participant '{rid.name}' is already registered", {"role": rid.name}
                )
            self._inboxes[rid] = _Inbox()
        logger.debug(f"Registered participant {rid.name}")
        return rid

    register_participant = register

    def create_channel(self, role: RoleIdentifier | str) -> Channel:
        """Create the endpoint a role's session uses.

        Raises:
            ProtocolViolation: If the role is not registered
        """
        rid = as_role(role)
        self._inbox(rid)
        return Channel(self, rid)

    def roles(self) -> list[RoleIdentifier]:
        """Registered roles, in registration order."""
        with self._lock:
            return list(self._inboxes)

    def is_closed(self, role: RoleIdentifier | str) -> bool:
        with self._lock:
            return as_role(role) in self._closed

    def _inbox(self, role: RoleIdentifier) -> _Inbox:
        with self._lock:
            inbox = self._inboxes.get(role)
        if inbox is None:
            raise ProtocolViolation(f"Role '{role.name}' not found", {"role": role.name})
        return inbox

    @contextmanager
    def _guard(self, role: RoleIdentifier, inbox: _Inbox) -> Iterator[None]:
        timeout = self.config.guard_timeout
        if not inbox.cond.acquire(timeout=-1 if timeout is None else timeout):
            raise ConcurrencyGuardFailure(
                f"Could not acquire the inbox guard of '{role.name}' within {timeout}s",
                {"role": role.name},
            )
        try:
            yield
        finally:
            inbox.cond.release()

    def route(
        self,
        sender: RoleIdentifier | str,
        receiver: RoleIdentifier | str,
        payload: Any,
    ) -> None:
        """Append a payload to the receiver's queue for ``sender``.

        Raises:
            ProtocolViolation: If either role is unknown or the sender has closed
            UnexpectedClose: If the receiver has closed its channel
        """
        src, dst = as_role(sender), as_role(receiver)
        self._inbox(src)
        inbox = self._inbox(dst)
        if self.is_closed(src):
            raise ProtocolViolation(f"Channel of '{src.name}' is closed", {"role": src.name})
        with self._guard(dst, inbox):
            if inbox.closed:
                raise UnexpectedClose(
                    f"Participant '{dst.name}' has closed its channel",
                    {"sender": src.name, "receiver": dst.name},
                )
            inbox.queues[src].append(payload)
            inbox.cond.notify_all()
        logger.debug(f"Routed {src.name} → {dst.name}")

    def receive(
        self,
        role: RoleIdentifier | str,
        expected_from: RoleIdentifier | str,
        timeout: float | None = None,
    ) -> Any:
        """Take the oldest payload ``expected_from`` sent to ``role``.

        Blocks until one arrives, the sender closes, or the timeout expires.

        Raises:
            ProtocolViolation: If either role is unknown
            UnexpectedClose: If the sender closed with nothing left to deliver
            SessionTimeout: If nothing arrived in time
        """
        rid, src = as_role(role), as_role(expected_from)
        inbox = self._inbox(rid)
        self._inbox(src)
        if timeout is None:
            timeout = self.config.default_timeout
        deadline = None if timeout is None else time.monotonic() + timeout

        with self._guard(rid, inbox):
            queue = inbox.queues[src]
            while not queue:
                if inbox.closed:
                    raise UnexpectedClose(
                        f"Channel of '{rid.name}' is closed", {"role": rid.name}
                    )
                if self.is_closed(src):
                    raise UnexpectedClose(
                        f"Participant '{src.name}' closed before sending",
                        {"sender": src.name, "receiver": rid.name},
                    )
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise SessionTimeout(
                        timeout,  # type: ignore[arg-type]
                        {"sender": src.name, "receiver": rid.name},
                    )
                inbox.cond.wait(remaining)
            return queue.popleft()

    def pending(
        self,
        role: RoleIdentifier | str,
        sender: RoleIdentifier | str | None = None,
    ) -> int:
        """Number of undelivered payloads for a role (optionally from one sender)."""
        rid = as_role(role)
        inbox = self._inbox(rid)
        with self._guard(rid, inbox):
            if sender is not None:
                return len(inbox.queues.get(as_role(sender), ()))
            return sum(len(q) for q in inbox.queues.values())

    def close_inbox(self, role: RoleIdentifier | str) -> None:
        """Close a role's channel.

        Receivers waiting on the role (including the role itself) are woken;
        they still get payloads already queued, then ``UnexpectedClose``.
        """
        rid = as_role(role)
        target = self._inbox(rid)
        with self._lock:
            if rid in self._closed:
                return
            self._closed.add(rid)
            inboxes = list(self._inboxes.items())
        with self._guard(rid, target):
            target.closed = True
        # One inbox guard at a time
        for other, inbox in inboxes:
            with self._guard(other, inbox):
                inbox.cond.notify_all()
        logger.debug(f"Closed channel of {rid.name}")


class Channel(Endpoint):
    """A role's handle on the broker.

    Attributes:
        broker: Broker the channel routes through
        role: Owning role
    """

    def __init__(self, broker: Broker, role: RoleIdentifier) -> None:
        self.broker = broker
        self.role = role

    def send(self, to: RoleIdentifier | str, payload: Any) -> None:
        self.broker.route(self.role, to, payload)

    def receive(self, from_: RoleIdentifier | str, timeout: float | None = None) -> Any:
        return self.broker.receive(self.role, from_, timeout)

    def send_to(self, role: RoleIdentifier | str, data: Any) -> None:
        self.send(role, data)

    def receive_from(self, role: RoleIdentifier | str, timeout: float | None = None) -> Any:
        return self.receive(role, timeout)

    def close(self) -> None:
        self.broker.close_inbox(self.role)

    def __repr__(self) -> str:
        return f"Channel({self.role.name})"


__all__ = [
    "BrokerConfig",
    "Broker",
    "Channel",
]
