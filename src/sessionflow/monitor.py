"""Transition telemetry for running sessions.

Every session owns a ``StateTransitionMonitor`` shared by all of its
handles. Each successful operation is recorded as a transition; rejected
operations are recorded as violations. The monitor also checks each
recorded action against a table of actions allowed per state kind, so a
misbehaving endpoint implementation shows up in the telemetry even if it
slipped past the session checks.

Thread Safety:
    All mutable state is protected by RLock for safe concurrent access.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    """One recorded session step.

    Attributes:
        action: Operation performed (send, receive, select, offer, enter,
            close, abort)
        from_state: Local state before the step
        to_state: Local state after the step
        peer: Role the step talked to, if any
        detail: Schema, label or abort reason
        timestamp: Wall-clock time of the step
    """

    action: str
    from_state: str
    to_state: str
    peer: str | None = None
    detail: str | None = None
    timestamp: float = 0.0


@dataclass(frozen=True)
class RejectedAction:
    """An operation the session refused.

    Attributes:
        action: Operation attempted
        state: Local state at the time
        reason: Why it was refused
        timestamp: Wall-clock time of the attempt
    """

    action: str
    state: str
    reason: str
    timestamp: float = 0.0


class StateTransitionMonitor:
    """Records the transitions of one session.

    Thread Safety:
        All mutable state is protected by RLock for safe concurrent access.
    """

    def __init__(
        self,
        name: str = "session",
        allowed_actions: dict[str, set[str]] | None = None,
    ):
        """Initialize monitor.

        Args:
            name: Monitor name (usually the session id)
            allowed_actions: Map of state kind to the actions legal there.
                Kinds missing from the map accept any action.
        """
        self.name = name
        self._lock = threading.RLock()
        self.allowed_actions = allowed_actions or {}
        self._current_state: str | None = None
        self._transition_history: list[Transition] = []
        self._invalid_transitions: list[Transition] = []
        self._rejected: list[RejectedAction] = []

    def transition(
        self,
        action: str,
        from_kind: str,
        from_state: str,
        to_state: str,
        peer: str | None = None,
        detail: str | None = None,
    ) -> bool:
        """Record a transition.

        Thread-safe: Protected by RLock.

        Args:
            action: Operation performed
            from_kind: Kind of the state the operation was performed in
            from_state: Description of the source state
            to_state: Description of the target state
            peer: Role talked to
            detail: Schema, label or reason

        Returns:
            True if the action is legal in a state of ``from_kind``
        """
        with self._lock:
            record = Transition(
                action=action,
                from_state=from_state,
                to_state=to_state,
                peer=peer,
                detail=detail,
                timestamp=time.time(),
            )
            allowed = self.allowed_actions.get(from_kind)
            is_valid = not allowed or action in allowed
            if not is_valid:
                self._invalid_transitions.append(record)
                logger.warning(f"[{self.name}] Invalid transition: {action} in {from_kind} state")

            self._transition_history.append(record)
            self._current_state = to_state
            return is_valid

    def reject(self, action: str, state: str, reason: str) -> None:
        """Record an operation the session refused.

        Thread-safe: Protected by RLock.
        """
        with self._lock:
            self._rejected.append(
                RejectedAction(action=action, state=state, reason=reason, timestamp=time.time())
            )

    @property
    def current_state(self) -> str | None:
        """Get current state.

        Thread-safe: Protected by RLock.
        """
        with self._lock:
            return self._current_state

    def get_history(self) -> list[Transition]:
        """Get transition history.

        Thread-safe: Returns a copy of the history.
        """
        with self._lock:
            return list(self._transition_history)

    def actions(self) -> list[str]:
        """Recorded actions, in order."""
        with self._lock:
            return [t.action for t in self._transition_history]

    def get_invalid_transitions(self) -> list[Transition]:
        """Get transitions whose action was illegal for their state.

        Thread-safe: Returns a copy of invalid transitions.
        """
        with self._lock:
            return list(self._invalid_transitions)

    def get_rejected(self) -> list[RejectedAction]:
        """Get refused operations.

        Thread-safe: Returns a copy.
        """
        with self._lock:
            return list(self._rejected)

    def reset(self) -> None:
        """Reset monitor state.

        Thread-safe: Protected by RLock.
        """
        with self._lock:
            self._current_state = None
            self._transition_history = []
            self._invalid_transitions = []
            self._rejected = []


__all__ = [
    "Transition",
    "RejectedAction",
    "StateTransitionMonitor",
]
