"""Core type definitions shared by global and local protocols.

This module provides the identifiers and the abstract node type used by
both the global protocol model and its per-role projections.

Key types:
- RoleIdentifier: interned participant name, used for routing
- Label / RecursionLabel: choice branch and loop names
- Participant: definition-time binding of a role (with optional alias)
- ProtocolNode: abstract base of every protocol tree node
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar


class RoleIdentifier(str):
    """Unique, interned identifier for a protocol participant.

    Constructing the same name twice yields the same object, so identity
    comparison is valid between identifiers created anywhere in the process.
    """

    __slots__ = ()

    _interned: ClassVar[dict[str, RoleIdentifier]] = {}
    _intern_lock: ClassVar[threading.Lock] = threading.Lock()

    def __new__(cls, name: str) -> RoleIdentifier:
        if isinstance(name, RoleIdentifier):
            return name
        key = str(name)
        with cls._intern_lock:
            existing = cls._interned.get(key)
            if existing is None:
                existing = super().__new__(cls, key)
                cls._interned[key] = existing
            return existing

    @property
    def name(self) -> str:
        return str.__str__(self)

    def __repr__(self) -> str:
        return f"Role({self.name})"


class Label(str):
    """Name of a choice branch."""

    pass


class RecursionLabel(str):
    """Name of a recursion point."""

    pass


class TypeKind(str, Enum):
    """Kinds of protocol nodes."""

    MESSAGE = "message"  # p → q : M.G
    CHOICE = "choice"  # p : {lᵢ: Gᵢ}
    RECURSION = "recursion"  # μX.G
    VARIABLE = "variable"  # X
    END = "end"
    SEQUENCE = "sequence"  # G₁ ; G₂
    PARALLEL = "parallel"  # G₁ | G₂
    SEND = "send"  # !q(M).L
    RECEIVE = "receive"  # ?p(M).L
    SELECT = "select"  # ⊕{lᵢ: Lᵢ}
    OFFER = "offer"  # &p{lᵢ: Lᵢ}


@dataclass(frozen=True)
class Participant:
    """Definition-time binding between a declared role and its identifier.

    Attributes:
        name: Declared role name
        alias: Optional second name usable in the protocol body
    """

    name: str
    alias: str | None = None

    @property
    def role(self) -> RoleIdentifier:
        return RoleIdentifier(self.name)

    def names(self) -> tuple[str, ...]:
        """All names this participant answers to."""
        if self.alias is None:
            return (self.name,)
        return (self.name, self.alias)

    def __str__(self) -> str:
        return self.name if self.alias is None else f"{self.name} as {self.alias}"


class ProtocolNode(ABC):
    """Abstract base for protocol tree nodes (both global and local).

    Nodes are immutable; structural equality and hashing come from the
    frozen dataclasses that implement them.
    """

    @property
    @abstractmethod
    def kind(self) -> TypeKind:
        """The kind of node."""
        ...

    @abstractmethod
    def participants(self) -> frozenset[RoleIdentifier]:
        """Roles referenced by this node and everything below it."""
        ...

    def is_terminated(self) -> bool:
        """Check if this node represents termination."""
        return False


@dataclass
class ProjectionError(Exception):
    """Error during projection of a global protocol.

    Attributes:
        message: Error message
        role: Role being projected
        node: Node where projection failed
    """

    message: str
    role: RoleIdentifier | None = None
    node: ProtocolNode | None = None

    def __str__(self) -> str:
        parts = [self.message]
        if self.role:
            parts.append(f"role={self.role.name}")
        return " ".join(parts)


def as_role(value: str | Participant) -> RoleIdentifier:
    """Coerce a name, participant or identifier to a RoleIdentifier."""
    if isinstance(value, Participant):
        return value.role
    if isinstance(value, Enum):
        return RoleIdentifier(value.value)
    return RoleIdentifier(value)


__all__ = [
    "RoleIdentifier",
    "Label",
    "RecursionLabel",
    "TypeKind",
    "Participant",
    "ProtocolNode",
    "ProjectionError",
    "as_role",
]
