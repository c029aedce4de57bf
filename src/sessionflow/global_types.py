"""Global protocols: the bird's-eye view of a conversation.

Global interactions describe every message exchange between all roles.

Syntax:
- p → q : M.G        (Message: p sends a payload of schema M to q, then G)
- p : {lᵢ: Gᵢ}       (Choice: p decides which branch lᵢ everyone follows)
- μX.G               (Rec: recursion point X with body G)
- X                  (Var: jump back to the enclosing μX)
- end                (End: successful termination)
- G₁ ; G₂            (Seq: run G₁, then G₂ wherever G₁ ends)
- G₁ | G₂            (Par: two protocols over disjoint roles)

Construction never fails. Malformed trees (self messages, empty choices,
dangling variables) can be built freely and are reported by the
validator, so partially written protocols can be inspected.

References:
- Honda, Yoshida, Carbone (2008) - Multiparty Session Types
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from typing import TYPE_CHECKING, Union

from sessionflow.types import (
    Label,
    Participant,
    ProjectionError,
    ProtocolNode,
    RecursionLabel,
    RoleIdentifier,
    TypeKind,
    as_role,
)

if TYPE_CHECKING:
    from sessionflow.local_types import LocalProtocol
    from sessionflow.schemas import SchemaRegistry
    from sessionflow.validator import ValidationResult


class GlobalInteraction(ProtocolNode):
    """Base class of global protocol nodes."""


@dataclass(frozen=True)
class End(GlobalInteraction):
    """End: successful termination of the protocol."""

    @property
    def kind(self) -> TypeKind:
        return TypeKind.END

    def participants(self) -> frozenset[RoleIdentifier]:
        return frozenset()

    def is_terminated(self) -> bool:
        return True

    def __repr__(self) -> str:
        return "end"


@dataclass(frozen=True)
class Message(GlobalInteraction):
    """Message: p → q : M.G

    Attributes:
        sender: Sending role p
        receiver: Receiving role q
        schema: Payload schema identifier M
        continuation: Continuation G
    """

    sender: RoleIdentifier
    receiver: RoleIdentifier
    schema: str = "any"
    continuation: GlobalInteraction = field(default_factory=End)

    def __post_init__(self) -> None:
        object.__setattr__(self, "sender", as_role(self.sender))
        object.__setattr__(self, "receiver", as_role(self.receiver))

    @property
    def kind(self) -> TypeKind:
        return TypeKind.MESSAGE

    def participants(self) -> frozenset[RoleIdentifier]:
        return frozenset({self.sender, self.receiver}) | self.continuation.participants()

    def __repr__(self) -> str:
        return f"{self.sender.name} → {self.receiver.name} : {self.schema}.{self.continuation!r}"


Branches = tuple[tuple[Label, GlobalInteraction], ...]


@dataclass(frozen=True)
class Choice(GlobalInteraction):
    """Choice: p : {lᵢ: Gᵢ}

    The decider picks one labelled branch; all roles continue with it.

    Attributes:
        decider: Role making the choice p
        branches: Ordered (label, continuation) pairs
    """

    decider: RoleIdentifier
    branches: Branches = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "decider", as_role(self.decider))
        object.__setattr__(self, "branches", _normalize_branches(self.branches))

    @property
    def kind(self) -> TypeKind:
        return TypeKind.CHOICE

    def participants(self) -> frozenset[RoleIdentifier]:
        result = frozenset({self.decider})
        for _label, branch in self.branches:
            result |= branch.participants()
        return result

    def labels(self) -> list[Label]:
        return [label for label, _ in self.branches]

    def branch(self, label: str) -> GlobalInteraction:
        for name, body in self.branches:
            if name == label:
                return body
        raise KeyError(label)

    def __repr__(self) -> str:
        branch_str = ", ".join(f"{label}: {body!r}" for label, body in self.branches)
        return f"{self.decider.name} : {{{branch_str}}}"


@dataclass(frozen=True)
class Rec(GlobalInteraction):
    """Recursion: μX.G

    Attributes:
        label: Recursion label X
        body: Body G, in which Var(X) jumps back here
    """

    label: RecursionLabel
    body: GlobalInteraction

    def __post_init__(self) -> None:
        object.__setattr__(self, "label", RecursionLabel(self.label))

    @property
    def kind(self) -> TypeKind:
        return TypeKind.RECURSION

    def participants(self) -> frozenset[RoleIdentifier]:
        return self.body.participants()

    def __repr__(self) -> str:
        return f"μ{self.label}.{self.body!r}"


@dataclass(frozen=True)
class Var(GlobalInteraction):
    """Recursion variable: X

    Attributes:
        label: Label of the enclosing Rec to re-enter
    """

    label: RecursionLabel

    def __post_init__(self) -> None:
        object.__setattr__(self, "label", RecursionLabel(self.label))

    @property
    def kind(self) -> TypeKind:
        return TypeKind.VARIABLE

    def participants(self) -> frozenset[RoleIdentifier]:
        return frozenset()

    def __repr__(self) -> str:
        return str(self.label)


@dataclass(frozen=True)
class Seq(GlobalInteraction):
    """Sequential composition: G₁ ; G₂

    Every ``end`` reached in ``first`` continues with ``second``.
    """

    first: GlobalInteraction
    second: GlobalInteraction

    @property
    def kind(self) -> TypeKind:
        return TypeKind.SEQUENCE

    def participants(self) -> frozenset[RoleIdentifier]:
        return self.first.participants() | self.second.participants()

    def __repr__(self) -> str:
        return f"({self.first!r} ; {self.second!r})"


@dataclass(frozen=True)
class Par(GlobalInteraction):
    """Parallel composition: G₁ | G₂

    The two sides must involve disjoint roles; each role follows the side
    that mentions it.
    """

    left: GlobalInteraction
    right: GlobalInteraction

    @property
    def kind(self) -> TypeKind:
        return TypeKind.PARALLEL

    def participants(self) -> frozenset[RoleIdentifier]:
        return self.left.participants() | self.right.participants()

    def __repr__(self) -> str:
        return f"({self.left!r} | {self.right!r})"


BranchInput = Union[Mapping[str, GlobalInteraction], Iterable[tuple[str, GlobalInteraction]]]


def _normalize_branches(branches: BranchInput) -> Branches:
    items = branches.items() if isinstance(branches, Mapping) else branches
    return tuple((Label(label), body) for label, body in items)


# =============================================================================
# Tree utilities
# =============================================================================


def splice(first: GlobalInteraction, second: GlobalInteraction) -> GlobalInteraction:
    """Replace every ``end`` in ``first`` with ``second``.

    This is the meaning of ``Seq(first, second)``; nested Seq nodes are
    flattened on the way. A parallel composition followed by more
    interactions stays a Seq: each role runs its own side, then the rest.
    """
    if isinstance(first, End):
        return second
    if isinstance(first, Message):
        return Message(
            first.sender, first.receiver, first.schema, splice(first.continuation, second)
        )
    if isinstance(first, Choice):
        return Choice(
            first.decider,
            tuple((label, splice(body, second)) for label, body in first.branches),
        )
    if isinstance(first, Rec):
        return Rec(first.label, splice(first.body, second))
    if isinstance(first, Seq):
        if isinstance(first.first, Par):
            return Seq(first.first, splice(first.second, second))
        return splice(splice(first.first, first.second), second)
    if isinstance(first, Par) and not isinstance(second, End):
        # Each role continues with second after its own side
        return Seq(first, second)
    # Var never reaches end
    return first


def rename_roles(
    node: GlobalInteraction,
    mapping: Mapping[str, RoleIdentifier],
) -> GlobalInteraction:
    """Rewrite role names (used to resolve participant aliases)."""

    def role(r: RoleIdentifier) -> RoleIdentifier:
        return mapping.get(r, r)

    if isinstance(node, Message):
        return Message(
            role(node.sender),
            role(node.receiver),
            node.schema,
            rename_roles(node.continuation, mapping),
        )
    if isinstance(node, Choice):
        return Choice(
            role(node.decider),
            tuple((label, rename_roles(body, mapping)) for label, body in node.branches),
        )
    if isinstance(node, Rec):
        return Rec(node.label, rename_roles(node.body, mapping))
    if isinstance(node, Seq):
        return Seq(rename_roles(node.first, mapping), rename_roles(node.second, mapping))
    if isinstance(node, Par):
        return Par(rename_roles(node.left, mapping), rename_roles(node.right, mapping))
    return node


def sub_interactions(node: GlobalInteraction) -> list[GlobalInteraction]:
    """Immediate sub-trees of a global node."""
    if isinstance(node, Message):
        return [node.continuation]
    if isinstance(node, Choice):
        return [body for _label, body in node.branches]
    if isinstance(node, Rec):
        return [node.body]
    if isinstance(node, Seq):
        return [node.first, node.second]
    if isinstance(node, Par):
        return [node.left, node.right]
    return []


def iter_interactions(node: GlobalInteraction) -> Iterator[GlobalInteraction]:
    """Depth-first walk over every node of a global tree."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(sub_interactions(current)))


def free_variables(node: GlobalInteraction) -> set[RecursionLabel]:
    """Recursion labels used but not bound within ``node``."""
    if isinstance(node, Var):
        return {node.label}
    if isinstance(node, Rec):
        return free_variables(node.body) - {node.label}
    result: set[RecursionLabel] = set()
    for child in sub_interactions(node):
        result |= free_variables(child)
    return result


# =============================================================================
# Protocol definition
# =============================================================================


@dataclass(frozen=True)
class GlobalProtocol:
    """A named global protocol with its declared participants.

    Participants are kept as a sequence so duplicate declarations remain
    observable to the validator.

    Attributes:
        name: Protocol name
        participants: Declared participants, in declaration order
        body: Global interaction tree
        schemas: Schema registry used to check payload schemas
    """

    name: str
    participants: tuple[Participant, ...]
    body: GlobalInteraction
    schemas: SchemaRegistry | None = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        declared = tuple(
            p if isinstance(p, Participant) else Participant(str(p)) for p in self.participants
        )
        object.__setattr__(self, "participants", declared)

    def role_ids(self) -> tuple[RoleIdentifier, ...]:
        """Declared roles, deduplicated, in declaration order."""
        seen: dict[RoleIdentifier, None] = {}
        for p in self.participants:
            seen.setdefault(p.role, None)
        return tuple(seen)

    @cached_property
    def aliases(self) -> dict[str, RoleIdentifier]:
        return {p.alias: p.role for p in self.participants if p.alias is not None}

    def resolve_role(self, role: str | Participant | Enum) -> RoleIdentifier:
        """Map a role name, alias or role enum member to its identifier."""
        rid = as_role(role)
        return self.aliases.get(rid, rid)

    @cached_property
    def resolved_body(self) -> GlobalInteraction:
        """Body with aliases replaced by declared role names."""
        if not self.aliases:
            return self.body
        return rename_roles(self.body, self.aliases)

    @cached_property
    def roles(self) -> type[Enum]:
        """Enumeration of the declared roles (the sealed role set)."""
        members = {rid.name: rid.name for rid in self.role_ids()}
        return Enum(f"{self.name}Role", members, type=str)  # type: ignore[return-value]

    def validate(self, schemas: SchemaRegistry | None = None) -> ValidationResult:
        """Check well-formedness.

        Args:
            schemas: Registry overriding the protocol's own

        Returns:
            ValidationResult with all diagnostics
        """
        from sessionflow.validator import ProtocolValidator

        return ProtocolValidator(schemas or self.schemas).validate(self)

    def project(self, role: str | Participant | Enum) -> LocalProtocol:
        """Project onto one declared role."""
        from sessionflow.local_types import Projector

        rid = self.resolve_role(role)
        local = Projector(roles=self.role_ids()).project(self.resolved_body, rid)
        if local is None:
            raise ProjectionError(message=f"Protocol '{self.name}' has no projection", role=rid)
        return local

    def project_all(self) -> dict[RoleIdentifier, LocalProtocol]:
        """Project onto every declared role."""
        from sessionflow.local_types import Projector

        return Projector(roles=self.role_ids()).project_all(self.resolved_body, self.role_ids())

    def __repr__(self) -> str:
        names = ", ".join(str(p) for p in self.participants)
        return f"protocol {self.name}({names}) = {self.body!r}"


# Convenience constructors


def msg(
    sender: str | RoleIdentifier,
    receiver: str | RoleIdentifier,
    schema: str = "any",
    continuation: GlobalInteraction | None = None,
) -> Message:
    """Convenience constructor for Message.

    Args:
        sender: Sending role
        receiver: Receiving role
        schema: Payload schema identifier
        continuation: Continuation (default: End)

    Returns:
        Message instance

    Example:
        # Client → Server : Ping. Server → Client : Pong. end
        msg("Client", "Server", "Ping", msg("Server", "Client", "Pong"))
    """
    return Message(
        sender=as_role(sender),
        receiver=as_role(receiver),
        schema=schema,
        continuation=continuation if continuation is not None else End(),
    )


def choice(decider: str | RoleIdentifier, branches: BranchInput) -> Choice:
    """Convenience constructor for Choice.

    Args:
        decider: Role making the choice
        branches: Mapping (or sequence of pairs) from labels to continuations

    Example:
        choice("Client", {
            "buy": msg("Client", "Server", "Order", msg("Server", "Client", "Receipt")),
            "quit": msg("Client", "Server", "Bye"),
        })
    """
    return Choice(decider=as_role(decider), branches=_normalize_branches(branches))


def rec(label: str, body: GlobalInteraction) -> Rec:
    """Convenience constructor for Rec.

    Example:
        # μLoop. Client → Server : Request. Server → Client : Response. Loop
        rec("Loop", msg("Client", "Server", "Request",
                        msg("Server", "Client", "Response", var("Loop"))))
    """
    return Rec(label=RecursionLabel(label), body=body)


def var(label: str) -> Var:
    """Convenience constructor for Var."""
    return Var(label=RecursionLabel(label))


def end() -> End:
    """Convenience constructor for End."""
    return End()


def seq(*protocols: GlobalInteraction) -> GlobalInteraction:
    """Sequentially compose protocols, left to right.

    Returns ``end`` for no arguments and the protocol itself for one.
    """
    if not protocols:
        return End()
    result = protocols[0]
    for nxt in protocols[1:]:
        result = Seq(first=result, second=nxt)
    return result


def par(left: GlobalInteraction, right: GlobalInteraction) -> Par:
    """Convenience constructor for Par."""
    return Par(left=left, right=right)


def protocol(
    name: str,
    participants: Sequence[str | Participant],
    body: GlobalInteraction,
    schemas: SchemaRegistry | None = None,
) -> GlobalProtocol:
    """Convenience constructor for GlobalProtocol.

    Example:
        ping_pong = protocol(
            "PingPong",
            ["Client", "Server"],
            msg("Client", "Server", "str", msg("Server", "Client", "str")),
        )
    """
    return GlobalProtocol(
        name=name,
        participants=tuple(participants),  # type: ignore[arg-type]
        body=body,
        schemas=schemas,
    )


__all__ = [
    # Nodes
    "GlobalInteraction",
    "End",
    "Message",
    "Choice",
    "Rec",
    "Var",
    "Seq",
    "Par",
    "GlobalProtocol",
    # Utilities
    "splice",
    "rename_roles",
    "sub_interactions",
    "iter_interactions",
    "free_variables",
    # Constructors
    "msg",
    "choice",
    "rec",
    "var",
    "end",
    "seq",
    "par",
    "protocol",
]
