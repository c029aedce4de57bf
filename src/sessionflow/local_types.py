"""Local protocols and the projection algorithm.

Local protocols describe the conversation from a single role's
perspective. They are derived from global protocols via projection.

Local Syntax:
- !q(M).L           (Send: send a payload of schema M to q, then L)
- ?p(M).L           (Receive: receive a payload of schema M from p, then L)
- ⊕{q…}{lᵢ: Lᵢ}     (Select: pick lᵢ and tell the listed roles)
- &p{lᵢ: Lᵢ}        (Offer: wait for p's choice)
- μX.L              (Recursion)
- X                 (Variable)
- end               (End)

Projection Rules:
- (p → q : M.G) ↓ p = !q(M).(G ↓ p)      (sender projects to send)
- (p → q : M.G) ↓ q = ?p(M).(G ↓ q)      (receiver projects to receive)
- (p → q : M.G) ↓ r = G ↓ r              (other roles skip)
- (p : {lᵢ: Gᵢ}) ↓ p = ⊕{informed}{lᵢ: Gᵢ ↓ p}
- (p : {lᵢ: Gᵢ}) ↓ r = &p{lᵢ: Gᵢ ↓ r}    (r first receiver, or branches differ)
- (p : {lᵢ: Gᵢ}) ↓ r = G₁ ↓ r            (all branches equal for r: merged)
- (μX.G) ↓ r = end                        (r absent from a closed loop)
             = μX.(G ↓ r)                 (r acts inside the loop)
             = G ↓ r                      (X not used after projection)
             = end                        (r takes no action before looping)

The first and the last two recursion rules prune loops a role cannot observe,
so a role that never acts inside a loop is never trapped in it.

References:
- Honda, Yoshida, Carbone (2008) - Multiparty Session Types
- Scalas, Yoshida (2019) - Less is More: Multiparty Session Types Revisited
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from sessionflow.global_types import (
    Choice,
    End,
    GlobalInteraction,
    Message,
    Par,
    Rec,
    Seq,
    Var,
    free_variables,
    splice,
)
from sessionflow.types import (
    Label,
    ProjectionError,
    ProtocolNode,
    RecursionLabel,
    RoleIdentifier,
    TypeKind,
    as_role,
)

# =============================================================================
# Local Protocols
# =============================================================================


class LocalProtocol(ProtocolNode):
    """Base class of local protocol nodes."""


LocalBranches = tuple[tuple[Label, LocalProtocol], ...]


class _Branching:
    """Label lookup shared by Select and Offer."""

    branches: LocalBranches

    def labels(self) -> list[Label]:
        return [label for label, _ in self.branches]

    def branch(self, label: str) -> LocalProtocol:
        for name, body in self.branches:
            if name == label:
                return body
        raise KeyError(label)


@dataclass(frozen=True)
class LocalEnd(LocalProtocol):
    """Local end: the role's part of the protocol is over."""

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
class Send(LocalProtocol):
    """Send: !q(M).L

    Attributes:
        receiver: Target role q
        schema: Payload schema M
        continuation: Continuation L
    """

    receiver: RoleIdentifier
    schema: str = "any"
    continuation: LocalProtocol = field(default_factory=LocalEnd)

    def __post_init__(self) -> None:
        object.__setattr__(self, "receiver", as_role(self.receiver))

    @property
    def kind(self) -> TypeKind:
        return TypeKind.SEND

    def participants(self) -> frozenset[RoleIdentifier]:
        return frozenset({self.receiver}) | self.continuation.participants()

    def __repr__(self) -> str:
        return f"!{self.receiver.name}({self.schema}).{self.continuation!r}"


@dataclass(frozen=True)
class Receive(LocalProtocol):
    """Receive: ?p(M).L

    Attributes:
        sender: Source role p
        schema: Payload schema M
        continuation: Continuation L
    """

    sender: RoleIdentifier
    schema: str = "any"
    continuation: LocalProtocol = field(default_factory=LocalEnd)

    def __post_init__(self) -> None:
        object.__setattr__(self, "sender", as_role(self.sender))

    @property
    def kind(self) -> TypeKind:
        return TypeKind.RECEIVE

    def participants(self) -> frozenset[RoleIdentifier]:
        return frozenset({self.sender}) | self.continuation.participants()

    def __repr__(self) -> str:
        return f"?{self.sender.name}({self.schema}).{self.continuation!r}"


@dataclass(frozen=True)
class Select(_Branching, LocalProtocol):
    """Select: ⊕{q…}{lᵢ: Lᵢ}

    Pick one branch and signal the label to every listed receiver.

    Attributes:
        receivers: Roles that must learn the chosen label, in signal order
        branches: Ordered (label, continuation) pairs
    """

    receivers: tuple[RoleIdentifier, ...] = ()
    branches: LocalBranches = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "receivers", tuple(as_role(r) for r in self.receivers))
        object.__setattr__(self, "branches", tuple((Label(k), v) for k, v in self.branches))

    @property
    def kind(self) -> TypeKind:
        return TypeKind.SELECT

    def participants(self) -> frozenset[RoleIdentifier]:
        result = frozenset(self.receivers)
        for _label, body in self.branches:
            result |= body.participants()
        return result

    def __repr__(self) -> str:
        to = ",".join(r.name for r in self.receivers)
        branch_str = ", ".join(f"{label}: {body!r}" for label, body in self.branches)
        return f"⊕{{{to}}}{{{branch_str}}}"


@dataclass(frozen=True)
class Offer(_Branching, LocalProtocol):
    """Offer: &p{lᵢ: Lᵢ}

    Wait for the decider's label, then follow that branch.

    Attributes:
        sender: Deciding role p
        branches: Ordered (label, continuation) pairs
    """

    sender: RoleIdentifier
    branches: LocalBranches = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "sender", as_role(self.sender))
        object.__setattr__(self, "branches", tuple((Label(k), v) for k, v in self.branches))

    @property
    def kind(self) -> TypeKind:
        return TypeKind.OFFER

    def participants(self) -> frozenset[RoleIdentifier]:
        result = frozenset({self.sender})
        for _label, body in self.branches:
            result |= body.participants()
        return result

    def __repr__(self) -> str:
        branch_str = ", ".join(f"{label}: {body!r}" for label, body in self.branches)
        return f"&{self.sender.name}{{{branch_str}}}"


@dataclass(frozen=True)
class LocalRec(LocalProtocol):
    """Local recursion: μX.L

    Attributes:
        label: Recursion label
        body: Body of the recursion
    """

    label: RecursionLabel
    body: LocalProtocol

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
class LocalVar(LocalProtocol):
    """Local recursion variable: X"""

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


# =============================================================================
# Structural helpers
# =============================================================================


def children(node: LocalProtocol) -> list[LocalProtocol]:
    """Immediate sub-protocols of a local node."""
    if isinstance(node, (Send, Receive)):
        return [node.continuation]
    if isinstance(node, (Select, Offer)):
        return [body for _label, body in node.branches]
    if isinstance(node, LocalRec):
        return [node.body]
    return []


def free_vars(node: LocalProtocol) -> set[RecursionLabel]:
    """Recursion labels used but not bound within ``node``."""
    if isinstance(node, LocalVar):
        return {node.label}
    if isinstance(node, LocalRec):
        return free_vars(node.body) - {node.label}
    result: set[RecursionLabel] = set()
    for child in children(node):
        result |= free_vars(child)
    return result


def is_unguarded(node: LocalProtocol, label: str) -> bool:
    """Check whether ``node`` loops back to ``label`` before any action."""
    if isinstance(node, LocalVar):
        return node.label == label
    if isinstance(node, LocalRec):
        return is_unguarded(node.body, label)
    return False


def local_splice(first: LocalProtocol, second: LocalProtocol) -> LocalProtocol:
    """Replace every ``end`` in ``first`` with ``second``."""
    if isinstance(first, LocalEnd):
        return second
    if isinstance(first, Send):
        return Send(first.receiver, first.schema, local_splice(first.continuation, second))
    if isinstance(first, Receive):
        return Receive(first.sender, first.schema, local_splice(first.continuation, second))
    if isinstance(first, Select):
        return Select(
            first.receivers,
            tuple((label, local_splice(body, second)) for label, body in first.branches),
        )
    if isinstance(first, Offer):
        return Offer(
            first.sender,
            tuple((label, local_splice(body, second)) for label, body in first.branches),
        )
    if isinstance(first, LocalRec):
        return LocalRec(first.label, local_splice(first.body, second))
    return first


def iter_nodes(node: LocalProtocol) -> Iterable[LocalProtocol]:
    """Depth-first walk over every node of a local protocol."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(children(current)))


# =============================================================================
# Projection Algorithm
# =============================================================================


class Projector:
    """Projects global protocols to local protocols for each role.

    The projection algorithm derives the local view of a protocol from the
    global one. Choices are broadcast: the decider's Select lists every role
    whose behaviour depends on the chosen branch, and each of them gets a
    matching Offer.
    """

    def __init__(self, strict: bool = True, roles: Iterable[str] | None = None):
        """Initialize projector.

        Args:
            strict: If True, raise errors on projection failure.
                   If False, return None on failure.
            roles: Every role of the protocol. Defaults to the roles
                mentioned in the projected tree.
        """
        self.strict = strict
        self.roles = None if roles is None else tuple(as_role(r) for r in roles)
        self._memo: dict[tuple[Any, ...], tuple[GlobalInteraction, LocalProtocol]] = {}
        self._all_roles: tuple[RoleIdentifier, ...] = ()
        # Roles left out of an enclosing loop; they never learn its choices
        self._silent: frozenset[RoleIdentifier] = frozenset()

    def project(
        self,
        global_type: GlobalInteraction,
        role: RoleIdentifier | str,
    ) -> LocalProtocol | None:
        """Project a global protocol onto a role.

        G ↓ r = local protocol for role r

        Args:
            global_type: Global protocol G
            role: Role to project onto r

        Returns:
            Local protocol (G ↓ r), or None if undefined and not strict

        Raises:
            ProjectionError: If projection fails and strict=True
        """
        rid = as_role(role)
        self._memo = {}
        mentioned = global_type.participants() | {rid}
        declared = self.roles or ()
        self._all_roles = declared + tuple(sorted(mentioned - set(declared)))
        self._silent = frozenset()
        try:
            return self._project(global_type, rid)
        except ProjectionError:
            if self.strict:
                raise
            return None
        finally:
            self._memo = {}

    def _project(self, node: GlobalInteraction, role: RoleIdentifier) -> LocalProtocol:
        """Internal projection implementation."""
        key = (id(node), role, self._all_roles, self._silent)
        cached = self._memo.get(key)
        if cached is not None and cached[0] is node:
            return cached[1]

        if isinstance(node, End):
            result: LocalProtocol = LocalEnd()

        elif isinstance(node, Var):
            result = LocalVar(label=node.label)

        elif isinstance(node, Message):
            result = self._project_message(node, role)

        elif isinstance(node, Choice):
            result = self._project_choice(node, role)

        elif isinstance(node, Rec):
            result = self._project_recursion(node, role)

        elif isinstance(node, Seq):
            if isinstance(node.first, Par):
                result = local_splice(
                    self._project(node.first, role), self._project(node.second, role)
                )
            else:
                result = self._project(splice(node.first, node.second), role)

        elif isinstance(node, Par):
            result = self._project_parallel(node, role)

        else:
            raise ProjectionError(
                message=f"Unknown global node: {type(node).__name__}",
                role=role,
                node=node,
            )

        self._memo[key] = (node, result)
        return result

    def _project_message(self, message: Message, role: RoleIdentifier) -> LocalProtocol:
        """Project a message.

        Rules:
        - (p → q : M.G) ↓ p = !q(M).(G ↓ p)  [sender]
        - (p → q : M.G) ↓ q = ?p(M).(G ↓ q)  [receiver]
        - (p → q : M.G) ↓ r = G ↓ r           [other]
        """
        if message.sender == message.receiver and role == message.sender:
            raise ProjectionError(
                message=f"Role {role.name} cannot send to itself",
                role=role,
                node=message,
            )

        continuation = self._project(message.continuation, role)

        if role == message.sender:
            return Send(receiver=message.receiver, schema=message.schema, continuation=continuation)

        if role == message.receiver:
            return Receive(sender=message.sender, schema=message.schema, continuation=continuation)

        # Bystander: the message is invisible
        return continuation

    def _project_choice(self, node: Choice, role: RoleIdentifier) -> LocalProtocol:
        """Project a choice.

        Rules:
        - (p : {lᵢ: Gᵢ}) ↓ p = ⊕{informed}{lᵢ: Gᵢ ↓ p}
        - (p : {lᵢ: Gᵢ}) ↓ r = &p{lᵢ: Gᵢ ↓ r}    [r informed]
        - (p : {lᵢ: Gᵢ}) ↓ r = merge(Gᵢ ↓ r)     [r bystander]
        """
        if not node.branches:
            raise ProjectionError(
                message=f"Cannot project empty choice at {node.decider.name}",
                role=role,
                node=node,
            )

        projected = tuple((label, self._project(body, role)) for label, body in node.branches)

        if role == node.decider:
            informed = tuple(r for r in self._all_roles if self._is_informed(node, r))
            return Select(receivers=informed, branches=projected)

        if self._is_informed(node, role):
            return Offer(sender=node.decider, branches=projected)

        # Bystander in every branch: all branches agree, elide the choice
        return projected[0][1]

    def _is_informed(self, node: Choice, role: RoleIdentifier) -> bool:
        """Whether a non-deciding role must learn the chosen label."""
        if role == node.decider or role in self._silent:
            return False
        firsts = [_first_message(body, node.decider) for _label, body in node.branches]
        if all(m is not None and role in (m.sender, m.receiver) for m in firsts):
            return True
        views = [self._project(body, role) for _label, body in node.branches]
        return any(v != views[0] for v in views[1:])

    def _project_recursion(self, node: Rec, role: RoleIdentifier) -> LocalProtocol:
        """Project a recursion.

        Rule: (μX.G) ↓ r = end         if r does not occur in a closed G
                         = μX.(G ↓ r)  if r acts before reaching X
                         = G ↓ r       if X no longer occurs
                         = end         if G ↓ r is just X
        """
        closed = free_variables(node.body) <= {node.label}
        inside = node.body.participants()
        if closed and role not in inside:
            # The role takes no part in the loop or in anything after it
            return LocalEnd()

        outer = self._silent
        if closed:
            self._silent = outer | {r for r in self._all_roles if r not in inside}
        try:
            body = self._project(node.body, role)
        finally:
            self._silent = outer

        if node.label not in free_vars(body):
            return body
        if is_unguarded(body, node.label):
            return LocalEnd()
        return LocalRec(label=node.label, body=body)

    def _project_parallel(self, node: Par, role: RoleIdentifier) -> LocalProtocol:
        """Project a parallel composition onto the side that mentions the role."""
        in_left = role in node.left.participants()
        in_right = role in node.right.participants()

        if in_left and in_right:
            raise ProjectionError(
                message=f"Role {role.name} appears in both parallel branches",
                role=role,
                node=node,
            )
        side = node.left if in_left else node.right if in_right else None
        if side is None:
            return LocalEnd()

        # Choices inside one side only inform roles of that side
        outer = self._all_roles
        side_roles = side.participants()
        self._all_roles = tuple(r for r in outer if r in side_roles)
        try:
            return self._project(side, role)
        finally:
            self._all_roles = outer

    def project_all(
        self,
        global_type: GlobalInteraction,
        roles: Iterable[str] | None = None,
    ) -> dict[RoleIdentifier, LocalProtocol]:
        """Project a global protocol onto all (or the given) roles.

        Args:
            global_type: Global protocol
            roles: Roles to project onto. If None, uses the projector's
                roles, or the roles mentioned in the tree.

        Returns:
            Dictionary mapping each role to its local protocol

        Raises:
            ProjectionError: If projection fails for any role
        """
        if roles is not None:
            targets = [as_role(r) for r in roles]
        elif self.roles is not None:
            targets = list(self.roles)
        else:
            targets = sorted(global_type.participants())
        results: dict[RoleIdentifier, LocalProtocol] = {}
        for r in targets:
            local = self.project(global_type, r)
            if local is None:
                raise ProjectionError(
                    message=f"Projection undefined for role {r.name}",
                    role=r,
                    node=global_type,
                )
            results[r] = local
        return results


def _first_message(node: GlobalInteraction, decider: RoleIdentifier) -> Message | None:
    """First message of a branch, looking through recursion and sequencing.

    Under a parallel block the side the decider takes part in goes first.
    """
    if isinstance(node, Message):
        return node
    if isinstance(node, Rec):
        return _first_message(node.body, decider)
    if isinstance(node, Par):
        sides = [node.left, node.right]
        if decider not in node.left.participants():
            sides.reverse()
        for side in sides:
            first = _first_message(side, decider)
            if first is not None:
                return first
        return None
    if isinstance(node, Seq):
        if isinstance(node.first, Par):
            # splice keeps a leading Par in place, so look inside it
            first = _first_message(node.first, decider)
            return first if first is not None else _first_message(node.second, decider)
        return _first_message(splice(node.first, node.second), decider)
    return None


# Convenience functions


def project(
    global_type: GlobalInteraction,
    role: RoleIdentifier | str,
    strict: bool = True,
) -> LocalProtocol | None:
    """Project a global protocol onto a role.

    Args:
        global_type: Global protocol
        role: Role to project onto
        strict: If True, raise on failure

    Returns:
        Local protocol, or None if undefined
    """
    projector = Projector(strict=strict)
    return projector.project(global_type, role)


def project_all(
    global_type: GlobalInteraction,
    roles: Iterable[str] | None = None,
) -> dict[RoleIdentifier, LocalProtocol]:
    """Project a global protocol onto all (or the given) roles.

    Args:
        global_type: Global protocol
        roles: Roles to project onto. If None, every role in the tree.

    Returns:
        Dictionary of local protocols per role
    """
    projector = Projector(strict=True)
    return projector.project_all(global_type, roles)


__all__ = [
    # Local protocols
    "LocalProtocol",
    "LocalEnd",
    "Send",
    "Receive",
    "Select",
    "Offer",
    "LocalRec",
    "LocalVar",
    # Helpers
    "children",
    "free_vars",
    "is_unguarded",
    "iter_nodes",
    "local_splice",
    # Projection
    "Projector",
    "project",
    "project_all",
]
