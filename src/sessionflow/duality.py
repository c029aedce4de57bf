"""Duality of local protocols.

In a two-party protocol each role's local protocol is the dual of the
other's: every send on one side is a receive on the other, and every
selection is an offer.

Duality Rules:
- dual(!q(M).L) = ?q(M).dual(L)
- dual(?p(M).L) = !p(M).dual(L)
- dual(⊕{q}{lᵢ: Lᵢ}) = &q{lᵢ: dual(Lᵢ)}
- dual(&p{lᵢ: Lᵢ}) = ⊕{p}{lᵢ: dual(Lᵢ)}
- dual(μX.L) = μX.dual(L)
- dual(X) = X
- dual(end) = end

For more than two roles duality no longer applies and compatibility is
checked pairwise instead (see ``check_multiparty_compatibility``).
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass, field

from sessionflow.local_types import (
    LocalEnd,
    LocalProtocol,
    LocalRec,
    LocalVar,
    Offer,
    Receive,
    Select,
    Send,
    iter_nodes,
)
from sessionflow.types import ProjectionError, RoleIdentifier, as_role

logger = logging.getLogger(__name__)


def dual(local: LocalProtocol, owner: RoleIdentifier | str | None = None) -> LocalProtocol:
    """Compute the dual of a two-party local protocol.

    Args:
        local: Local protocol of one role
        owner: Role that owns ``local``. When given, every peer of the
            result is rewritten to ``owner`` so that the result is the
            other role's local protocol. When omitted peers are kept.

    Returns:
        The dual local protocol

    Raises:
        ProjectionError: If ``local`` talks to more than one peer
    """
    peers = local.participants()
    if len(peers) > 1:
        names = ", ".join(sorted(p.name for p in peers))
        raise ProjectionError(
            message=f"Duality is only defined for two-party protocols (peers: {names})"
        )
    return _dual(local, None if owner is None else as_role(owner))


def _dual(node: LocalProtocol, owner: RoleIdentifier | None) -> LocalProtocol:
    if isinstance(node, Send):
        return Receive(
            sender=owner or node.receiver,
            schema=node.schema,
            continuation=_dual(node.continuation, owner),
        )
    if isinstance(node, Receive):
        return Send(
            receiver=owner or node.sender,
            schema=node.schema,
            continuation=_dual(node.continuation, owner),
        )
    if isinstance(node, Select):
        if len(node.receivers) != 1:
            raise ProjectionError(
                message=f"Selection must inform exactly one peer to have a dual, "
                f"got {len(node.receivers)}"
            )
        return Offer(
            sender=owner or node.receivers[0],
            branches=tuple((label, _dual(body, owner)) for label, body in node.branches),
        )
    if isinstance(node, Offer):
        return Select(
            receivers=(owner or node.sender,),
            branches=tuple((label, _dual(body, owner)) for label, body in node.branches),
        )
    if isinstance(node, LocalRec):
        return LocalRec(label=node.label, body=_dual(node.body, owner))
    if isinstance(node, (LocalVar, LocalEnd)):
        return node
    raise ProjectionError(message=f"Unknown local node: {type(node).__name__}")


def verify_dual(p: LocalProtocol, q: LocalProtocol) -> bool:
    """Check that two local protocols are dual to each other.

    The owner of ``p`` is taken to be the single peer named in ``q``.

    Args:
        p: Local protocol of one role
        q: Local protocol of the other role

    Returns:
        True if ``dual(p, owner) == q``
    """
    peers = q.participants()
    if len(peers) > 1:
        return False
    owner = next(iter(peers)) if peers else None
    try:
        return dual(p, owner) == q
    except ProjectionError as e:
        logger.debug(f"Duality check failed: {e}")
        return False


@dataclass
class CompatibilityResult:
    """Result of a multiparty compatibility check.

    Attributes:
        is_compatible: Whether every pair of roles agrees
        errors: Description of each disagreement
    """

    is_compatible: bool
    errors: list[str] = field(default_factory=list)


def check_multiparty_compatibility(
    locals_: Mapping[RoleIdentifier | str, LocalProtocol],
) -> CompatibilityResult:
    """Check that a set of local protocols agree with each other.

    For every ordered pair of roles (A, R):
    - every schema A may send to R is one R may receive from A, and back
    - every label A may select towards R is one R offers from A, and back

    Args:
        locals_: Local protocol of each role

    Returns:
        CompatibilityResult listing every disagreement
    """
    views = {as_role(r): local for r, local in locals_.items()}

    sends: dict[tuple[RoleIdentifier, RoleIdentifier], set[str]] = defaultdict(set)
    receives: dict[tuple[RoleIdentifier, RoleIdentifier], set[str]] = defaultdict(set)
    selects: dict[tuple[RoleIdentifier, RoleIdentifier], set[str]] = defaultdict(set)
    offers: dict[tuple[RoleIdentifier, RoleIdentifier], set[str]] = defaultdict(set)

    for role, local in views.items():
        for node in iter_nodes(local):
            if isinstance(node, Send):
                sends[(role, node.receiver)].add(node.schema)
            elif isinstance(node, Receive):
                receives[(node.sender, role)].add(node.schema)
            elif isinstance(node, Select):
                for peer in node.receivers:
                    selects[(role, peer)].update(node.labels())
            elif isinstance(node, Offer):
                offers[(node.sender, role)].update(node.labels())

    errors: list[str] = []
    for a, b in sorted(set(sends) | set(receives) | set(selects) | set(offers)):
        for r in (a, b):
            if r not in views:
                errors.append(f"Role '{r.name}' has no local protocol")
        sent, received = sends.get((a, b), set()), receives.get((a, b), set())
        if sent - received:
            errors.append(
                f"'{a.name}' may send {sorted(sent - received)} to '{b.name}', "
                f"which never receives them"
            )
        if received - sent:
            errors.append(
                f"'{b.name}' expects {sorted(received - sent)} from '{a.name}', "
                f"which never sends them"
            )
        chosen, offered = selects.get((a, b), set()), offers.get((a, b), set())
        if chosen != offered:
            errors.append(
                f"'{a.name}' selects {sorted(chosen)} towards '{b.name}', "
                f"which offers {sorted(offered)}"
            )

    # Missing roles are reported once per pair they appear in
    errors = list(dict.fromkeys(errors))
    return CompatibilityResult(is_compatible=not errors, errors=errors)


__all__ = [
    "dual",
    "verify_dual",
    "CompatibilityResult",
    "check_multiparty_compatibility",
]
