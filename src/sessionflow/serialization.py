"""Serialization for global protocols, local protocols and diagnostics.

Round-trip guarantee: ``from_dict(to_dict(x)) == x`` for every global and
local protocol tree and for ``GlobalProtocol`` definitions (the schema
registry is not serialized).

The dict form doubles as a data-driven way of describing protocols, e.g.
loaded from JSON or YAML:

    {
        "name": "PingPong",
        "participants": ["Client", "Server"],
        "body": {"type": "Message", "sender": "Client", "receiver": "Server",
                 "schema": "str", "continuation": {"type": "End"}}
    }
"""

from __future__ import annotations

import json
from typing import Any

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
)
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
from sessionflow.schemas import SchemaRegistry
from sessionflow.types import Participant
from sessionflow.validator import Diagnostic, ValidationResult

# ── Global protocol serialization ─────────────────────────────────────


def global_to_dict(node: GlobalInteraction) -> dict[str, Any]:
    """Serialize a global interaction tree to a plain dict.

    Args:
        node: Any global interaction.

    Returns:
        A JSON-compatible dict with a ``"type"`` discriminator.

    Raises:
        TypeError: If the node type is unknown.
    """
    if isinstance(node, End):
        return {"type": "End"}

    if isinstance(node, Var):
        return {"type": "Var", "label": str(node.label)}

    if isinstance(node, Message):
        return {
            "type": "Message",
            "sender": node.sender.name,
            "receiver": node.receiver.name,
            "schema": node.schema,
            "continuation": global_to_dict(node.continuation),
        }

    if isinstance(node, Choice):
        return {
            "type": "Choice",
            "decider": node.decider.name,
            "branches": [
                {"label": str(label), "body": global_to_dict(body)}
                for label, body in node.branches
            ],
        }

    if isinstance(node, Rec):
        return {"type": "Rec", "label": str(node.label), "body": global_to_dict(node.body)}

    if isinstance(node, Seq):
        return {
            "type": "Seq",
            "first": global_to_dict(node.first),
            "second": global_to_dict(node.second),
        }

    if isinstance(node, Par):
        return {
            "type": "Par",
            "left": global_to_dict(node.left),
            "right": global_to_dict(node.right),
        }

    raise TypeError(f"Cannot serialize global node: {type(node).__name__}")


def global_from_dict(data: dict[str, Any]) -> GlobalInteraction:
    """Reconstruct a global interaction tree from a dict.

    ``continuation`` may be omitted on messages and defaults to ``End``.

    Raises:
        ValueError: If the dict contains an unknown type.
    """
    type_tag = data["type"]

    if type_tag == "End":
        return End()

    if type_tag == "Var":
        return Var(label=data["label"])

    if type_tag == "Message":
        continuation = data.get("continuation")
        return Message(
            sender=data["sender"],
            receiver=data["receiver"],
            schema=data.get("schema", "any"),
            continuation=global_from_dict(continuation) if continuation else End(),
        )

    if type_tag == "Choice":
        return Choice(
            decider=data["decider"],
            branches=tuple(
                (b["label"], global_from_dict(b["body"])) for b in data["branches"]
            ),
        )

    if type_tag == "Rec":
        return Rec(label=data["label"], body=global_from_dict(data["body"]))

    if type_tag == "Seq":
        return Seq(first=global_from_dict(data["first"]), second=global_from_dict(data["second"]))

    if type_tag == "Par":
        return Par(left=global_from_dict(data["left"]), right=global_from_dict(data["right"]))

    raise ValueError(f"Unknown global node type: {type_tag!r}")


def protocol_to_dict(protocol: GlobalProtocol) -> dict[str, Any]:
    """Serialize a protocol definition (without its schema registry)."""
    return {
        "name": protocol.name,
        "participants": [
            p.name if p.alias is None else {"name": p.name, "alias": p.alias}
            for p in protocol.participants
        ],
        "body": global_to_dict(protocol.body),
    }


def protocol_from_dict(
    data: dict[str, Any],
    schemas: SchemaRegistry | None = None,
) -> GlobalProtocol:
    """Reconstruct a protocol definition.

    Participants are names or ``{"name": ..., "alias": ...}`` objects.

    Args:
        data: Dict previously produced by :func:`protocol_to_dict`.
        schemas: Registry to attach to the protocol.
    """
    participants = tuple(
        Participant(p) if isinstance(p, str) else Participant(p["name"], p.get("alias"))
        for p in data["participants"]
    )
    return GlobalProtocol(
        name=data["name"],
        participants=participants,
        body=global_from_dict(data["body"]),
        schemas=schemas,
    )


def protocol_to_json(protocol: GlobalProtocol, **kwargs: Any) -> str:
    return json.dumps(protocol_to_dict(protocol), **kwargs)


def protocol_from_json(text: str, schemas: SchemaRegistry | None = None) -> GlobalProtocol:
    return protocol_from_dict(json.loads(text), schemas=schemas)


# ── Local protocol serialization ──────────────────────────────────────


def local_to_dict(node: LocalProtocol) -> dict[str, Any]:
    """Serialize a local protocol tree to a plain dict.

    Raises:
        TypeError: If the node type is unknown.
    """
    if isinstance(node, LocalEnd):
        return {"type": "End"}

    if isinstance(node, LocalVar):
        return {"type": "Var", "label": str(node.label)}

    if isinstance(node, Send):
        return {
            "type": "Send",
            "receiver": node.receiver.name,
            "schema": node.schema,
            "continuation": local_to_dict(node.continuation),
        }

    if isinstance(node, Receive):
        return {
            "type": "Receive",
            "sender": node.sender.name,
            "schema": node.schema,
            "continuation": local_to_dict(node.continuation),
        }

    if isinstance(node, Select):
        return {
            "type": "Select",
            "receivers": [r.name for r in node.receivers],
            "branches": [
                {"label": str(label), "body": local_to_dict(body)} for label, body in node.branches
            ],
        }

    if isinstance(node, Offer):
        return {
            "type": "Offer",
            "sender": node.sender.name,
            "branches": [
                {"label": str(label), "body": local_to_dict(body)} for label, body in node.branches
            ],
        }

    if isinstance(node, LocalRec):
        return {"type": "Rec", "label": str(node.label), "body": local_to_dict(node.body)}

    raise TypeError(f"Cannot serialize local node: {type(node).__name__}")


def local_from_dict(data: dict[str, Any]) -> LocalProtocol:
    """Reconstruct a local protocol tree from a dict.

    Raises:
        ValueError: If the dict contains an unknown type.
    """
    type_tag = data["type"]

    if type_tag == "End":
        return LocalEnd()

    if type_tag == "Var":
        return LocalVar(label=data["label"])

    if type_tag == "Send":
        return Send(
            receiver=data["receiver"],
            schema=data["schema"],
            continuation=local_from_dict(data["continuation"]),
        )

    if type_tag == "Receive":
        return Receive(
            sender=data["sender"],
            schema=data["schema"],
            continuation=local_from_dict(data["continuation"]),
        )

    if type_tag == "Select":
        return Select(
            receivers=tuple(data["receivers"]),
            branches=tuple((b["label"], local_from_dict(b["body"])) for b in data["branches"]),
        )

    if type_tag == "Offer":
        return Offer(
            sender=data["sender"],
            branches=tuple((b["label"], local_from_dict(b["body"])) for b in data["branches"]),
        )

    if type_tag == "Rec":
        return LocalRec(label=data["label"], body=local_from_dict(data["body"]))

    raise ValueError(f"Unknown local node type: {type_tag!r}")


# ── Diagnostics ───────────────────────────────────────────────────────


def diagnostic_to_dict(diagnostic: Diagnostic) -> dict[str, Any]:
    return {
        "category": diagnostic.category.value,
        "kind": diagnostic.kind.value,
        "message": diagnostic.message,
        "help": diagnostic.help,
        "path": diagnostic.path,
    }


def validation_result_to_dict(result: ValidationResult) -> dict[str, Any]:
    """Serialize a validation result for reporting tools."""
    return {
        "is_valid": result.is_valid,
        "diagnostics": [diagnostic_to_dict(d) for d in result.diagnostics],
        "warnings": [diagnostic_to_dict(d) for d in result.warnings],
        "participants": sorted(r.name for r in result.participants),
    }


__all__ = [
    "global_to_dict",
    "global_from_dict",
    "protocol_to_dict",
    "protocol_from_dict",
    "protocol_to_json",
    "protocol_from_json",
    "local_to_dict",
    "local_from_dict",
    "diagnostic_to_dict",
    "validation_result_to_dict",
]
