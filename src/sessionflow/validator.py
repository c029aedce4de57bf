"""Well-formedness validation for global protocols.

The validator walks a global protocol once, carrying the stack of active
recursion labels and the set of declared roles, and reports every problem
it finds as a typed diagnostic. It never mutates the tree and never stops
at the first error, so tooling can show all problems at once.

Checks:
- Participants: duplicates, undeclared roles, invalid names, self messages
- Recursion: undefined labels, shadowed labels, continue outside its loop,
  unguarded loops
- Semantics: empty choices, choices whose branches start in a direction
  the deciding role cannot drive, unreachable code after a loop, parallel
  branches sharing roles
- Schemas: unknown and unsupported payload schemas

References:
- Honda, Yoshida, Carbone (2008) - Multiparty Session Types
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from sessionflow.errors import (
    DiagnosticCategory,
    DiagnosticKind,
    ProtocolDefinitionError,
)
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
    iter_interactions,
    splice,
)
from sessionflow.schemas import SchemaRegistry, default_registry
from sessionflow.types import Participant, RoleIdentifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Diagnostic:
    """A single well-formedness problem.

    Attributes:
        kind: What went wrong
        message: Human-readable description
        help: Suggested fix
        path: Location of the offending node in the tree
    """

    kind: DiagnosticKind
    message: str
    help: str = ""
    path: str = ""

    @property
    def category(self) -> DiagnosticCategory:
        return self.kind.category

    def __str__(self) -> str:
        text = f"{self.category.value.capitalize()} error: {self.message}"
        return f"{text} (at {self.path})" if self.path else text


@dataclass
class ValidationResult:
    """Result of validating a global protocol.

    Attributes:
        is_valid: Whether the protocol is well-formed
        diagnostics: Errors found, in discovery order
        warnings: Non-fatal findings
        participants: Roles used by the protocol body
    """

    is_valid: bool
    diagnostics: list[Diagnostic] = field(default_factory=list)
    warnings: list[Diagnostic] = field(default_factory=list)
    participants: set[RoleIdentifier] = field(default_factory=set)

    @property
    def errors(self) -> list[str]:
        """Error messages as plain strings."""
        return [str(d) for d in self.diagnostics]

    def kinds(self) -> list[DiagnosticKind]:
        return [d.kind for d in self.diagnostics]

    def has(self, kind: DiagnosticKind) -> bool:
        return any(d.kind == kind for d in self.diagnostics)

    def errors_of(self, category: DiagnosticCategory) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.category == category]

    def raise_for_errors(self, protocol: str = "") -> None:
        """Raise ProtocolDefinitionError if any error was found."""
        if not self.is_valid:
            raise ProtocolDefinitionError(self.diagnostics, protocol=protocol)


class ProtocolValidator:
    """Checks well-formedness of global protocols.

    A global protocol is well-formed if:
    1. Every role is declared exactly once, with a valid name
    2. Every recursion variable refers to an enclosing recursion
    3. Recursion labels are not shadowed and loops are guarded
    4. Every choice has branches that its decider can drive
    5. No interaction sits after a point the protocol can never leave
    6. Every payload schema is known and supported
    """

    def __init__(self, schemas: SchemaRegistry | None = None) -> None:
        self.schemas = schemas or default_registry

    def validate(
        self,
        target: GlobalProtocol | GlobalInteraction,
        participants: Iterable[str | Participant] | None = None,
    ) -> ValidationResult:
        """Validate a protocol.

        Args:
            target: A GlobalProtocol, or a bare interaction tree
            participants: Declared roles for a bare tree. If omitted, the
                roles mentioned in the tree are taken as declared.

        Returns:
            ValidationResult with every diagnostic found
        """
        if isinstance(target, GlobalProtocol):
            declared = list(target.participants)
            body = target.resolved_body
            name = target.name
        else:
            body = target
            name = ""
            if participants is None:
                declared = [Participant(r) for r in sorted(body.participants())]
            else:
                declared = [
                    p if isinstance(p, Participant) else Participant(p) for p in participants
                ]

        walk = _Walk(self.schemas, body)
        walk.check_participants(declared)
        walk.visit(body, (), "body")

        used = body.participants()
        warnings = [
            Diagnostic(
                kind=DiagnosticKind.UNUSED_PARTICIPANT,
                message=f"Participant '{p.name}' is declared but never used",
                help="Remove the declaration or add interactions for it",
            )
            for p in declared
            if p.role not in used and not (p.alias and RoleIdentifier(p.alias) in used)
        ]

        result = ValidationResult(
            is_valid=not walk.diagnostics,
            diagnostics=walk.diagnostics,
            warnings=warnings,
            participants=set(used),
        )
        if result.is_valid:
            logger.debug(f"Protocol {name or body!r} is well-formed")
        else:
            logger.debug(
                f"Protocol {name or body!r} has {len(result.diagnostics)} diagnostics: "
                f"{[d.kind.value for d in result.diagnostics]}"
            )
        return result


class _Walk:
    """State of a single validation pass."""

    def __init__(self, schemas: SchemaRegistry, body: GlobalInteraction) -> None:
        self.schemas = schemas
        self.diagnostics: list[Diagnostic] = []
        self.known: set[str] | None = None
        self.all_labels = _rec_labels(body)

    def report(self, kind: DiagnosticKind, message: str, help: str = "", path: str = "") -> None:
        self.diagnostics.append(Diagnostic(kind=kind, message=message, help=help, path=path))

    # -- participants ---------------------------------------------------------

    def check_participants(self, declared: list[Participant]) -> None:
        if not declared:
            self.report(
                DiagnosticKind.NO_PARTICIPANTS,
                "Protocol has no participants",
                help="Declare at least two participants",
            )
        seen: set[str] = set()
        for p in declared:
            for name in p.names():
                if not name.isidentifier():
                    self.report(
                        DiagnosticKind.INVALID_PARTICIPANT_NAME,
                        f"Invalid participant name '{name}'. Participant names must be "
                        f"valid identifiers.",
                        help="Start the name with a letter or underscore",
                        path="participants",
                    )
                if name in seen:
                    self.report(
                        DiagnosticKind.DUPLICATE_PARTICIPANT,
                        f"Duplicate participant '{name}'. Each participant must be "
                        f"declared exactly once.",
                        help="Remove the duplicate participant declaration",
                        path="participants",
                    )
                seen.add(name)
        self.known = seen

    def check_role(self, role: RoleIdentifier, path: str) -> None:
        if self.known is not None and role.name not in self.known:
            self.report(
                DiagnosticKind.UNDEFINED_PARTICIPANT,
                f"Undefined participant '{role.name}'. All participants must be declared.",
                help=f"Add '{role.name}' to the protocol participants",
                path=path,
            )

    # -- tree walk ------------------------------------------------------------

    def visit(self, node: GlobalInteraction, scope: tuple[str, ...], path: str) -> None:
        if isinstance(node, Message):
            here = f"{path} > {node.sender.name}→{node.receiver.name}:{node.schema}"
            self.check_role(node.sender, here)
            self.check_role(node.receiver, here)
            if node.sender == node.receiver:
                self.report(
                    DiagnosticKind.SELF_MESSAGE,
                    f"Participant '{node.sender.name}' sends a message to itself",
                    help="Sender and receiver must be different roles",
                    path=here,
                )
            self.check_schema(node.schema, here)
            self.visit(node.continuation, scope, here)

        elif isinstance(node, Choice):
            here = f"{path} > choice@{node.decider.name}"
            self.check_role(node.decider, here)
            if not node.branches:
                self.report(
                    DiagnosticKind.EMPTY_CHOICE,
                    "Empty choice block. A choice must have at least one option.",
                    help="Add at least one option to the choice",
                    path=here,
                )
                return
            self.check_choice_roles(node, here)
            seen: set[str] = set()
            for label, branch in node.branches:
                if label in seen:
                    self.report(
                        DiagnosticKind.DUPLICATE_BRANCH_LABEL,
                        f"Duplicate branch label '{label}' in choice at '{node.decider.name}'",
                        help="Give every option a distinct label",
                        path=here,
                    )
                seen.add(label)
                self.visit(branch, scope, f"{here}['{label}']")

        elif isinstance(node, Rec):
            here = f"{path} > rec {node.label}"
            if node.label in scope:
                self.report(
                    DiagnosticKind.DUPLICATE_RECURSION_LABEL,
                    f"Duplicate recursion label '{node.label}'. Each recursion label must "
                    f"be unique within its scope.",
                    help="Choose a different label for this recursion block",
                    path=here,
                )
            if _loops_immediately(node.body, node.label):
                self.report(
                    DiagnosticKind.UNGUARDED_RECURSION,
                    f"Recursion '{node.label}' loops without any interaction",
                    help="Add at least one interaction before 'continue'",
                    path=here,
                )
            self.visit(node.body, scope + (node.label,), here)

        elif isinstance(node, Var):
            here = f"{path} > continue {node.label}"
            if node.label in scope:
                return
            if node.label in self.all_labels:
                self.report(
                    DiagnosticKind.CONTINUE_OUTSIDE_RECURSION,
                    f"Continue refers to label '{node.label}' which is not active in "
                    f"this scope",
                    help="Move the continue inside the recursion block it names",
                    path=here,
                )
            else:
                self.report(
                    DiagnosticKind.UNDEFINED_RECURSION_LABEL,
                    f"Undefined recursion label '{node.label}'. Labels must be defined "
                    f"with a recursion block before they are continued.",
                    help=f"Define the recursion block '{node.label}' around this continue",
                    path=here,
                )

        elif isinstance(node, Seq):
            self.visit(node.first, scope, f"{path} > seq[0]")
            if not _can_end(node.first):
                loop = _first_var(node.first)
                after = f"'continue {loop}'" if loop else "a loop that never ends"
                self.report(
                    DiagnosticKind.UNREACHABLE_CODE,
                    f"Unreachable code after {after}",
                    help="Remove the code after the continue or move it before it",
                    path=f"{path} > seq[1]",
                )
            self.visit(node.second, scope, f"{path} > seq[1]")

        elif isinstance(node, Par):
            overlap = node.left.participants() & node.right.participants()
            if overlap:
                names = ", ".join(sorted(r.name for r in overlap))
                self.report(
                    DiagnosticKind.PARALLEL_OVERLAP,
                    f"Parallel branches share participants: {names}",
                    help="Parallel protocols must involve disjoint roles",
                    path=f"{path} > par",
                )
            self.visit(node.left, scope, f"{path} > par[0]")
            self.visit(node.right, scope, f"{path} > par[1]")

    def check_choice_roles(self, node: Choice, path: str) -> None:
        """Every branch must start in the same direction for the decider."""
        firsts = [
            (label, _first_action(branch, node.decider)) for label, branch in node.branches
        ]
        directions = [(label, _direction(node.decider, first)) for label, first in firsts]
        expected = "sends" if any(d == "sends" for _, d in directions) else "receives"
        for (label, first), (_, direction) in zip(firsts, directions):
            if first is None or direction == expected:
                continue
            actor = first.sender if isinstance(first, Message) else first.decider
            self.report(
                DiagnosticKind.INVALID_CHOICE_ROLE,
                f"Role '{actor.name}' cannot make a choice in a branch where "
                f"'{node.decider.name}' is the deciding role",
                help=f"The first message of every branch must be {_EXPECTED_HELP[expected]} "
                f"'{node.decider.name}'",
                path=f"{path}['{label}']",
            )

    def check_schema(self, schema: str, path: str) -> None:
        resolved = self.schemas.lookup(schema)
        if resolved is None:
            self.report(
                DiagnosticKind.UNKNOWN_SCHEMA,
                f"Invalid message type '{schema}'. Message schemas must be registered.",
                help="Register the schema with the protocol's SchemaRegistry",
                path=path,
            )
        elif not resolved.supported:
            self.report(
                DiagnosticKind.UNSUPPORTED_SCHEMA,
                f"Unsupported message type '{schema}': {resolved.reason}",
                help="Use a simpler type or register a dataclass for it",
                path=path,
            )


_EXPECTED_HELP = {"sends": "sent by", "receives": "received by"}


def _direction(decider: RoleIdentifier, first: Message | Choice | None) -> str | None:
    """How the decider takes part in a branch's first action."""
    if first is None:
        return None
    if isinstance(first, Choice):
        return "sends" if first.decider == decider else "other"
    if first.sender == decider:
        return "sends"
    if first.receiver == decider:
        return "receives"
    return "other"


def _first_action(
    node: GlobalInteraction, decider: RoleIdentifier | None = None
) -> Message | Choice | None:
    """First action of a branch. Under a parallel block the side the decider
    takes part in goes first."""
    if isinstance(node, (Message, Choice)):
        return node
    if isinstance(node, Rec):
        return _first_action(node.body, decider)
    if isinstance(node, Par):
        for side in _sides(node, decider):
            first = _first_action(side, decider)
            if first is not None:
                return first
        return None
    if isinstance(node, Seq):
        if isinstance(node.first, Par):
            # splice keeps a leading Par in place, so look inside it
            first = _first_action(node.first, decider)
            return first if first is not None else _first_action(node.second, decider)
        return _first_action(splice(node.first, node.second), decider)
    return None


def _sides(node: Par, decider: RoleIdentifier | None) -> list[GlobalInteraction]:
    if decider is not None and decider not in node.left.participants():
        return [node.right, node.left]
    return [node.left, node.right]


def _rec_labels(node: GlobalInteraction) -> set[str]:
    """Every recursion label bound anywhere in the tree."""
    return {n.label for n in iter_interactions(node) if isinstance(n, Rec)}


def _can_end(node: GlobalInteraction) -> bool:
    """Whether some path through ``node`` reaches ``end``."""
    if isinstance(node, End):
        return True
    if isinstance(node, Message):
        return _can_end(node.continuation)
    if isinstance(node, Choice):
        return any(_can_end(branch) for _label, branch in node.branches)
    if isinstance(node, Rec):
        return _can_end(node.body)
    if isinstance(node, Seq):
        return _can_end(node.first) and _can_end(node.second)
    if isinstance(node, Par):
        return _can_end(node.left) and _can_end(node.right)
    return False


def _first_var(node: GlobalInteraction) -> str | None:
    if isinstance(node, Var):
        return node.label
    if isinstance(node, Message):
        return _first_var(node.continuation)
    if isinstance(node, Choice):
        for _label, branch in node.branches:
            found = _first_var(branch)
            if found:
                return found
        return None
    if isinstance(node, Rec):
        return _first_var(node.body)
    if isinstance(node, Seq):
        return _first_var(node.first) or _first_var(node.second)
    return None


def _loops_immediately(node: GlobalInteraction, label: str) -> bool:
    if isinstance(node, Var):
        return node.label == label
    if isinstance(node, Rec):
        return _loops_immediately(node.body, label)
    return False


def validate(
    target: GlobalProtocol | GlobalInteraction,
    participants: Iterable[str | Participant] | None = None,
    schemas: SchemaRegistry | None = None,
) -> ValidationResult:
    """Validate a protocol with a fresh validator.

    Args:
        target: Protocol or bare interaction tree
        participants: Declared roles for a bare tree
        schemas: Schema registry (default: built-in schemas)

    Returns:
        ValidationResult
    """
    return ProtocolValidator(schemas).validate(target, participants)


__all__ = [
    "Diagnostic",
    "ValidationResult",
    "ProtocolValidator",
    "validate",
]
