"""Bounded counter pattern.

Two roles pass a counter back and forth; after each round trip the
counting role decides whether to go on.

Global Protocol:
    μLoop. Counter → Echo : int.
           Echo → Counter : int.
           Counter : {continue: Loop, stop: end}
"""

from __future__ import annotations

from dataclasses import dataclass

from sessionflow.global_types import (
    GlobalInteraction,
    GlobalProtocol,
    choice,
    end,
    msg,
    protocol,
    rec,
    var,
)
from sessionflow.types import RoleIdentifier, as_role

CONTINUE = "continue"
STOP = "stop"


@dataclass
class BoundedCounterPattern:
    """Counter session pattern.

    Attributes:
        counter: Role that sends the counter and decides when to stop
        echo: Role that answers with the incremented counter
        schema: Schema of the counter payload
        label: Recursion label
    """

    counter: RoleIdentifier | str = "Counter"
    echo: RoleIdentifier | str = "Echo"
    schema: str = "int"
    label: str = "Loop"

    def __post_init__(self) -> None:
        self.counter = as_role(self.counter)
        self.echo = as_role(self.echo)

    def global_type(self) -> GlobalInteraction:
        decide = choice(self.counter, {CONTINUE: var(self.label), STOP: end()})
        answer = msg(self.echo, self.counter, self.schema, decide)
        return rec(self.label, msg(self.counter, self.echo, self.schema, answer))

    def protocol(self, name: str = "BoundedCounter") -> GlobalProtocol:
        return protocol(name, [self.counter, self.echo], self.global_type())


def bounded_counter(counter: str = "Counter", echo: str = "Echo") -> GlobalProtocol:
    """Create the bounded counter protocol."""
    return BoundedCounterPattern(counter=counter, echo=echo).protocol()


__all__ = [
    "CONTINUE",
    "STOP",
    "BoundedCounterPattern",
    "bounded_counter",
]
