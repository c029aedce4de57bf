"""Scatter-Gather pattern for coordinator-worker communication.

A coordinator sends tasks to multiple workers and gathers their responses.

Global Protocol (for 2 workers):
    Coordinator → Worker1 : Task.
    Coordinator → Worker2 : Task.
    Worker1 → Coordinator : Result.
    Worker2 → Coordinator : Result.
    end

Workers never talk to each other, so each projection is a plain
receive-then-send.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from sessionflow.global_types import End, GlobalInteraction, GlobalProtocol, msg, protocol
from sessionflow.types import RoleIdentifier, as_role


@dataclass
class ScatterGatherPattern:
    """Scatter-Gather session pattern.

    Attributes:
        coordinator: Coordinator role
        workers: Worker roles
        task_schema: Schema of task payloads
        result_schema: Schema of result payloads
    """

    coordinator: RoleIdentifier | str = "Coordinator"
    workers: Sequence[RoleIdentifier | str] = field(default_factory=lambda: ["Worker1", "Worker2"])
    task_schema: str = "any"
    result_schema: str = "any"

    def __post_init__(self) -> None:
        self.coordinator = as_role(self.coordinator)
        self.workers = [as_role(w) for w in self.workers]
        if self.coordinator in self.workers:
            raise ValueError("Coordinator cannot also be a worker")

    def global_type(self) -> GlobalInteraction:
        """Build the global interaction tree.

        The tree is:
            Coordinator → Worker_1 : Task.
            ...
            Coordinator → Worker_n : Task.
            Worker_1 → Coordinator : Result.
            ...
            Worker_n → Coordinator : Result.
            end
        """
        if not self.workers:
            return End()

        # Gather phase first, built from the end backwards
        current: GlobalInteraction = End()
        for worker in reversed(self.workers):
            current = msg(worker, self.coordinator, self.result_schema, current)

        # Then the scatter phase
        for worker in reversed(self.workers):
            current = msg(self.coordinator, worker, self.task_schema, current)

        return current

    def protocol(self, name: str = "ScatterGather") -> GlobalProtocol:
        return protocol(name, [as_role(self.coordinator), *self.workers], self.global_type())

    def participants(self) -> set[RoleIdentifier]:
        """Get the coordinator and all workers."""
        return {as_role(self.coordinator), *(as_role(w) for w in self.workers)}


def scatter_gather(
    coordinator: str = "Coordinator",
    workers: Sequence[str] | None = None,
    task_schema: str = "any",
    result_schema: str = "any",
) -> GlobalProtocol:
    """Create a scatter-gather protocol.

    Example:
        # Three workers squaring integers
        p = scatter_gather("Master", ["W1", "W2", "W3"], "int", "int")
    """
    if workers is None:
        workers = ["Worker1", "Worker2"]

    pattern = ScatterGatherPattern(
        coordinator=coordinator,
        workers=workers,
        task_schema=task_schema,
        result_schema=result_schema,
    )
    return pattern.protocol()


__all__ = [
    "ScatterGatherPattern",
    "scatter_gather",
]
