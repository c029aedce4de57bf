"""Pipeline pattern for sequential multi-stage processing.

A payload flows through a sequence of processing stages,
with each stage passing data to the next.

Global Protocol (for 3 stages):
    Stage1 → Stage2 : Data.
    Stage2 → Stage3 : Data.
    end

Repeatable form (the first stage decides when the stream ends):
    μX. Stage1 : {next: Stage1 → Stage2 : Data. Stage2 → Stage3 : Data. X,
                  stop: end}

This pattern is useful for:
- Data transformation pipelines
- Sequential processing chains
- Streaming workloads with an explicit end of stream
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from sessionflow.global_types import (
    End,
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


@dataclass
class PipelinePattern:
    """Pipeline session pattern.

    Attributes:
        stages: Stage roles in order
        schema: Schema of the payload passed between stages
        repeatable: If True, the first stage may push more items
    """

    stages: Sequence[RoleIdentifier | str] = field(
        default_factory=lambda: ["Stage1", "Stage2", "Stage3"]
    )
    schema: str = "any"
    repeatable: bool = False

    _stages: list[RoleIdentifier] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        self._stages = [as_role(s) for s in self.stages]
        if len(self._stages) < 2:
            raise ValueError("Pipeline requires at least 2 stages")
        if len(set(self._stages)) != len(self._stages):
            raise ValueError("Pipeline stages must be distinct")

    def global_type(self) -> GlobalInteraction:
        """Build the global interaction tree.

        The tree is:
            Stage_1 → Stage_2 : Data.
            ...
            Stage_{n-1} → Stage_n : Data.
            end (or a choice around X for repeatable)
        """
        stages = self._stages
        continuation: GlobalInteraction = var("X") if self.repeatable else End()

        # Build from end backwards
        for i in range(len(stages) - 2, -1, -1):
            continuation = msg(stages[i], stages[i + 1], self.schema, continuation)

        if self.repeatable:
            return rec("X", choice(stages[0], {"next": continuation, "stop": end()}))

        return continuation

    def protocol(self, name: str = "Pipeline") -> GlobalProtocol:
        return protocol(name, list(self._stages), self.global_type())

    def participants(self) -> set[RoleIdentifier]:
        """Get all participants in the pipeline."""
        return set(self._stages)


def pipeline(
    stages: Sequence[str] | None = None,
    schema: str = "any",
    repeatable: bool = False,
) -> GlobalProtocol:
    """Create a pipeline protocol.

    Args:
        stages: Stage names (default: ["Stage1", "Stage2", "Stage3"])
        schema: Payload schema
        repeatable: If True, the pipeline streams until the first stage stops

    Example:
        # Simple 3-stage pipeline
        p = pipeline()

        # Streaming pipeline
        p = pipeline(["Source", "Transform", "Sink"], "str", repeatable=True)
    """
    if stages is None:
        stages = ["Stage1", "Stage2", "Stage3"]

    return PipelinePattern(stages=stages, schema=schema, repeatable=repeatable).protocol()


__all__ = [
    "PipelinePattern",
    "pipeline",
]
