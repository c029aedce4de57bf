"""Common multiparty session patterns.

This module provides reusable protocols for common communication
scenarios. Each pattern is a dataclass building the global interaction
tree plus a convenience function returning a ready ``GlobalProtocol``.

Patterns:
- RequestResponse: Simple client-server request-response (and ping-pong)
- BoundedCounter: Round trips until the counting role stops
- Pipeline: Sequential processing through stages
- ScatterGather: Coordinator sends to all, gathers responses
"""

from sessionflow.patterns.counter import (
    BoundedCounterPattern,
    bounded_counter,
)
from sessionflow.patterns.pipeline import (
    PipelinePattern,
    pipeline,
)
from sessionflow.patterns.request_response import (
    Ping,
    Pong,
    RequestResponsePattern,
    logged_request,
    ping_pong,
    ping_schemas,
    request_response,
)
from sessionflow.patterns.scatter_gather import (
    ScatterGatherPattern,
    scatter_gather,
)

__all__ = [
    # Request-Response
    "RequestResponsePattern",
    "request_response",
    "Ping",
    "Pong",
    "ping_schemas",
    "ping_pong",
    "logged_request",
    # Counter
    "BoundedCounterPattern",
    "bounded_counter",
    # Pipeline
    "PipelinePattern",
    "pipeline",
    # Scatter-Gather
    "ScatterGatherPattern",
    "scatter_gather",
]
