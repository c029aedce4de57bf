"""Request-Response pattern for client-server communication.

The simplest multi-party session pattern where a client sends a
request to a server and receives a response.

Global Protocol:
    Client → Server : Request.
    Server → Client : Response.
    end

Repeatable form (the client decides when to stop):
    μX. Client : {request: Client → Server : Request.
                           Server → Client : Response. X,
                  quit: end}

Variants:
- ping_pong: request/response with ``Ping``/``Pong`` dataclass payloads
- logged_request: the server also reports to a third, logging role
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
from sessionflow.schemas import SchemaRegistry
from sessionflow.types import RoleIdentifier, as_role


@dataclass
class RequestResponsePattern:
    """Request-Response session pattern.

    Attributes:
        client: Client role
        server: Server role
        request_schema: Schema of the request payload
        response_schema: Schema of the response payload
        repeatable: If True, the client may repeat the exchange
    """

    client: RoleIdentifier | str = "Client"
    server: RoleIdentifier | str = "Server"
    request_schema: str = "any"
    response_schema: str = "any"
    repeatable: bool = False

    def __post_init__(self) -> None:
        self.client = as_role(self.client)
        self.server = as_role(self.server)

    def global_type(self) -> GlobalInteraction:
        """Build the global interaction tree."""
        if self.repeatable:
            exchange = msg(
                self.client,
                self.server,
                self.request_schema,
                msg(self.server, self.client, self.response_schema, var("X")),
            )
            return rec("X", choice(self.client, {"request": exchange, "quit": end()}))

        response = msg(self.server, self.client, self.response_schema)
        return msg(self.client, self.server, self.request_schema, response)

    def protocol(
        self,
        name: str = "RequestResponse",
        schemas: SchemaRegistry | None = None,
    ) -> GlobalProtocol:
        return protocol(name, [self.client, self.server], self.global_type(), schemas)

    def participants(self) -> set[RoleIdentifier]:
        """Get all participants in the request-response interaction."""
        return {as_role(self.client), as_role(self.server)}


def request_response(
    client: str = "Client",
    server: str = "Server",
    request_schema: str = "any",
    response_schema: str = "any",
    repeatable: bool = False,
    schemas: SchemaRegistry | None = None,
) -> GlobalProtocol:
    """Create a request-response protocol.

    Example:
        # Simple request-response
        p = request_response("Alice", "Bob", "str", "int")

        # Repeatable RPC
        p = request_response("Client", "Api", repeatable=True)
    """
    pattern = RequestResponsePattern(
        client=client,
        server=server,
        request_schema=request_schema,
        response_schema=response_schema,
        repeatable=repeatable,
    )
    return pattern.protocol(schemas=schemas)


@dataclass
class Ping:
    seq: int


@dataclass
class Pong:
    seq: int


def ping_schemas() -> SchemaRegistry:
    """Registry with the built-in schemas plus ``Ping`` and ``Pong``."""
    registry = SchemaRegistry()
    registry.register(Ping)
    registry.register(Pong)
    return registry


def ping_pong(client: str = "Client", server: str = "Server") -> GlobalProtocol:
    """Client → Server : Ping. Server → Client : Pong. end"""
    return RequestResponsePattern(client, server, "Ping", "Pong").protocol(
        "PingPong", ping_schemas()
    )


def logged_request(
    client: str = "Client",
    server: str = "Server",
    logger: str = "Logger",
    log_schema: str = "str",
) -> GlobalProtocol:
    """Request-response where the server finally reports to a logger.

    Client → Server : Request.
    Server → Client : Response.
    Server → Logger : Log.
    end

    The logger only ever sees the final message.
    """
    body = msg(
        client,
        server,
        "str",
        msg(server, client, "str", msg(server, logger, log_schema)),
    )
    return protocol("LoggedRequest", [client, server, logger], body)


__all__ = [
    "RequestResponsePattern",
    "request_response",
    "Ping",
    "Pong",
    "ping_schemas",
    "ping_pong",
    "logged_request",
]
