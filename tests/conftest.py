"""Test fixtures for sessionflow tests."""

from __future__ import annotations

import threading
from dataclasses import dataclass

import pytest

from sessionflow import (
    Broker,
    BrokerConfig,
    GlobalProtocol,
    MemoryTransport,
    Projector,
    ProtocolValidator,
    SchemaRegistry,
    choice,
    end,
    msg,
    protocol,
    rec,
    var,
)
from sessionflow.patterns import bounded_counter, logged_request, ping_pong


@dataclass
class Order:
    item: str
    quantity: int


@pytest.fixture
def order_cls() -> type[Order]:
    """The ``Order`` dataclass registered by the ``schemas`` fixture."""
    return Order


@pytest.fixture
def schemas() -> SchemaRegistry:
    """Registry with the built-ins plus an ``Order`` dataclass."""
    registry = SchemaRegistry()
    registry.register(Order)
    return registry


@pytest.fixture
def ping_pong_protocol() -> GlobalProtocol:
    """Client → Server : Ping. Server → Client : Pong. end"""
    return ping_pong()


@pytest.fixture
def logged_protocol() -> GlobalProtocol:
    """Client → Server : str. Server → Client : str. Server → Logger : str. end"""
    return logged_request()


@pytest.fixture
def counter_protocol() -> GlobalProtocol:
    """μLoop. Counter → Echo : int. Echo → Counter : int. Counter : {continue, stop}"""
    return bounded_counter()


@pytest.fixture
def shop_protocol() -> GlobalProtocol:
    """Buyer decides between ordering (with a shipping notice) and quitting.

    μShop. Buyer : {
        order: Buyer → Seller : Order. Seller → Shipper : str. Shop,
        quit: Buyer → Seller : str. end
    }
    """
    body = rec(
        "Shop",
        choice(
            "Buyer",
            {
                "order": msg(
                    "Buyer", "Seller", "Order", msg("Seller", "Shipper", "str", var("Shop"))
                ),
                "quit": msg("Buyer", "Seller", "str", end()),
            },
        ),
    )
    registry = SchemaRegistry()
    registry.register(Order)
    return protocol("Shop", ["Buyer", "Seller", "Shipper"], body, registry)


@pytest.fixture
def projector() -> Projector:
    """Projector instance."""
    return Projector()


@pytest.fixture
def validator() -> ProtocolValidator:
    """Validator over the built-in schemas."""
    return ProtocolValidator()


@pytest.fixture
def broker() -> Broker:
    """Broker that gives up quickly instead of hanging a test."""
    return Broker(BrokerConfig(guard_timeout=1.0, default_timeout=2.0))


@pytest.fixture
def transports() -> tuple[MemoryTransport, MemoryTransport]:
    """Connected pair of in-memory transports."""
    return MemoryTransport.pair()


@pytest.fixture
def run_roles():
    """Run one callable per role in its own thread and re-raise the first failure."""

    def run(*targets, timeout: float = 10.0) -> None:
        errors: list[BaseException] = []
        lock = threading.Lock()

        def guarded(target):
            try:
                target()
            except BaseException as e:
                with lock:
                    errors.append(e)

        threads = [threading.Thread(target=guarded, args=(t,)) for t in targets]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout)
        assert not any(t.is_alive() for t in threads), "role threads did not finish"
        if errors:
            raise errors[0]

    return run
