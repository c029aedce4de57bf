"""Tests for the payload schema registry."""

from __future__ import annotations

import json
from dataclasses import dataclass, field

import pytest

from sessionflow import SchemaRegistry, SerializationError


class Socketish:
    """A type with no wire representation."""


@dataclass
class Point:
    x: int
    y: int


@dataclass
class Route:
    name: str
    start: Point
    stops: list[Point] = field(default_factory=list)
    end: Point | None = None


class TestBuiltins:
    """Tests for the built-in schemas."""

    @pytest.mark.parametrize("name", ["any", "str", "int", "float", "bool", "none", "list", "dict"])
    def test_builtins_are_known_and_supported(self, name):
        registry = SchemaRegistry()
        assert registry.is_known(name)
        assert registry.is_supported(name)
        assert name in registry

    def test_without_builtins(self):
        assert not SchemaRegistry(include_builtins=False).is_known("str")

    def test_unknown(self):
        registry = SchemaRegistry()
        assert registry.lookup("Widget") is None
        assert "Widget" not in registry
        assert not registry.matches("Widget", 1)

    def test_int_does_not_match_bool(self):
        registry = SchemaRegistry()
        assert registry.matches("int", 3)
        assert not registry.matches("int", True)
        assert registry.matches("bool", False)

    def test_float_accepts_int(self):
        assert SchemaRegistry().matches("float", 2)

    def test_any_matches_everything(self):
        registry = SchemaRegistry()
        assert registry.matches("any", object())
        assert registry.matches("any", None)


class TestGenerics:
    """Tests for one-level generic schemas."""

    def test_list_of_int(self):
        registry = SchemaRegistry()
        assert registry.is_supported("list[int]")
        assert registry.matches("list[int]", [1, 2])
        assert not registry.matches("list[int]", [1, "2"])

    def test_dict_of_str(self):
        registry = SchemaRegistry()
        assert registry.matches("dict[str, str]", {"a": "b"})
        assert not registry.matches("dict[str, str]", {"a": 1})
        assert not registry.matches("dict[str, str]", {1: "b"})

    def test_nested_generics_unsupported(self):
        registry = SchemaRegistry()
        schema = registry.lookup("dict[str, list[int]]")
        assert schema is not None
        assert not schema.supported
        assert "nested" in schema.reason

    def test_dict_needs_string_keys(self):
        registry = SchemaRegistry()
        assert registry.is_known("dict[int, str]")
        assert not registry.is_supported("dict[int, str]")

    def test_generic_of_unknown_is_unknown(self):
        assert not SchemaRegistry().is_known("list[Widget]")

    def test_generic_over_registered_dataclass(self, order_cls):
        registry = SchemaRegistry()
        registry.register(order_cls)
        orders = [order_cls("tea", 1), order_cls("cake", 2)]
        assert registry.matches("list[Order]", orders)
        wire = registry.to_wire("list[Order]", orders)
        assert wire == [{"item": "tea", "quantity": 1}, {"item": "cake", "quantity": 2}]
        assert registry.from_wire("list[Order]", wire) == orders


class TestRegistration:
    """Tests for registering schemas."""

    def test_register_dataclass(self, schemas):
        schema = schemas.lookup("Order")
        assert schema is not None
        assert schema.is_dataclass
        assert schema.supported

    def test_dataclass_round_trip(self, schemas, order_cls):
        wire = schemas.to_wire("Order", order_cls("tea", 2))
        assert wire == {"item": "tea", "quantity": 2}
        assert schemas.from_wire("Order", wire) == order_cls("tea", 2)

    def test_nested_dataclasses_round_trip(self):
        registry = SchemaRegistry()
        registry.register(Route)
        route = Route("home", Point(0, 0), [Point(1, 2)], Point(3, 4))
        wire = json.loads(json.dumps(registry.to_wire("Route", route)))
        assert wire["start"] == {"x": 0, "y": 0}
        assert registry.from_wire("Route", wire) == route

    def test_optional_nested_dataclass(self):
        schema = SchemaRegistry().register(Route)
        wire = {"name": "home", "start": {"x": 0, "y": 0}, "stops": [], "end": None}
        assert schema.from_wire(wire) == Route("home", Point(0, 0))

    def test_nested_field_with_wrong_shape(self):
        schema = SchemaRegistry().register(Route)
        with pytest.raises(SerializationError):
            schema.from_wire({"name": "home", "start": 5})

    def test_register_under_other_name(self, order_cls):
        registry = SchemaRegistry()
        registry.register("Purchase", order_cls)
        assert registry.matches("Purchase", order_cls("x", 1))

    def test_register_name_only_accepts_anything(self):
        registry = SchemaRegistry()
        registry.register("Opaque")
        assert registry.matches("Opaque", 42)

    def test_plain_class_is_unsupported(self):
        registry = SchemaRegistry()
        schema = registry.register(Socketish)
        assert not schema.supported
        assert registry.is_known("Socketish")
        assert not registry.is_supported("Socketish")

    def test_names(self, schemas):
        assert "Order" in schemas.names()
        assert schemas.names() == sorted(schemas.names())


class TestWireErrors:
    def test_dataclass_from_non_object(self, schemas):
        with pytest.raises(SerializationError):
            schemas.from_wire("Order", [1, 2])

    def test_dataclass_missing_fields(self, schemas):
        with pytest.raises(SerializationError) as exc_info:
            schemas.from_wire("Order", {"item": "tea"})
        assert exc_info.value.details["schema"] == "Order"

    def test_tuple_travels_as_list(self):
        assert SchemaRegistry().to_wire("list", (1, 2)) == [1, 2]
