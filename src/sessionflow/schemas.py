"""Payload schema registry.

A schema identifier names the shape of a message payload. The registry
answers whether an identifier is known, whether its shape can be carried
over the wire, whether a value matches it, and how to convert values to
and from their wire (JSON-compatible) form.

Built-in schemas:
- any, str, int, float, bool, none, list, dict
- one-level generics over built-ins and registered names:
  ``list[T]`` and ``dict[str, T]``

Dataclasses register as supported schemas and travel as dicts; fields
annotated with another dataclass (directly, optionally, or as the element
of a list or dict) are rebuilt from their type hints on receipt. Any other
Python type can be registered but is marked unsupported, as are nested
generics such as ``dict[str, list[int]]``.
"""

from __future__ import annotations

import dataclasses
import re
import typing
from dataclasses import dataclass
from typing import Any

from sessionflow.errors import SerializationError

_GENERIC_RE = re.compile(r"^\s*(\w+)\s*[\[<](.*)[\]>]\s*$")

_JSON_TYPES: tuple[type, ...] = (str, int, float, bool, type(None), list, dict)

_BUILTINS: dict[str, type | None] = {
    "any": None,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "none": type(None),
    "list": list,
    "dict": dict,
}


@dataclass(frozen=True)
class Schema:
    """A resolved payload schema.

    Attributes:
        name: Schema identifier
        python_type: Python type values must be instances of (None for any)
        supported: Whether the shape can be carried over the wire
        reason: Why the schema is unsupported
        item: Element schema for ``list[T]`` / value schema for ``dict[str, T]``
    """

    name: str
    python_type: type | None = None
    supported: bool = True
    reason: str = ""
    item: Schema | None = None

    @property
    def is_dataclass(self) -> bool:
        return self.python_type is not None and dataclasses.is_dataclass(self.python_type)

    def matches(self, value: Any) -> bool:
        """Check whether a value has this schema's shape."""
        t = self.python_type
        if t is None:
            return True
        if t is bool:
            return isinstance(value, bool)
        if t is int:
            return isinstance(value, int) and not isinstance(value, bool)
        if t is float:
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        if t is list:
            if not isinstance(value, (list, tuple)):
                return False
            return self.item is None or all(self.item.matches(v) for v in value)
        if t is dict:
            if not isinstance(value, dict) or not all(isinstance(k, str) for k in value):
                return False
            return self.item is None or all(self.item.matches(v) for v in value.values())
        return isinstance(value, t)

    def to_wire(self, value: Any) -> Any:
        """Convert a matching value to its JSON-compatible form."""
        if self.is_dataclass:
            return dataclasses.asdict(value)
        if self.item is not None and self.python_type is list:
            return [self.item.to_wire(v) for v in value]
        if self.item is not None and self.python_type is dict:
            return {k: self.item.to_wire(v) for k, v in value.items()}
        if isinstance(value, tuple):
            return list(value)
        return value

    def from_wire(self, data: Any) -> Any:
        """Rebuild a value from its wire form."""
        if self.is_dataclass:
            if not isinstance(data, dict):
                raise SerializationError(
                    f"Schema '{self.name}' expects an object on the wire",
                    {"schema": self.name, "received": type(data).__name__},
                )
            try:
                return _rebuild(self.python_type, data)
            except TypeError as e:
                raise SerializationError(
                    f"Cannot rebuild '{self.name}' from wire data: {e}",
                    {"schema": self.name},
                ) from e
        if self.item is not None and self.python_type is list and isinstance(data, list):
            return [self.item.from_wire(v) for v in data]
        if self.item is not None and self.python_type is dict and isinstance(data, dict):
            return {k: self.item.from_wire(v) for k, v in data.items()}
        return data


def _field_hints(cls: type) -> dict[str, Any]:
    try:
        return typing.get_type_hints(cls)
    except NameError:
        # Annotations naming classes local to a function cannot be resolved
        return {}


def _rebuild(hint: Any, data: Any) -> Any:
    """Rebuild dataclass values nested anywhere under ``hint``."""
    if isinstance(hint, type) and dataclasses.is_dataclass(hint):
        if not isinstance(data, dict):
            raise TypeError(f"{hint.__name__} expects an object, got {type(data).__name__}")
        hints = _field_hints(hint)
        return hint(**{key: _rebuild(hints.get(key, Any), value) for key, value in data.items()})
    origin, args = typing.get_origin(hint), typing.get_args(hint)
    if origin is list and args and isinstance(data, list):
        return [_rebuild(args[0], v) for v in data]
    if origin is dict and len(args) == 2 and isinstance(data, dict):
        return {k: _rebuild(args[1], v) for k, v in data.items()}
    if args and type(None) in args and data is not None:
        options = [a for a in args if a is not type(None)]
        if len(options) == 1:
            return _rebuild(options[0], data)
    return data


class SchemaRegistry:
    """Registry resolving schema identifiers to ``Schema`` objects.

    Example:
        @dataclass
        class Ping:
            seq: int

        registry = SchemaRegistry()
        registry.register(Ping)
        registry.is_supported("Ping")            # True
        registry.is_supported("dict[str, list[int]]")  # False
    """

    def __init__(self, include_builtins: bool = True) -> None:
        self._schemas: dict[str, Schema] = {}
        if include_builtins:
            for name, python_type in _BUILTINS.items():
                self._schemas[name] = Schema(name=name, python_type=python_type)

    def register(self, name: str | type, python_type: type | None = None) -> Schema:
        """Register a schema.

        Args:
            name: Schema identifier, or a class whose ``__name__`` is used
            python_type: Type of conforming values (defaults to ``name`` when
                a class was given)

        Returns:
            The registered Schema
        """
        if isinstance(name, type):
            python_type = name if python_type is None else python_type
            name = name.__name__
        if python_type is None:
            schema = Schema(name=name)
        elif dataclasses.is_dataclass(python_type) or python_type in _JSON_TYPES:
            schema = Schema(name=name, python_type=python_type)
        else:
            schema = Schema(
                name=name,
                python_type=python_type,
                supported=False,
                reason=f"{python_type.__name__} values have no wire representation",
            )
        self._schemas[name] = schema
        return schema

    def lookup(self, name: str) -> Schema | None:
        """Resolve an identifier, or None if it is unknown."""
        schema = self._schemas.get(name)
        if schema is not None:
            return schema
        match = _GENERIC_RE.match(name)
        if match is None:
            return None
        return self._resolve_generic(name, match.group(1), match.group(2))

    def _resolve_generic(self, name: str, outer: str, inner: str) -> Schema | None:
        args = [a.strip() for a in _split_args(inner)]
        if any(_GENERIC_RE.match(a) for a in args):
            return Schema(
                name=name,
                supported=False,
                reason="nested generic types are not supported",
            )
        resolved = [self._schemas.get(a) for a in args]
        if outer not in ("list", "dict") or any(r is None for r in resolved):
            return None
        if outer == "list" and len(resolved) == 1:
            item = resolved[0]
            return Schema(name=name, python_type=list, supported=item.supported, item=item)
        if outer == "dict" and len(resolved) == 2 and args[0] == "str":
            item = resolved[1]
            return Schema(name=name, python_type=dict, supported=item.supported, item=item)
        return Schema(
            name=name,
            supported=False,
            reason=f"'{outer}' does not take arguments {args}",
        )

    def is_known(self, name: str) -> bool:
        return self.lookup(name) is not None

    def is_supported(self, name: str) -> bool:
        schema = self.lookup(name)
        return schema is not None and schema.supported

    def matches(self, name: str, value: Any) -> bool:
        """Check a value against a schema; unknown schemas never match."""
        schema = self.lookup(name)
        return schema is not None and schema.matches(value)

    def to_wire(self, name: str, value: Any) -> Any:
        schema = self.lookup(name)
        return value if schema is None else schema.to_wire(value)

    def from_wire(self, name: str, data: Any) -> Any:
        schema = self.lookup(name)
        return data if schema is None else schema.from_wire(data)

    def names(self) -> list[str]:
        """Registered identifiers (generic forms are resolved on demand)."""
        return sorted(self._schemas)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.is_known(name)


def _split_args(inner: str) -> list[str]:
    """Split generic arguments on top-level commas."""
    args: list[str] = []
    depth = 0
    current = ""
    for ch in inner:
        if ch in "[<":
            depth += 1
        elif ch in "]>":
            depth -= 1
        if ch == "," and depth == 0:
            args.append(current)
            current = ""
        else:
            current += ch
    args.append(current)
    return args


default_registry = SchemaRegistry()


__all__ = [
    "Schema",
    "SchemaRegistry",
    "default_registry",
]
