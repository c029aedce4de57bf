"""Tests for core identifiers and the error taxonomy."""

from __future__ import annotations

import threading
from enum import Enum

from sessionflow import (
    ProjectionError,
    ProtocolViolation,
    SchemaMismatch,
    SessionError,
    SessionTimeout,
    TransportError,
    UnexpectedClose,
)
from sessionflow.errors import DiagnosticCategory, DiagnosticKind
from sessionflow.types import Participant, RoleIdentifier, TypeKind, as_role


class TestRoleIdentifier:
    """Tests for interned role identifiers."""

    def test_same_name_is_same_object(self):
        assert RoleIdentifier("Client") is RoleIdentifier("Client")

    def test_behaves_like_a_string(self):
        rid = RoleIdentifier("Server")
        assert rid == "Server"
        assert rid.name == "Server"
        assert {"Server": 1}[rid] == 1

    def test_wrapping_is_idempotent(self):
        rid = RoleIdentifier("Client")
        assert RoleIdentifier(rid) is rid

    def test_repr(self):
        assert repr(RoleIdentifier("Client")) == "Role(Client)"

    def test_interning_is_thread_safe(self):
        seen: list[RoleIdentifier] = []
        lock = threading.Lock()

        def make():
            rid = RoleIdentifier("Concurrent")
            with lock:
                seen.append(rid)

        threads = [threading.Thread(target=make) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert all(r is seen[0] for r in seen)


class TestParticipant:
    """Tests for definition-time participants."""

    def test_role(self):
        assert Participant("Client").role is RoleIdentifier("Client")

    def test_names_with_alias(self):
        p = Participant("Client", "C")
        assert p.names() == ("Client", "C")
        assert str(p) == "Client as C"

    def test_names_without_alias(self):
        assert Participant("Server").names() == ("Server",)
        assert str(Participant("Server")) == "Server"


class TestAsRole:
    def test_from_string(self):
        assert as_role("A") is RoleIdentifier("A")

    def test_from_participant(self):
        assert as_role(Participant("B", "Bee")) is RoleIdentifier("B")

    def test_from_enum(self):
        class Roles(str, Enum):
            CLIENT = "Client"

        assert as_role(Roles.CLIENT) is RoleIdentifier("Client")


class TestTypeKind:
    def test_values(self):
        assert TypeKind.MESSAGE.value == "message"
        assert TypeKind.SELECT.value == "select"


class TestDiagnosticKinds:
    """Every diagnostic kind belongs to a category."""

    def test_every_kind_has_a_category(self):
        for kind in DiagnosticKind:
            assert isinstance(kind.category, DiagnosticCategory)

    def test_categories(self):
        assert DiagnosticKind.DUPLICATE_PARTICIPANT.category == DiagnosticCategory.PARTICIPANT
        assert DiagnosticKind.UNDEFINED_RECURSION_LABEL.category == DiagnosticCategory.RECURSION
        assert DiagnosticKind.EMPTY_CHOICE.category == DiagnosticCategory.SEMANTIC
        assert DiagnosticKind.UNKNOWN_SCHEMA.category == DiagnosticCategory.SCHEMA


class TestSessionErrors:
    """Tests for the runtime error taxonomy."""

    def test_to_dict(self):
        error = ProtocolViolation("bad step", {"role": "Client"})
        assert error.to_dict() == {
            "code": "session:protocol/violation",
            "message": "bad step",
            "details": {"role": "Client"},
        }

    def test_hierarchy(self):
        assert issubclass(SchemaMismatch, ProtocolViolation)
        for cls in (TransportError, UnexpectedClose, SessionTimeout, ProtocolViolation):
            assert issubclass(cls, SessionError)

    def test_schema_mismatch_message(self):
        error = SchemaMismatch("int", "seven")
        assert error.schema == "int"
        assert "str" in error.message
        assert error.details["schema"] == "int"

    def test_timeout_carries_duration(self):
        error = SessionTimeout(0.5)
        assert error.duration == 0.5
        assert "0.5" in str(error)

    def test_transport_error_keeps_cause(self):
        cause = ConnectionResetError("reset")
        error = TransportError("failed", cause=cause)
        assert error.cause is cause

    def test_unexpected_close_default_message(self):
        assert UnexpectedClose().message == "Channel closed unexpectedly"

    def test_projection_error_str(self):
        error = ProjectionError("cannot project", role=RoleIdentifier("A"))
        assert str(error) == "cannot project role=A"
