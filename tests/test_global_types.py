"""Tests for the global protocol model."""

from __future__ import annotations

import pytest

from sessionflow import (
    Choice,
    End,
    GlobalProtocol,
    Message,
    Par,
    Participant,
    ProjectionError,
    Rec,
    RoleIdentifier,
    Seq,
    Var,
    choice,
    end,
    msg,
    par,
    protocol,
    rec,
    seq,
    var,
)
from sessionflow.global_types import (
    free_variables,
    iter_interactions,
    rename_roles,
    splice,
    sub_interactions,
)
from sessionflow.types import TypeKind


class TestConstruction:
    """Construction never validates."""

    def test_msg_defaults_to_end(self):
        m = msg("A", "B", "str")
        assert m.continuation == End()
        assert m.sender is RoleIdentifier("A")
        assert m.kind == TypeKind.MESSAGE

    def test_malformed_trees_can_be_built(self):
        assert msg("A", "A").sender == "A"
        assert choice("A", {}).branches == ()
        assert var("Nowhere").label == "Nowhere"

    def test_choice_from_pairs_keeps_order(self):
        c = choice("A", [("z", end()), ("a", end())])
        assert c.labels() == ["z", "a"]

    def test_choice_branch_lookup(self):
        c = choice("A", {"x": msg("A", "B")})
        assert c.branch("x") == msg("A", "B")
        with pytest.raises(KeyError):
            c.branch("y")

    def test_nodes_are_immutable(self):
        m = msg("A", "B")
        with pytest.raises(AttributeError):
            m.schema = "int"  # type: ignore[misc]

    def test_structural_equality(self):
        assert msg("A", "B", "int") == Message("A", "B", "int", End())
        assert hash(rec("X", var("X"))) == hash(Rec("X", Var("X")))

    def test_seq_helper(self):
        assert seq() == End()
        assert seq(msg("A", "B")) == msg("A", "B")
        s = seq(msg("A", "B"), msg("B", "A"), msg("A", "B", "int"))
        assert isinstance(s, Seq)
        assert isinstance(s.first, Seq)

    def test_par_helper(self):
        p = par(msg("A", "B"), msg("C", "D"))
        assert isinstance(p, Par)
        assert p.kind == TypeKind.PARALLEL

    def test_participants(self):
        g = choice("A", {"x": msg("A", "B", "str", msg("B", "C")), "y": end()})
        assert g.participants() == {"A", "B", "C"}

    def test_repr(self):
        g = rec("L", msg("A", "B", "int", choice("A", {"more": var("L"), "done": end()})))
        assert repr(g) == "μL.A → B : int.A : {more: L, done: end}"


class TestTreeUtilities:
    """Tests for splice and tree walks."""

    def test_splice_replaces_every_end(self):
        first = choice("A", {"x": msg("A", "B"), "y": end()})
        result = splice(first, msg("B", "A", "int"))
        assert result == choice(
            "A", {"x": msg("A", "B", "any", msg("B", "A", "int")), "y": msg("B", "A", "int")}
        )

    def test_splice_leaves_variables(self):
        first = rec("L", msg("A", "B", "any", var("L")))
        assert splice(first, msg("B", "A")) == first

    def test_splice_flattens_nested_seq(self):
        nested = Seq(Seq(msg("A", "B"), msg("B", "A")), msg("A", "B", "int"))
        assert splice(nested, end()) == msg(
            "A", "B", "any", msg("B", "A", "any", msg("A", "B", "int"))
        )

    def test_splice_keeps_parallel_before_rest(self):
        p = par(msg("A", "B"), msg("C", "D"))
        assert splice(p, msg("B", "C")) == Seq(p, msg("B", "C"))
        assert splice(p, end()) == p

    def test_sub_interactions(self):
        c = choice("A", {"x": msg("A", "B"), "y": end()})
        assert sub_interactions(c) == [msg("A", "B"), end()]
        assert sub_interactions(end()) == []

    def test_iter_interactions_is_depth_first(self):
        g = msg("A", "B", "int", rec("L", msg("B", "A", "int", var("L"))))
        kinds = [n.kind for n in iter_interactions(g)]
        assert kinds == [
            TypeKind.MESSAGE,
            TypeKind.RECURSION,
            TypeKind.MESSAGE,
            TypeKind.VARIABLE,
        ]

    def test_free_variables(self):
        inner = rec("Y", msg("A", "B", "int", choice("A", {"y": var("Y"), "x": var("X")})))
        assert free_variables(inner) == {"X"}
        assert free_variables(rec("X", inner)) == set()

    def test_rename_roles(self):
        g = choice("C", {"x": msg("C", "S", "int")})
        renamed = rename_roles(g, {"C": RoleIdentifier("Client")})
        assert renamed == choice("Client", {"x": msg("Client", "S", "int")})


class TestGlobalProtocol:
    """Tests for protocol definitions."""

    def test_participants_are_normalized(self):
        p = protocol("P", ["A", Participant("B", "Bee")], msg("A", "Bee"))
        assert p.participants == (Participant("A"), Participant("B", "Bee"))

    def test_role_ids_deduplicate(self):
        p = protocol("P", ["A", "B", "A"], msg("A", "B"))
        assert p.role_ids() == ("A", "B")

    def test_aliases_resolve(self):
        p = protocol("P", [Participant("Client", "C"), "Server"], msg("C", "Server"))
        assert p.resolve_role("C") is RoleIdentifier("Client")
        assert p.resolve_role("Server") is RoleIdentifier("Server")
        assert p.resolved_body == msg("Client", "Server")

    def test_roles_enum(self):
        p = protocol("PingPong", ["Client", "Server"], msg("Client", "Server"))
        assert [r.value for r in p.roles] == ["Client", "Server"]
        assert p.resolve_role(p.roles.Client) is RoleIdentifier("Client")

    def test_validate_delegates(self, ping_pong_protocol):
        assert ping_pong_protocol.validate().is_valid

    def test_project(self, ping_pong_protocol):
        local = ping_pong_protocol.project("Server")
        assert local.kind == TypeKind.RECEIVE

    def test_project_raises_when_undefined(self):
        p = protocol("Overlap", ["A", "B", "C"], par(msg("A", "B"), msg("B", "C")))
        with pytest.raises(ProjectionError):
            p.project("B")

    def test_project_all(self, logged_protocol):
        locals_ = logged_protocol.project_all()
        assert list(locals_) == ["Client", "Server", "Logger"]

    def test_schema_registry_is_not_compared(self, ping_pong_protocol):
        same = GlobalProtocol(
            ping_pong_protocol.name,
            ping_pong_protocol.participants,
            ping_pong_protocol.body,
        )
        assert same == ping_pong_protocol

    def test_repr(self):
        p = protocol("P", [Participant("A", "X"), "B"], msg("X", "B"))
        assert repr(p) == "protocol P(A as X, B) = X → B : any.end"

    def test_choice_node_type(self):
        assert isinstance(choice("A", {"x": end()}), Choice)
