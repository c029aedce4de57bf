"""Tests for the projection algorithm."""

from __future__ import annotations

import pytest

from sessionflow import (
    LocalEnd,
    LocalRec,
    LocalVar,
    Offer,
    ProjectionError,
    Projector,
    Receive,
    Select,
    Send,
    choice,
    end,
    msg,
    par,
    project,
    project_all,
    protocol,
    rec,
    seq,
    var,
)
from sessionflow.local_types import (
    children,
    free_vars,
    is_unguarded,
    iter_nodes,
    local_splice,
)


class TestProjectorBasics:
    """Basic projection tests."""

    def test_project_end(self, projector):
        assert projector.project(end(), "A") == LocalEnd()

    def test_project_message_as_sender(self, projector):
        assert projector.project(msg("Client", "Server", "str"), "Client") == Send("Server", "str")

    def test_project_message_as_receiver(self, projector):
        local = projector.project(msg("Client", "Server", "str"), "Server")
        assert local == Receive("Client", "str")

    def test_project_message_as_bystander(self, projector):
        assert projector.project(msg("Client", "Server", "str"), "Observer") == LocalEnd()

    def test_ping_pong(self, ping_pong_protocol):
        assert ping_pong_protocol.project("Client") == Send(
            "Server", "Ping", Receive("Server", "Pong")
        )
        assert ping_pong_protocol.project("Server") == Receive(
            "Client", "Ping", Send("Client", "Pong")
        )

    def test_self_message_cannot_be_projected(self, projector):
        with pytest.raises(ProjectionError) as exc_info:
            projector.project(msg("A", "A"), "A")
        assert exc_info.value.role == "A"

    def test_non_strict_returns_none(self):
        assert Projector(strict=False).project(msg("A", "A"), "A") is None
        assert project(choice("A", []), "B", strict=False) is None

    def test_empty_choice_cannot_be_projected(self):
        with pytest.raises(ProjectionError):
            project(choice("A", []), "A")

    def test_local_never_names_its_owner(self, logged_protocol):
        for role, local in logged_protocol.project_all().items():
            assert role not in local.participants()


class TestBystanderPruning:
    """Roles only see what concerns them."""

    def test_logger_only_sees_final_message(self, logged_protocol):
        assert logged_protocol.project("Logger") == Receive("Server", "str", LocalEnd())

    def test_server_sees_everything(self, logged_protocol):
        assert logged_protocol.project("Server") == Receive(
            "Client", "str", Send("Client", "str", Send("Logger", "str"))
        )

    def test_absent_role_skips_closed_loop(self):
        loop = rec("L", msg("A", "B", "int", choice("A", {"more": var("L"), "done": end()})))
        p = protocol("P", ["A", "B", "C"], loop)
        assert p.project("C") == LocalEnd()

    def test_absent_role_is_not_informed_of_loop_choices(self):
        loop = rec("L", msg("A", "B", "int", choice("A", {"more": var("L"), "done": end()})))
        p = protocol("P", ["A", "B", "C"], loop)
        local = p.project("A")
        assert isinstance(local, LocalRec)
        select = local.body.continuation
        assert isinstance(select, Select)
        assert select.receivers == ("B",)

    def test_role_acting_after_loop_follows_it(self):
        loop = rec("L", msg("A", "B", "int", choice("A", {"more": var("L"), "done": end()})))
        p = protocol("P", ["A", "B", "C"], seq(loop, msg("B", "C", "str")))
        local = p.project("C")
        assert local == LocalRec(
            "L", Offer("A", (("more", LocalVar("L")), ("done", Receive("B", "str"))))
        )
        select = p.project("A").body.continuation
        assert select.receivers == ("B", "C")

    def test_loop_without_variable_collapses(self):
        assert project(rec("L", msg("A", "B", "str")), "A") == Send("B", "str")

    def test_infinite_loop(self):
        g = rec("L", msg("A", "B", "int", var("L")))
        assert project(g, "B") == LocalRec("L", Receive("A", "int", LocalVar("L")))


class TestChoiceProjection:
    """Broadcast choices."""

    def test_first_receiver_gets_offer(self):
        g = choice("A", {"x": msg("A", "B", "int"), "y": msg("A", "B", "str")})
        assert project(g, "B") == Offer(
            "A", (("x", Receive("A", "int")), ("y", Receive("A", "str")))
        )
        assert project(g, "A") == Select(
            ("B",), (("x", Send("B", "int")), ("y", Send("B", "str")))
        )

    def test_identical_branches_merge_for_bystander(self):
        g = choice(
            "A",
            {
                "x": msg("A", "B", "str", msg("B", "C", "int")),
                "y": msg("A", "B", "int", msg("B", "C", "int")),
            },
        )
        assert project(g, "C") == Receive("B", "int")
        assert project(g, "A").receivers == ("B",)

    def test_differing_branches_inform_bystander(self):
        g = choice(
            "A",
            {
                "x": msg("A", "B", "str", msg("B", "C", "int")),
                "y": msg("A", "B", "str", msg("B", "C", "str")),
            },
        )
        assert project(g, "C") == Offer(
            "A", (("x", Receive("B", "int")), ("y", Receive("B", "str")))
        )
        assert project(g, "A").receivers == ("B", "C")

    def test_multiparty_loop(self, shop_protocol):
        shipper = shop_protocol.project("Shipper")
        assert shipper == LocalRec(
            "Shop",
            Offer(
                "Buyer",
                (("order", Receive("Seller", "str", LocalVar("Shop"))), ("quit", LocalEnd())),
            ),
        )
        buyer = shop_protocol.project("Buyer")
        assert buyer.body.receivers == ("Seller", "Shipper")

    def test_select_receivers_follow_declaration_order(self):
        g = choice(
            "A",
            {"x": msg("A", "Z", "int", msg("A", "B", "int")), "y": msg("A", "Z", "str")},
        )
        p = protocol("P", ["A", "Z", "B"], g)
        assert p.project("A").receivers == ("Z", "B")

    def test_decider_receiving_informs_the_sender(self):
        g = choice("A", {"x": msg("B", "A", "int"), "y": msg("B", "A", "int")})
        assert project(g, "A") == Select(
            ("B",), (("x", Receive("B", "int")), ("y", Receive("B", "int")))
        )
        assert project(g, "B") == Offer(
            "A", (("x", Send("A", "int")), ("y", Send("A", "int")))
        )

    def test_branch_starting_in_parallel(self):
        branch = seq(par(msg("A", "B", "int"), msg("C", "D", "int")), msg("A", "C", "int"))
        p = protocol("Fork", ["A", "B", "C", "D"], choice("A", {"x": branch, "y": end()}))
        assert p.project("A").receivers == ("B", "C", "D")
        assert p.project("C") == Offer(
            "A", (("x", Send("D", "int", Receive("A", "int"))), ("y", LocalEnd()))
        )

    def test_identical_parallel_branches_inform_the_deciders_side(self):
        branch = seq(par(msg("C", "D", "int"), msg("A", "B", "int")), msg("A", "C", "int"))
        p = protocol("Fork", ["A", "B", "C", "D"], choice("A", {"x": branch, "y": branch}))
        assert p.project("A").receivers == ("B",)
        assert p.project("D") == Receive("C", "int")


class TestCompositionProjection:
    """Sequential and parallel composition."""

    def test_seq_splices(self):
        g = seq(msg("A", "B", "int"), msg("B", "A", "str"))
        assert project(g, "A") == Send("B", "int", Receive("B", "str"))

    def test_par_projects_own_side(self):
        g = par(msg("A", "B"), msg("C", "D"))
        assert project(g, "A") == Send("B", "any")
        assert project(g, "D") == Receive("C", "any")

    def test_par_overlap_cannot_be_projected(self):
        with pytest.raises(ProjectionError):
            project(par(msg("A", "B"), msg("B", "C")), "B")

    def test_par_then_rest(self):
        g = seq(par(msg("A", "B", "str"), msg("C", "D", "str")), msg("B", "C", "int"))
        assert project(g, "B") == Receive("A", "str", Send("C", "int"))
        assert project(g, "C") == Send("D", "str", Receive("B", "int"))
        assert project(g, "A") == Send("B", "str")

    def test_choice_inside_par_informs_only_its_side(self):
        left = choice("A", {"x": msg("A", "B", "int"), "y": msg("A", "B", "str")})
        g = par(left, msg("C", "D"))
        assert project(g, "A").receivers == ("B",)


class TestProjectAll:
    def test_declared_roles(self, logged_protocol):
        locals_ = logged_protocol.project_all()
        assert set(locals_) == {"Client", "Server", "Logger"}

    def test_bare_tree_uses_mentioned_roles(self):
        locals_ = project_all(msg("B", "A"))
        assert list(locals_) == ["A", "B"]

    def test_explicit_roles(self):
        locals_ = project_all(msg("A", "B"), roles=["B", "Observer"])
        assert locals_ == {"B": Receive("A"), "Observer": LocalEnd()}

    def test_projection_is_repeatable(self, shop_protocol):
        assert shop_protocol.project_all() == shop_protocol.project_all()


class TestLocalHelpers:
    def test_children(self):
        offer = Offer("A", (("x", LocalEnd()), ("y", Send("A"))))
        assert children(offer) == [LocalEnd(), Send("A")]
        assert children(LocalEnd()) == []

    def test_free_vars(self):
        assert free_vars(LocalRec("X", Send("A", "int", LocalVar("Y")))) == {"Y"}

    def test_is_unguarded(self):
        assert is_unguarded(LocalVar("X"), "X")
        assert is_unguarded(LocalRec("Y", LocalVar("X")), "X")
        assert not is_unguarded(Send("A", "int", LocalVar("X")), "X")

    def test_local_splice(self):
        first = Select(("B",), (("x", Send("B")), ("y", LocalEnd())))
        assert local_splice(first, Receive("B")) == Select(
            ("B",), (("x", Send("B", "any", Receive("B"))), ("y", Receive("B")))
        )

    def test_iter_nodes(self):
        local = Send("B", "int", Receive("B", "str"))
        assert [n.kind.value for n in iter_nodes(local)] == ["send", "receive", "end"]

    def test_repr(self):
        local = LocalRec("L", Send("B", "int", Offer("B", (("go", LocalVar("L")),))))
        assert repr(local) == "μL.!B(int).&B{go: L}"
        assert repr(Select(("B", "C"), (("x", LocalEnd()),))) == "⊕{B,C}{x: end}"

    def test_branch_lookup(self):
        select = Select(("B",), (("x", LocalEnd()),))
        assert select.labels() == ["x"]
        assert select.branch("x") == LocalEnd()
        with pytest.raises(KeyError):
            select.branch("y")
