"""Tests for the ordered id container."""

from __future__ import annotations

import pytest

from workflow_organizer.errors import NotFound
from workflow_organizer.ordered import OrderedContainer


class TestInsert:
    def test_insert_clamps_index(self) -> None:
        c = OrderedContainer(["a", "b"])
        assert c.insert_at(99, "c") == 2
        assert c.insert_at(-5, "z") == 0
        assert c.ids() == ("z", "a", "b", "c")

    def test_none_appends(self) -> None:
        c = OrderedContainer(["a"])
        c.insert_at(None, "b")
        assert c.ids() == ("a", "b")

    def test_duplicate_rejected_without_change(self) -> None:
        c = OrderedContainer(["a", "b"])
        with pytest.raises(ValueError):
            c.insert_at(0, "b")
        assert c.ids() == ("a", "b")

    def test_constructor_rejects_duplicates(self) -> None:
        with pytest.raises(ValueError):
            OrderedContainer(["a", "a"])


class TestRemove:
    def test_remove_shifts_later_positions(self) -> None:
        c = OrderedContainer(["a", "b", "c"])
        assert c.remove_by_id("a") == "a"
        assert c.index_of("c") == 1

    def test_remove_missing_raises(self) -> None:
        c = OrderedContainer(["a"])
        with pytest.raises(NotFound):
            c.remove_by_id("x")
        assert c.ids() == ("a",)


class TestMoveWithin:
    def test_move_forward_uses_final_position(self) -> None:
        c = OrderedContainer(["a", "b", "c", "d"])
        assert c.move_within("a", 2) is True
        assert c.ids() == ("b", "c", "a", "d")

    def test_move_backward(self) -> None:
        c = OrderedContainer(["a", "b", "c"])
        c.move_within("c", 0)
        assert c.ids() == ("c", "a", "b")

    def test_move_clamps_to_last(self) -> None:
        c = OrderedContainer(["a", "b", "c"])
        c.move_within("a", 10)
        assert c.ids() == ("b", "c", "a")

    def test_same_position_is_noop(self) -> None:
        c = OrderedContainer(["a", "b"])
        assert c.move_within("b", 1) is False
        assert c.ids() == ("a", "b")

    def test_missing_id_raises_without_change(self) -> None:
        c = OrderedContainer(["a", "b"])
        with pytest.raises(NotFound):
            c.move_within("x", 0)
        assert c.ids() == ("a", "b")


class TestReads:
    def test_ids_is_a_snapshot(self) -> None:
        c = OrderedContainer(["a"])
        snap = c.ids()
        c.insert_at(None, "b")
        assert snap == ("a",)

    def test_clamp_for_move_within(self) -> None:
        c = OrderedContainer(["a", "b", "c"])
        assert c.clamp(None) == 3
        assert c.clamp(None, moving_within=True) == 2
        assert c.clamp(7, moving_within=True) == 2

    def test_copy_is_independent(self) -> None:
        c = OrderedContainer(["a"])
        clone = c.copy()
        clone.insert_at(None, "b")
        assert len(c) == 1
        assert clone != c
