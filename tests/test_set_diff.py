"""Tests for set reconciliation."""

from user_operator.set_diff import SetOperation, attributes_changed, reconcile_sets
from user_operator.state import Attribute


class TestReconcileSets:
    """Tests for reconcile_sets."""

    def test_overlapping_sets(self) -> None:
        delta = reconcile_sets({"a", "b"}, {"b", "c"})
        assert delta.to_add == {"c"}
        assert delta.to_remove == {"a"}

    def test_identical_sets_are_empty(self) -> None:
        delta = reconcile_sets({"a", "b"}, {"b", "a"})
        assert delta.is_empty
        assert list(delta.operations()) == []

    def test_from_empty(self) -> None:
        delta = reconcile_sets(set(), {"x", "y"})
        assert delta.to_add == {"x", "y"}
        assert not delta.to_remove

    def test_to_empty(self) -> None:
        delta = reconcile_sets({"x"}, [])
        assert delta.to_remove == {"x"}
        assert not delta.to_add

    def test_duplicates_collapse(self) -> None:
        delta = reconcile_sets(["a", "a"], ["a", "b", "b"])
        assert delta.to_add == {"b"}
        assert not delta.to_remove

    def test_additions_come_before_removals(self) -> None:
        delta = reconcile_sets({"z", "m"}, {"a", "b"})
        ops = list(delta.operations())
        assert ops == [
            (SetOperation.ADD, "a"),
            (SetOperation.ADD, "b"),
            (SetOperation.REMOVE, "m"),
            (SetOperation.REMOVE, "z"),
        ]

    def test_delta_halves_are_disjoint(self) -> None:
        delta = reconcile_sets({"a", "b", "c"}, {"c", "d"})
        assert not delta.to_add & delta.to_remove


class TestAttributesChanged:
    """Tests for full-list attribute comparison."""

    def test_equal_lists(self) -> None:
        attrs = [Attribute("email", "a@example.com"), Attribute("name", "A")]
        assert not attributes_changed(attrs, tuple(attrs))

    def test_value_change(self) -> None:
        assert attributes_changed([Attribute("email", "a")], [Attribute("email", "b")])

    def test_order_change(self) -> None:
        first = Attribute("email", "a")
        second = Attribute("name", "A")
        assert attributes_changed([first, second], [second, first])

    def test_removal(self) -> None:
        assert attributes_changed([Attribute("email", "a")], [])
