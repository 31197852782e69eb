"""Tests for dependency ordering of intelligence fields."""

import logging

import pytest

from cellflow.exceptions import DependencyCycleError
from cellflow.intelligence.graph import find_unresolved, topological_sort
from cellflow.schemas import IntelligenceField, IntelligenceOptions


def make_field(field_id: str, depends: list[str]) -> IntelligenceField:
    return IntelligenceField(
        field_id=field_id,
        intelligence=IntelligenceOptions(enabled=True, prompt="p", dynamic_depends=depends),
    )


def ids(fields: list[IntelligenceField]) -> list[str]:
    return [field.field_id for field in fields]


class TestTopologicalSort:
    """Tests for topological_sort."""

    def test_chain_is_ordered(self):
        """A depends on B, B depends on C: C comes first."""
        fields = [make_field("A", ["B"]), make_field("B", ["C"]), make_field("C", [])]

        assert ids(topological_sort(fields)) == ["C", "B", "A"]

    def test_independent_fields_keep_input_order(self):
        fields = [make_field("X", []), make_field("Y", []), make_field("Z", [])]

        assert ids(topological_sort(fields)) == ["X", "Y", "Z"]

    def test_dependencies_outside_set_are_ignored(self):
        """Only dependencies among the given fields constrain the order."""
        fields = [make_field("A", ["name"]), make_field("B", ["A", "age"])]

        assert ids(topological_sort(fields)) == ["A", "B"]

    def test_diamond(self):
        fields = [
            make_field("D", ["B", "C"]),
            make_field("B", ["A"]),
            make_field("C", ["A"]),
            make_field("A", []),
        ]

        ordered = ids(topological_sort(fields))

        assert ordered[0] == "A"
        assert ordered[-1] == "D"
        assert set(ordered[1:3]) == {"B", "C"}

    def test_cycle_members_are_dropped_with_warning(self, caplog):
        """Fields on a cycle, and their dependents, are left out."""
        fields = [
            make_field("A", ["B"]),
            make_field("B", ["A"]),
            make_field("C", []),
            make_field("D", ["A"]),
        ]

        with caplog.at_level(logging.WARNING):
            ordered = topological_sort(fields)

        assert ids(ordered) == ["C"]
        assert "dependency cycle" in caplog.text

    def test_strict_mode_raises_on_cycle(self):
        fields = [make_field("A", ["B"]), make_field("B", ["A"])]

        with pytest.raises(DependencyCycleError) as exc_info:
            topological_sort(fields, strict=True)

        assert set(exc_info.value.field_ids) == {"A", "B"}

    def test_empty_input(self):
        assert topological_sort([]) == []

    def test_duplicate_field_is_placed_once(self):
        fields = [make_field("A", []), make_field("A", [])]

        assert ids(topological_sort(fields)) == ["A"]


class TestFindUnresolved:
    """Tests for find_unresolved."""

    def test_acyclic_has_nothing_unresolved(self):
        fields = [make_field("A", ["B"]), make_field("B", [])]

        assert find_unresolved(fields) == []

    def test_self_dependency_is_unresolved(self):
        fields = [make_field("A", ["A"]), make_field("B", [])]

        assert find_unresolved(fields) == ["A"]
