"""Dependency ordering of intelligence fields.

Edges run from a dependency to the field that depends on it. Only
dependencies inside the given field set take part in the ordering; anything
outside it is treated as already resolved.
"""

from __future__ import annotations

import logging
from collections import deque

from cellflow.exceptions import DependencyCycleError
from cellflow.schemas import IntelligenceField


logger = logging.getLogger(__name__)


def _kahn(fields: list[IntelligenceField]) -> tuple[list[IntelligenceField], list[str]]:
    by_id: dict[str, IntelligenceField] = {}
    graph: dict[str, list[str]] = {}
    in_degree: dict[str, int] = {}

    for field in fields:
        by_id.setdefault(field.field_id, field)
        graph.setdefault(field.field_id, [])
        in_degree.setdefault(field.field_id, 0)

    for field_id, field in by_id.items():
        for depend_id in field.depends:
            if depend_id in graph:
                graph[depend_id].append(field_id)
                in_degree[field_id] += 1

    queue = deque(field_id for field_id, degree in in_degree.items() if degree == 0)
    ordered: list[IntelligenceField] = []

    while queue:
        field_id = queue.popleft()
        ordered.append(by_id[field_id])
        for neighbor in graph[field_id]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    placed = {field.field_id for field in ordered}
    unresolved = [field_id for field_id in by_id if field_id not in placed]
    return ordered, unresolved


def topological_sort(
    fields: list[IntelligenceField],
    strict: bool = False,
) -> list[IntelligenceField]:
    """Order fields so each one follows its in-set dependencies.

    Independent fields keep their discovery order (FIFO queue seeded in input
    order). Fields on a cycle, and everything depending on them, cannot be
    placed: they are left out with a warning, or rejected when `strict`.

    Args:
        fields: Intelligence fields with their dependency lists
        strict: Raise instead of dropping fields that cannot be ordered

    Returns:
        The orderable fields in processing order

    Raises:
        DependencyCycleError: If `strict` and some fields cannot be ordered
    """
    ordered, unresolved = _kahn(fields)

    if unresolved:
        if strict:
            raise DependencyCycleError(unresolved)
        logger.warning(f"Skipping fields caught in a dependency cycle: {', '.join(unresolved)}")

    return ordered


def find_unresolved(fields: list[IntelligenceField]) -> list[str]:
    """Return ids of fields that cannot be ordered because of a cycle."""
    return _kahn(fields)[1]
