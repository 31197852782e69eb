"""Domain exceptions."""

from __future__ import annotations


class NotFoundError(Exception):
    """A table, field or record does not exist."""


class TaskCancelledError(Exception):
    """A generation run observed its cancellation token."""

    def __init__(self, message: str = "Task cancelled"):
        super().__init__(message)


class DependencyCycleError(Exception):
    """Intelligence fields depend on each other in a cycle."""

    def __init__(self, field_ids: list[str]):
        super().__init__(f"Dependency cycle between fields: {', '.join(field_ids)}")
        self.field_ids = field_ids
