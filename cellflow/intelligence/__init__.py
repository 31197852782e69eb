"""AI-backed field generation: dependency ordering, change detection and runs."""

from cellflow.intelligence.graph import find_unresolved, topological_sort
from cellflow.intelligence.registry import ProcessingRegistry, RunTicket
from cellflow.intelligence.service import IntelligenceService

__all__ = [
    "IntelligenceService",
    "ProcessingRegistry",
    "RunTicket",
    "find_unresolved",
    "topological_sort",
]
