"""LangGraph pipeline for regenerating fields after record updates.

Graph structure:
START → group_changes → load_fields → detect_affected → sort_fields → process_records → END

Every node before process_records ends the run early when it has nothing
to hand on (no changes, no intelligence fields, nothing affected, nothing
orderable).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Literal, TypedDict

from langgraph.graph import END, StateGraph

from cellflow.intelligence.changes import (
    build_record_data,
    get_affected_fields,
    get_intelligence_fields,
    group_cell_changes_by_field,
    records_to_process,
)
from cellflow.intelligence.graph import topological_sort
from cellflow.intelligence.prompt import create_field_map
from cellflow.schemas import CellChange, FieldChangeIndex, FieldInfo, IntelligenceField

if TYPE_CHECKING:
    from cellflow.intelligence.service import IntelligenceService


logger = logging.getLogger(__name__)


# =============================================================================
# State Definition
# =============================================================================

class UpdateState(TypedDict, total=False):
    """State for the record-update pipeline.

    Attributes:
        table_id: Table whose records changed
        cell_contexts: Raw cell changes from the update event
        field_changes: Changes indexed by field id, then record id
        fields: All fields of the table
        intelligence_fields: Fields with intelligence enabled
        affected_fields: Intelligence fields whose dependencies changed
        sorted_fields: Affected fields in dependency order
        generated: Number of values generated
    """
    table_id: str
    cell_contexts: list[CellChange]
    field_changes: FieldChangeIndex
    fields: list[FieldInfo]
    intelligence_fields: list[IntelligenceField]
    affected_fields: list[IntelligenceField]
    sorted_fields: list[IntelligenceField]
    generated: int


def _continue_if(key: str):
    def route(state: UpdateState) -> Literal["continue", "end"]:
        return "continue" if state.get(key) else "end"

    route.__name__ = f"has_{key}"
    return route


# =============================================================================
# Workflow Builder
# =============================================================================

def build_update_workflow(service: IntelligenceService) -> StateGraph:
    """Build the record-update workflow bound to a service."""

    async def group_changes(state: UpdateState) -> dict[str, Any]:
        return {"field_changes": group_cell_changes_by_field(state.get("cell_contexts", []))}

    async def load_fields(state: UpdateState) -> dict[str, Any]:
        fields = await service.get_fields(state["table_id"])
        return {
            "fields": fields,
            "intelligence_fields": get_intelligence_fields(fields),
        }

    async def detect_affected(state: UpdateState) -> dict[str, Any]:
        affected = get_affected_fields(state["intelligence_fields"], state["field_changes"])
        if affected:
            logger.info(
                f"[{state['table_id']}] {len(affected)} intelligence fields affected by update"
            )
        return {"affected_fields": affected}

    async def sort_fields(state: UpdateState) -> dict[str, Any]:
        return {"sorted_fields": topological_sort(state["affected_fields"])}

    async def process_records(state: UpdateState) -> dict[str, Any]:
        field_map = create_field_map(state["fields"])
        field_changes = state["field_changes"]
        record_data = [
            (record_id, build_record_data(record_id, field_map, field_changes))
            for record_id in records_to_process(field_changes)
        ]
        generated = await service.process_records(
            state["table_id"],
            record_data,
            state["sorted_fields"],
            state["fields"],
            field_map,
        )
        return {"generated": generated}

    workflow = StateGraph(UpdateState)

    # Add nodes
    workflow.add_node("group_changes", group_changes)
    workflow.add_node("load_fields", load_fields)
    workflow.add_node("detect_affected", detect_affected)
    workflow.add_node("sort_fields", sort_fields)
    workflow.add_node("process_records", process_records)

    # Set entry point
    workflow.set_entry_point("group_changes")

    # Each stage either hands on or ends the run
    stages = [
        ("group_changes", "field_changes", "load_fields"),
        ("load_fields", "intelligence_fields", "detect_affected"),
        ("detect_affected", "affected_fields", "sort_fields"),
        ("sort_fields", "sorted_fields", "process_records"),
    ]
    for node, key, next_node in stages:
        workflow.add_conditional_edges(
            node,
            _continue_if(key),
            {"continue": next_node, "end": END},
        )

    workflow.add_edge("process_records", END)

    return workflow
