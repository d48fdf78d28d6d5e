"""Bulk delete: whole canvas, explicit ids, or every object of a type."""

from __future__ import annotations

import logging

from boardpilot.errors import StructuredError
from boardpilot.storage.sqlite_store import SHAPE_TYPES
from boardpilot.tools.context import ToolContext, ToolResult, tool_boundary

logger = logging.getLogger(__name__)

DELETE_MODES = ("all", "by_ids", "by_type")
DELETABLE_TYPES = ["sticky", "shape", "frame", "connector", "rectangle", "circle", "line"]
DELETE_BATCH = 50


def _delete_connectors(ctx: ToolContext) -> ToolResult:
    connectors = ctx.store.list_connectors(ctx.canvas_id)
    if not connectors:
        return ToolResult(success=True, data={"deletedCount": 0, "message": "No connector objects found"})
    removed = ctx.store.delete_connectors(ctx.canvas_id, [c.id for c in connectors])
    return ToolResult(success=True, data={"deletedCount": removed, "message": f"Deleted {removed} connectors"})


@tool_boundary
def bulk_delete(
    ctx: ToolContext,
    mode: str,
    object_ids: list[str] | None = None,
    object_type: str | None = None,
) -> ToolResult:
    if mode == "all":
        deleted, connectors = ctx.store.delete_all_objects(ctx.canvas_id)
        count = len(ctx.arena)
        ctx.arena.clear()
        ctx.cursor.reset()
        logger.info("Deleted all objects on %s (%d rows, %d connectors)", ctx.canvas_id, deleted, connectors)
        return ToolResult(
            success=True,
            data={"deletedCount": count, "message": f"Deleted all {count} objects"},
        )

    if mode == "by_type":
        if object_type not in DELETABLE_TYPES:
            return ToolResult(
                success=False,
                error=str(StructuredError.invalid_type(str(object_type), DELETABLE_TYPES)),
            )
        if object_type == "connector":
            return _delete_connectors(ctx)
        kinds = SHAPE_TYPES if object_type == "shape" else (object_type,)
        ids = [o.id for o in ctx.arena if o.type in kinds]
        if not ids:
            return ToolResult(
                success=True, data={"deletedCount": 0, "message": f"No {object_type} objects found"},
            )
        return bulk_delete(ctx, "by_ids", object_ids=ids)

    if mode != "by_ids":
        return ToolResult(success=False, error=f"Invalid mode. Use one of: {', '.join(DELETE_MODES)}")
    if not object_ids:
        return ToolResult(success=False, error="No object IDs provided")

    known = [i for i in object_ids if i in ctx.arena]
    missing = [i for i in object_ids if i not in ctx.arena]
    deleted_ids: list[str] = []
    for start in range(0, len(known), DELETE_BATCH):
        batch = known[start:start + DELETE_BATCH]
        ctx.store.delete_objects(ctx.canvas_id, batch)
        ctx.arena.remove(batch)
        deleted_ids.extend(batch)

    data: dict = {"deletedIds": deleted_ids, "count": len(deleted_ids)}
    if missing:
        data["notFound"] = missing
    return ToolResult(success=True, data=data)
