"""Scoped read of the object mirror for the model (the getContext tool)."""

from __future__ import annotations

from boardpilot.storage.sqlite_store import SHAPE_TYPES
from boardpilot.tools.context import ToolContext, ToolResult, tool_boundary

CONTEXT_SCOPES = ("selected", "viewport", "frame", "ids", "all")
CONTEXT_CAP = 100
VIEWPORT_MARGIN = 200


@tool_boundary
def get_context(
    ctx: ToolContext,
    scope: str = "all",
    frame_id: str | None = None,
    object_ids: list[str] | None = None,
    type_filter: str | None = None,
) -> ToolResult:
    objects = ctx.arena.snapshot()
    if scope == "selected":
        wanted = set(ctx.selected_ids)
        objects = [o for o in objects if o.id in wanted]
    elif scope == "viewport":
        vp = ctx.viewport
        objects = [
            o for o in objects
            if o.x < vp.max_x + VIEWPORT_MARGIN
            and o.x + o.width > vp.min_x - VIEWPORT_MARGIN
            and o.y < vp.max_y + VIEWPORT_MARGIN
            and o.y + o.height > vp.min_y - VIEWPORT_MARGIN
        ]
    elif scope == "frame":
        objects = [o for o in objects if frame_id and (o.parent_id == frame_id or o.id == frame_id)]
    elif scope == "ids":
        wanted = set(object_ids or [])
        objects = [o for o in objects if o.id in wanted]

    if type_filter:
        kinds = SHAPE_TYPES if type_filter == "shape" else (type_filter,)
        objects = [o for o in objects if o.type in kinds]

    total = len(objects)
    rows = []
    for o in objects[:CONTEXT_CAP]:
        row = {
            "id": o.id,
            "type": o.type,
            "x": round(o.x),
            "y": round(o.y),
            "w": round(o.width),
            "h": round(o.height),
            "color": o.color,
            "text": (o.text or "")[:80],
        }
        if o.parent_id:
            row["parentFrameId"] = o.parent_id
        rows.append(row)
    return ToolResult(success=True, data={"objects": rows, "total": total})
