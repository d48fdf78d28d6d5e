"""Edit tools: geometry, text, color, frame membership, and layout."""

from __future__ import annotations

import math

from boardpilot.errors import StructuredError
from boardpilot.tools.context import ToolContext, ToolResult, resolve_color, tool_boundary
from boardpilot.tools.frame_layout import (
    arrange_children_in_grid,
    frame_expansion_for_children,
    place_in_frame,
)
from boardpilot.tools.placement import sanitize_coord, sanitize_size, sanitize_text

LAYOUTS = ("grid", "row", "column")

# Tools that touch only the object they name; safe to run concurrently
PARALLEL_SAFE = frozenset({"moveObject", "resizeObject", "updateText", "changeColor"})


def _not_found(object_id: str) -> ToolResult:
    return ToolResult(success=False, error=str(StructuredError.object_not_found(object_id)))


@tool_boundary
def move_object(ctx: ToolContext, object_id: str, x: float, y: float) -> ToolResult:
    obj = ctx.arena.get(object_id)
    if obj is None:
        return _not_found(object_id)
    ctx.patch_object(obj, x=sanitize_coord(x), y=sanitize_coord(y))
    return ToolResult(success=True, object_id=object_id)


@tool_boundary
def resize_object(ctx: ToolContext, object_id: str, width: float, height: float) -> ToolResult:
    obj = ctx.arena.get(object_id)
    if obj is None:
        return _not_found(object_id)
    ctx.patch_object(obj, width=sanitize_size(width), height=sanitize_size(height))
    return ToolResult(success=True, object_id=object_id)


@tool_boundary
def update_text(ctx: ToolContext, object_id: str, text: str) -> ToolResult:
    obj = ctx.arena.get(object_id)
    if obj is None:
        return _not_found(object_id)
    ctx.patch_object(obj, text=sanitize_text(text))
    return ToolResult(success=True, object_id=object_id)


@tool_boundary
def change_color(ctx: ToolContext, object_id: str, color: str) -> ToolResult:
    obj = ctx.arena.get(object_id)
    if obj is None:
        return _not_found(object_id)
    ctx.patch_object(obj, color=resolve_color(color))
    return ToolResult(success=True, object_id=object_id)


@tool_boundary
def add_object_to_frame(ctx: ToolContext, object_id: str, frame_id: str) -> ToolResult:
    if not object_id or not frame_id:
        return ToolResult(success=False, error="Missing objectId or frameId")
    frame = ctx.arena.get_frame(frame_id)
    if frame is None:
        return ToolResult(success=False, error=str(StructuredError.frame_not_found(frame_id)))
    obj = ctx.arena.get(object_id)
    if obj is None:
        return _not_found(object_id)

    children = [c for c in ctx.arena.children_of(frame_id) if c.id != object_id]
    slot = place_in_frame(frame, children, obj.width, obj.height)
    ctx.patch_object(obj, x=slot.x, y=slot.y, parent_id=frame_id)
    if slot.expansion:
        ctx.patch_object(frame, width=slot.expansion[0], height=slot.expansion[1])
    return ToolResult(success=True, object_id=object_id)


@tool_boundary
def remove_object_from_frame(ctx: ToolContext, object_id: str) -> ToolResult:
    obj = ctx.arena.get(object_id)
    if obj is None:
        return _not_found(object_id)
    ctx.patch_object(obj, parent_id=None)
    return ToolResult(success=True, object_id=object_id)


@tool_boundary
def arrange_objects(
    ctx: ToolContext, object_ids: list[str], layout: str = "grid", spacing: float | None = None,
) -> ToolResult:
    """Lay objects out as a grid, row, or column around their current center."""
    if not object_ids:
        return ToolResult(success=False, error="No object IDs provided")
    gap = max(0.0, min(float(spacing), 200.0)) if spacing is not None else 20.0
    layout = layout if layout in LAYOUTS else "grid"
    objects = [o for o in (ctx.arena.get(i) for i in object_ids) if o is not None]
    if not objects:
        return ToolResult(success=False, error="No valid objects found for given IDs")

    min_x = min(o.x for o in objects)
    min_y = min(o.y for o in objects)
    max_x = max(o.x + o.width for o in objects)
    max_y = max(o.y + o.height for o in objects)
    center_x = (min_x + max_x) / 2
    center_y = (min_y + max_y) / 2

    positions: list[tuple[float, float]] = []
    if layout == "row":
        total = sum(o.width for o in objects) + gap * (len(objects) - 1)
        cur = center_x - total / 2
        row_y = center_y - max(o.height for o in objects) / 2
        for o in objects:
            positions.append((cur, row_y))
            cur += o.width + gap
    elif layout == "column":
        total = sum(o.height for o in objects) + gap * (len(objects) - 1)
        cur = center_y - total / 2
        col_x = center_x - max(o.width for o in objects) / 2
        for o in objects:
            positions.append((col_x, cur))
            cur += o.height + gap
    else:
        cols = math.ceil(math.sqrt(len(objects)))
        rows = math.ceil(len(objects) / cols)
        cell_w = max(o.width for o in objects) + gap
        cell_h = max(o.height for o in objects) + gap
        start_x = center_x - (cols * cell_w - gap) / 2
        start_y = center_y - (rows * cell_h - gap) / 2
        for i in range(len(objects)):
            r, c = divmod(i, cols)
            positions.append((start_x + c * cell_w, start_y + r * cell_h))

    updated: list[str] = []
    for obj, (px, py) in zip(objects, positions):
        ctx.patch_object(obj, x=px, y=py)
        updated.append(obj.id)
    return ToolResult(
        success=True, data={"updatedIds": updated, "layout": layout, "count": len(updated)},
    )


@tool_boundary
def rearrange_frame(ctx: ToolContext, frame_id: str) -> ToolResult:
    """Re-grid a frame's children and grow the frame to fit them."""
    frame = ctx.arena.get_frame(frame_id)
    if frame is None:
        return ToolResult(success=False, error=str(StructuredError.frame_not_found(frame_id)))
    children = ctx.arena.children_of(frame_id)
    if not children:
        return ToolResult(success=True, data={"updatedIds": [], "message": "Frame is empty"})

    positions = arrange_children_in_grid(frame, children)
    expansion = frame_expansion_for_children(frame, len(children))
    if expansion:
        ctx.patch_object(frame, width=expansion[0], height=expansion[1])

    updated: list[str] = []
    for child in children:
        px, py = positions[child.id]
        ctx.patch_object(child, x=px, y=py)
        updated.append(child.id)
    return ToolResult(
        success=True, data={"updatedIds": updated, "count": len(updated), "frameId": frame_id},
    )
