"""Create tools: notes, shapes, frames, connectors, and bulk creates."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from boardpilot.errors import StructuredError
from boardpilot.storage.sqlite_store import Connector
from boardpilot.tools.context import FRAME_COLOR, ToolContext, ToolResult, resolve_color, tool_boundary
from boardpilot.tools.frame_layout import STICKY_SIZE, calculate_frame_size, place_in_frame
from boardpilot.tools.placement import (
    SIZE_MAX,
    SIZE_MIN,
    resolve_placement,
    sanitize_coord,
    sanitize_size,
    sanitize_text,
)

logger = logging.getLogger(__name__)

SHAPE_KINDS = ("rectangle", "circle", "line")
BULK_KINDS = ("sticky", "rectangle", "circle", "frame")
CONNECTOR_STYLES = ("arrow", "line")
FRAME_MIN_WIDTH = 200
FRAME_MIN_HEIGHT = 150


def _expand_frame(ctx: ToolContext, frame_id: str, size: tuple[float, float]) -> None:
    frame = ctx.arena.get(frame_id)
    if frame is not None:
        ctx.patch_object(frame, width=size[0], height=size[1])


def _position(
    ctx: ToolContext,
    w: float,
    h: float,
    x: float | None,
    y: float | None,
    parent_id: str | None,
) -> tuple[float, float, str | None] | StructuredError:
    """Resolve where a new leaf goes.

    In a frame: next open grid slot (the frame grows as needed). With
    explicit coordinates: nearest free spot. Otherwise: the batch grid.
    """
    if parent_id:
        frame = ctx.arena.get_frame(parent_id)
        if frame is None:
            return StructuredError.frame_not_found(parent_id)
        slot = place_in_frame(frame, ctx.arena.children_of(parent_id), w, h)
        if slot.expansion:
            _expand_frame(ctx, parent_id, slot.expansion)
        return slot.x, slot.y, parent_id
    if x is not None and y is not None:
        px, py = resolve_placement(
            sanitize_coord(x), sanitize_coord(y), w, h, ctx.viewport, ctx.arena,
        )
        return px, py, None
    px, py = ctx.cursor.next_slot(w, h, ctx.viewport, ctx.arena)
    return px, py, None


def _two_corner(
    x: float | None, y: float | None, x2: float | None, y2: float | None,
    width: float | None, height: float | None,
) -> tuple[float | None, float | None, float | None, float | None]:
    if x is not None and y is not None and x2 is not None and y2 is not None:
        return min(x, x2), min(y, y2), abs(x2 - x), abs(y2 - y)
    return x, y, width, height


def frame_size(
    width: float | None, height: float | None, expected_child_count: int | None,
) -> tuple[float, float]:
    """Frame size from explicit dimensions, grown to fit the expected children."""
    if expected_child_count and expected_child_count > 0:
        auto_w, auto_h = calculate_frame_size(expected_child_count)
        w = max(sanitize_size(width if width is not None else auto_w, FRAME_MIN_WIDTH, SIZE_MAX), auto_w)
        h = max(sanitize_size(height if height is not None else auto_h, FRAME_MIN_HEIGHT, SIZE_MAX), auto_h)
        return w, h
    return (
        sanitize_size(width if width is not None else 400, FRAME_MIN_WIDTH, SIZE_MAX),
        sanitize_size(height if height is not None else 300, FRAME_MIN_HEIGHT, SIZE_MAX),
    )


@tool_boundary
def create_sticky_note(
    ctx: ToolContext,
    text: str = "",
    x: float | None = None,
    y: float | None = None,
    color: str | None = None,
    parent_id: str | None = None,
) -> ToolResult:
    placed = _position(ctx, STICKY_SIZE, STICKY_SIZE, x, y, parent_id)
    if isinstance(placed, StructuredError):
        return ToolResult(success=False, error=str(placed))
    px, py, parent = placed
    obj = ctx.new_object(
        "sticky", px, py, STICKY_SIZE, STICKY_SIZE,
        color=resolve_color(color), text=sanitize_text(text), parent_id=parent,
    )
    return ToolResult(success=True, object_id=obj.id)


@tool_boundary
def create_shape(
    ctx: ToolContext,
    kind: str = "rectangle",
    x: float | None = None,
    y: float | None = None,
    width: float | None = None,
    height: float | None = None,
    color: str | None = None,
    parent_id: str | None = None,
    x2: float | None = None,
    y2: float | None = None,
) -> ToolResult:
    shape = kind if kind in SHAPE_KINDS else "rectangle"
    x, y, width, height = _two_corner(x, y, x2, y2, width, height)
    w = sanitize_size(width if width is not None else 150)
    h = sanitize_size(height if height is not None else 100)
    placed = _position(ctx, w, h, x, y, parent_id)
    if isinstance(placed, StructuredError):
        return ToolResult(success=False, error=str(placed))
    px, py, parent = placed
    obj = ctx.new_object(shape, px, py, w, h, color=resolve_color(color), parent_id=parent)
    return ToolResult(success=True, object_id=obj.id)


@tool_boundary
def create_frame(
    ctx: ToolContext,
    title: str = "",
    x: float | None = None,
    y: float | None = None,
    width: float | None = None,
    height: float | None = None,
    expected_child_count: int | None = None,
) -> ToolResult:
    w, h = frame_size(width, height, expected_child_count)
    if x is None or y is None:
        x = ctx.viewport.center_x - w / 2
        y = ctx.viewport.center_y - h / 2
    px, py = resolve_placement(sanitize_coord(x), sanitize_coord(y), w, h, ctx.viewport, ctx.arena)
    # Frames render below their children
    obj = ctx.new_object(
        "frame", px, py, w, h, color=FRAME_COLOR, text=sanitize_text(title), z_offset=-1000,
    )
    return ToolResult(success=True, object_id=obj.id)


@tool_boundary
def create_connector(
    ctx: ToolContext, from_id: str, to_id: str, style: str = "arrow",
) -> ToolResult:
    if not from_id or not to_id:
        return ToolResult(success=False, error="Missing fromId or toId")
    for endpoint in (from_id, to_id):
        if endpoint not in ctx.arena:
            return ToolResult(success=False, error=str(StructuredError.object_not_found(endpoint)))
    connector = Connector(
        id=str(uuid.uuid4()),
        from_id=from_id,
        to_id=to_id,
        style=style if style in CONNECTOR_STYLES else "arrow",
        created_by=ctx.user_id,
    )
    ctx.store.insert_connector(ctx.canvas_id, connector)
    return ToolResult(success=True, object_id=connector.id)


@tool_boundary
def bulk_create(ctx: ToolContext, items: list[dict[str, Any]]) -> ToolResult:
    """Create many objects in one call. Items fail independently."""
    if not items:
        return ToolResult(success=False, error="No items provided")

    created: list[str] = []
    failed = 0
    last_error = ""
    for item in items:
        kind = item.get("type")
        if kind not in BULK_KINDS:
            failed += 1
            last_error = f"Unsupported type: {kind}"
            continue
        x, y, width, height = _two_corner(
            item.get("x"), item.get("y"), item.get("x2"), item.get("y2"),
            item.get("width"), item.get("height"),
        )
        try:
            if kind == "frame":
                w, h = frame_size(width, height, item.get("expected_child_count"))
                if x is None or y is None:
                    px, py = ctx.cursor.next_slot(w, h, ctx.viewport, ctx.arena)
                else:
                    px, py = resolve_placement(
                        sanitize_coord(x), sanitize_coord(y), w, h, ctx.viewport, ctx.arena,
                    )
                obj = ctx.new_object(
                    "frame", px, py, w, h, color=FRAME_COLOR,
                    text=sanitize_text(item.get("text")), z_offset=-1000 + len(created),
                )
            else:
                if kind == "sticky":
                    w = h = STICKY_SIZE
                else:
                    w = sanitize_size(width if width is not None else 100, SIZE_MIN, SIZE_MAX)
                    h = sanitize_size(height if height is not None else 100, SIZE_MIN, SIZE_MAX)
                placed = _position(ctx, w, h, x, y, item.get("parent_id"))
                if isinstance(placed, StructuredError):
                    failed += 1
                    last_error = str(placed)
                    continue
                px, py, parent = placed
                obj = ctx.new_object(
                    kind, px, py, w, h, color=resolve_color(item.get("color")),
                    text=sanitize_text(item.get("text")), parent_id=parent,
                    z_offset=len(created),
                )
        except Exception as e:
            logger.warning("bulk_create item failed: %s", e)
            failed += 1
            last_error = str(e)
            continue
        created.append(obj.id)

    data: dict[str, Any] = {"createdIds": created, "count": len(created)}
    if failed:
        data["failed"] = failed
    if not created:
        return ToolResult(success=False, data=data, error=f"All {failed} item(s) failed: {last_error}")
    return ToolResult(success=True, data=data)
