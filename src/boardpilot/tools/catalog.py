"""Tool catalog: closed set of tool names, typed arguments, declarations, dispatch.

The model sees camelCase names and arguments (``TOOL_DECLARATIONS``);
``parse_tool_args`` turns its raw JSON into one of the argument
dataclasses below and ``dispatch_tool`` runs the matching tool.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from google.genai import types

from boardpilot.tools.board_context import get_context
from boardpilot.tools.context import ToolContext, ToolResult
from boardpilot.tools.create import (
    bulk_create,
    create_connector,
    create_frame,
    create_shape,
    create_sticky_note,
)
from boardpilot.tools.delete import bulk_delete
from boardpilot.tools.edit import (
    add_object_to_frame,
    arrange_objects,
    change_color,
    move_object,
    rearrange_frame,
    remove_object_from_frame,
    resize_object,
    update_text,
)

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    CREATE_STICKY_NOTE = "createStickyNote"
    CREATE_SHAPE = "createShape"
    CREATE_FRAME = "createFrame"
    CREATE_CONNECTOR = "createConnector"
    MOVE_OBJECT = "moveObject"
    RESIZE_OBJECT = "resizeObject"
    UPDATE_TEXT = "updateText"
    CHANGE_COLOR = "changeColor"
    ADD_OBJECT_TO_FRAME = "addObjectToFrame"
    REMOVE_OBJECT_FROM_FRAME = "removeObjectFromFrame"
    BULK_DELETE = "bulkDelete"
    BULK_CREATE = "bulkCreate"
    ARRANGE_OBJECTS = "arrangeObjects"
    REARRANGE_FRAME = "rearrangeFrame"
    GET_CONTEXT = "getContext"


# Model-facing names of tools whose objectId is a new canvas object
CREATE_TOOLS = frozenset(t.value for t in (
    ToolName.CREATE_STICKY_NOTE, ToolName.CREATE_SHAPE, ToolName.CREATE_FRAME,
))

# Connectors are links, not canvas objects; their ids are not tallied
CONNECTOR_TOOLS = frozenset({ToolName.CREATE_CONNECTOR.value})


# ---------------------------------------------------------------------------
# Typed arguments
# ---------------------------------------------------------------------------


@dataclass
class StickyArgs:
    text: str = ""
    x: float | None = None
    y: float | None = None
    color: str | None = None
    parent_id: str | None = None


@dataclass
class ShapeArgs:
    kind: str = "rectangle"
    x: float | None = None
    y: float | None = None
    width: float | None = None
    height: float | None = None
    color: str | None = None
    parent_id: str | None = None
    x2: float | None = None
    y2: float | None = None


@dataclass
class FrameArgs:
    title: str = ""
    x: float | None = None
    y: float | None = None
    width: float | None = None
    height: float | None = None
    expected_child_count: int | None = None


@dataclass
class ConnectorArgs:
    from_id: str = ""
    to_id: str = ""
    style: str = "arrow"


@dataclass
class MoveArgs:
    object_id: str = ""
    x: float | None = None
    y: float | None = None


@dataclass
class ResizeArgs:
    object_id: str = ""
    width: float | None = None
    height: float | None = None


@dataclass
class TextArgs:
    object_id: str = ""
    text: str = ""


@dataclass
class ColorArgs:
    object_id: str = ""
    color: str = ""


@dataclass
class FrameMembershipArgs:
    object_id: str = ""
    frame_id: str | None = None


@dataclass
class BulkDeleteArgs:
    mode: str = "by_ids"
    object_ids: list[str] = field(default_factory=list)
    object_type: str | None = None


@dataclass
class BulkCreateArgs:
    items: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ArrangeArgs:
    object_ids: list[str] = field(default_factory=list)
    layout: str = "grid"
    spacing: float | None = None


@dataclass
class RearrangeArgs:
    frame_id: str = ""


@dataclass
class ContextArgs:
    scope: str = "all"
    frame_id: str | None = None
    object_ids: list[str] = field(default_factory=list)
    type_filter: str | None = None


ToolArgs = Union[
    StickyArgs, ShapeArgs, FrameArgs, ConnectorArgs, MoveArgs, ResizeArgs, TextArgs,
    ColorArgs, FrameMembershipArgs, BulkDeleteArgs, BulkCreateArgs, ArrangeArgs,
    RearrangeArgs, ContextArgs,
]


def _num(raw: dict[str, Any], key: str) -> float | None:
    val = raw.get(key)
    if val is None or isinstance(val, bool):
        return None
    try:
        f = float(val)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(f) else f


def _int(raw: dict[str, Any], key: str) -> int | None:
    f = _num(raw, key)
    return int(f) if f is not None else None


def _str(raw: dict[str, Any], key: str, default: str = "") -> str:
    val = raw.get(key)
    return str(val) if val is not None else default


def _opt_str(raw: dict[str, Any], key: str) -> str | None:
    val = raw.get(key)
    return str(val) if val else None


def _ids(raw: dict[str, Any], key: str) -> list[str]:
    val = raw.get(key) or []
    if isinstance(val, str):
        return [val]
    return [str(v) for v in val if v]


def _bulk_item(raw: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": raw.get("type"),
        "text": _str(raw, "text"),
        "color": _opt_str(raw, "color"),
        "width": _num(raw, "width"),
        "height": _num(raw, "height"),
        "x": _num(raw, "x"),
        "y": _num(raw, "y"),
        "x2": _num(raw, "x2"),
        "y2": _num(raw, "y2"),
        "parent_id": _opt_str(raw, "parentFrameId"),
        "expected_child_count": _int(raw, "expectedChildCount"),
    }


def parse_tool_args(name: ToolName, raw: dict[str, Any]) -> ToolArgs:
    """Build the typed arguments for ``name`` from the model's JSON."""
    match name:
        case ToolName.CREATE_STICKY_NOTE:
            return StickyArgs(
                text=_str(raw, "text"), x=_num(raw, "x"), y=_num(raw, "y"),
                color=_opt_str(raw, "color"), parent_id=_opt_str(raw, "parentFrameId"),
            )
        case ToolName.CREATE_SHAPE:
            return ShapeArgs(
                kind=_str(raw, "type", "rectangle"), x=_num(raw, "x"), y=_num(raw, "y"),
                width=_num(raw, "width"), height=_num(raw, "height"),
                color=_opt_str(raw, "color"), parent_id=_opt_str(raw, "parentFrameId"),
                x2=_num(raw, "x2"), y2=_num(raw, "y2"),
            )
        case ToolName.CREATE_FRAME:
            return FrameArgs(
                title=_str(raw, "title"), x=_num(raw, "x"), y=_num(raw, "y"),
                width=_num(raw, "width"), height=_num(raw, "height"),
                expected_child_count=_int(raw, "expectedChildCount"),
            )
        case ToolName.CREATE_CONNECTOR:
            return ConnectorArgs(
                from_id=_str(raw, "fromId"), to_id=_str(raw, "toId"),
                style=_str(raw, "style", "arrow"),
            )
        case ToolName.MOVE_OBJECT:
            return MoveArgs(object_id=_str(raw, "objectId"), x=_num(raw, "x"), y=_num(raw, "y"))
        case ToolName.RESIZE_OBJECT:
            return ResizeArgs(
                object_id=_str(raw, "objectId"),
                width=_num(raw, "width"), height=_num(raw, "height"),
            )
        case ToolName.UPDATE_TEXT:
            return TextArgs(object_id=_str(raw, "objectId"), text=_str(raw, "newText"))
        case ToolName.CHANGE_COLOR:
            return ColorArgs(object_id=_str(raw, "objectId"), color=_str(raw, "color"))
        case ToolName.ADD_OBJECT_TO_FRAME | ToolName.REMOVE_OBJECT_FROM_FRAME:
            return FrameMembershipArgs(
                object_id=_str(raw, "objectId"), frame_id=_opt_str(raw, "frameId"),
            )
        case ToolName.BULK_DELETE:
            return BulkDeleteArgs(
                mode=_str(raw, "mode", "by_ids"), object_ids=_ids(raw, "objectIds"),
                object_type=_opt_str(raw, "objectType"),
            )
        case ToolName.BULK_CREATE:
            items = raw.get("items") or []
            return BulkCreateArgs(items=[_bulk_item(i) for i in items if isinstance(i, dict)])
        case ToolName.ARRANGE_OBJECTS:
            return ArrangeArgs(
                object_ids=_ids(raw, "objectIds"), layout=_str(raw, "layout", "grid"),
                spacing=_num(raw, "spacing"),
            )
        case ToolName.REARRANGE_FRAME:
            return RearrangeArgs(frame_id=_str(raw, "frameId"))
        case ToolName.GET_CONTEXT:
            return ContextArgs(
                scope=_str(raw, "scope", "all"), frame_id=_opt_str(raw, "frameId"),
                object_ids=_ids(raw, "objectIds"), type_filter=_opt_str(raw, "typeFilter"),
            )


def dispatch_tool(ctx: ToolContext, name: ToolName, args: ToolArgs) -> ToolResult:
    """Run one tool. Never raises; failures come back as ``success=False``."""
    logger.debug("  tool exec: %s(%s)", name.value, args)
    t0 = time.perf_counter()
    match name, args:
        case ToolName.CREATE_STICKY_NOTE, StickyArgs():
            result = create_sticky_note(ctx, args.text, args.x, args.y, args.color, args.parent_id)
        case ToolName.CREATE_SHAPE, ShapeArgs():
            result = create_shape(
                ctx, args.kind, args.x, args.y, args.width, args.height,
                args.color, args.parent_id, args.x2, args.y2,
            )
        case ToolName.CREATE_FRAME, FrameArgs():
            result = create_frame(
                ctx, args.title, args.x, args.y, args.width, args.height,
                args.expected_child_count,
            )
        case ToolName.CREATE_CONNECTOR, ConnectorArgs():
            result = create_connector(ctx, args.from_id, args.to_id, args.style)
        case ToolName.MOVE_OBJECT, MoveArgs():
            result = move_object(ctx, args.object_id, args.x, args.y)
        case ToolName.RESIZE_OBJECT, ResizeArgs():
            result = resize_object(ctx, args.object_id, args.width, args.height)
        case ToolName.UPDATE_TEXT, TextArgs():
            result = update_text(ctx, args.object_id, args.text)
        case ToolName.CHANGE_COLOR, ColorArgs():
            result = change_color(ctx, args.object_id, args.color)
        case ToolName.ADD_OBJECT_TO_FRAME, FrameMembershipArgs():
            result = add_object_to_frame(ctx, args.object_id, args.frame_id or "")
        case ToolName.REMOVE_OBJECT_FROM_FRAME, FrameMembershipArgs():
            result = remove_object_from_frame(ctx, args.object_id)
        case ToolName.BULK_DELETE, BulkDeleteArgs():
            result = bulk_delete(ctx, args.mode, args.object_ids, args.object_type)
        case ToolName.BULK_CREATE, BulkCreateArgs():
            result = bulk_create(ctx, args.items)
        case ToolName.ARRANGE_OBJECTS, ArrangeArgs():
            result = arrange_objects(ctx, args.object_ids, args.layout, args.spacing)
        case ToolName.REARRANGE_FRAME, RearrangeArgs():
            result = rearrange_frame(ctx, args.frame_id)
        case ToolName.GET_CONTEXT, ContextArgs():
            result = get_context(ctx, args.scope, args.frame_id, args.object_ids, args.type_filter)
        case _:
            raise TypeError(f"{type(args).__name__} does not match tool {name.value}")
    logger.debug(
        "  tool done: %s -> %s (%.3fs)",
        name.value, "ok" if result.success else result.error, time.perf_counter() - t0,
    )
    return result


def run_tool_call(ctx: ToolContext, name: str, raw_args: dict[str, Any]) -> ToolResult:
    """Parse and dispatch a call by its model-facing name."""
    try:
        tool = ToolName(name)
    except ValueError:
        return ToolResult(success=False, error=f"Unknown tool: {name}")
    return dispatch_tool(ctx, tool, parse_tool_args(tool, raw_args or {}))


# ---------------------------------------------------------------------------
# Model-facing declarations
# ---------------------------------------------------------------------------

_COLOR_HELP = (
    "Hex color code or color name. Available: #FBBF24 (yellow), #F472B6 (pink), "
    "#3B82F6 (blue), #22C55E (green), #F97316 (orange), #A855F7 (purple), "
    "#EF4444 (red), #9CA3AF (gray)"
)
_TYPE_FILTER = ["sticky", "shape", "rectangle", "circle", "frame", "connector"]


def _schema(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


_DECLARATIONS: dict[ToolName, tuple[str, dict[str, Any]]] = {
    ToolName.CREATE_STICKY_NOTE: (
        "Creates a sticky note. With parentFrameId the note goes into the next free grid "
        "slot of that frame (the frame grows if needed) and x/y are ignored. Without x/y "
        "notes are laid out in a tidy grid near the viewport center.",
        _schema({
            "text": {"type": "string", "description": "Text content of the sticky note"},
            "x": {"type": "number", "description": "X position (ignored with parentFrameId)"},
            "y": {"type": "number", "description": "Y position (ignored with parentFrameId)"},
            "color": {"type": "string", "description": _COLOR_HELP},
            "parentFrameId": {"type": "string", "description": "Optional frame to place the note in"},
        }, ["text"]),
    ),
    ToolName.CREATE_SHAPE: (
        "Creates a rectangle, circle, or line. Pass x2/y2 with x/y to define it by two corners.",
        _schema({
            "type": {"type": "string", "enum": ["rectangle", "circle", "line"]},
            "x": {"type": "number"},
            "y": {"type": "number"},
            "x2": {"type": "number", "description": "Opposite corner X (optional)"},
            "y2": {"type": "number", "description": "Opposite corner Y (optional)"},
            "width": {"type": "number", "description": "Width (50-2000)"},
            "height": {"type": "number", "description": "Height (50-2000)"},
            "color": {"type": "string", "description": _COLOR_HELP},
            "parentFrameId": {"type": "string", "description": "Optional frame to place the shape in"},
        }, ["type"]),
    ),
    ToolName.CREATE_FRAME: (
        "Creates a named frame (container). Pass expectedChildCount to size it for that "
        "many children plus one spare slot. Returns the frame id; use it as parentFrameId.",
        _schema({
            "title": {"type": "string", "description": "Frame title"},
            "x": {"type": "number"},
            "y": {"type": "number"},
            "width": {"type": "number", "description": "Width (200-2000)"},
            "height": {"type": "number", "description": "Height (150-2000)"},
            "expectedChildCount": {"type": "number", "description": "Children you plan to add"},
        }, ["title"]),
    ),
    ToolName.CREATE_CONNECTOR: (
        "Creates an arrow or line between two objects.",
        _schema({
            "fromId": {"type": "string", "description": "Source object ID"},
            "toId": {"type": "string", "description": "Target object ID"},
            "style": {"type": "string", "enum": ["arrow", "line"]},
        }, ["fromId", "toId"]),
    ),
    ToolName.MOVE_OBJECT: (
        "Moves an existing object to new coordinates.",
        _schema({
            "objectId": {"type": "string"},
            "x": {"type": "number"},
            "y": {"type": "number"},
        }, ["objectId", "x", "y"]),
    ),
    ToolName.RESIZE_OBJECT: (
        "Resizes an existing object.",
        _schema({
            "objectId": {"type": "string"},
            "width": {"type": "number", "description": "New width (50-2000)"},
            "height": {"type": "number", "description": "New height (50-2000)"},
        }, ["objectId", "width", "height"]),
    ),
    ToolName.UPDATE_TEXT: (
        "Updates the text of a note, shape, or frame title.",
        _schema({
            "objectId": {"type": "string"},
            "newText": {"type": "string", "description": "New text (max 500 chars)"},
        }, ["objectId", "newText"]),
    ),
    ToolName.CHANGE_COLOR: (
        "Changes the fill color of an object.",
        _schema({
            "objectId": {"type": "string"},
            "color": {"type": "string", "description": _COLOR_HELP},
        }, ["objectId", "color"]),
    ),
    ToolName.ADD_OBJECT_TO_FRAME: (
        "Moves an existing object into a frame, into the next free grid slot. "
        "The frame grows if needed.",
        _schema({
            "objectId": {"type": "string"},
            "frameId": {"type": "string"},
        }, ["objectId", "frameId"]),
    ),
    ToolName.REMOVE_OBJECT_FROM_FRAME: (
        "Detaches an object from its frame. The object keeps its position.",
        _schema({"objectId": {"type": "string"}}, ["objectId"]),
    ),
    ToolName.BULK_DELETE: (
        'Deletes objects. "all" clears the whole board, "by_ids" deletes the given ids, '
        '"by_type" deletes every object of a type ("shape" means rectangles, circles and '
        "lines). Connectors attached to deleted objects are removed too.",
        _schema({
            "mode": {"type": "string", "enum": ["all", "by_ids", "by_type"]},
            "objectIds": {"type": "array", "items": {"type": "string"}},
            "objectType": {"type": "string", "enum": _TYPE_FILTER},
        }, ["mode"]),
    ),
    ToolName.BULK_CREATE: (
        "Creates many objects in one call. Items may target a frame via parentFrameId "
        'or be auto-placed in a grid. Color may be a hex code, a name, or "random".',
        _schema({
            "items": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "type": {"type": "string", "enum": ["sticky", "rectangle", "circle", "frame"]},
                        "text": {"type": "string", "description": "Note text or frame title"},
                        "color": {"type": "string"},
                        "width": {"type": "number"},
                        "height": {"type": "number"},
                        "x": {"type": "number"},
                        "y": {"type": "number"},
                        "parentFrameId": {"type": "string"},
                        "expectedChildCount": {"type": "number"},
                    },
                    "required": ["type"],
                },
            },
        }, ["items"]),
    ),
    ToolName.ARRANGE_OBJECTS: (
        "Arranges objects into a grid, row, or column centered on their current "
        "bounding box. No coordinate math needed.",
        _schema({
            "objectIds": {"type": "array", "items": {"type": "string"}},
            "layout": {"type": "string", "enum": ["grid", "row", "column"]},
            "spacing": {"type": "number", "description": "Gap in pixels (default 20, max 200)"},
        }, ["objectIds", "layout"]),
    ),
    ToolName.REARRANGE_FRAME: (
        "Tidies a frame's children into a grid and grows the frame to fit.",
        _schema({"frameId": {"type": "string"}}, ["frameId"]),
    ),
    ToolName.GET_CONTEXT: (
        "Fetches board objects when the digest is not enough. Scopes: all, viewport, "
        "selected, frame (a frame and its children), ids. Capped at 100 objects.",
        _schema({
            "scope": {"type": "string", "enum": ["all", "viewport", "selected", "frame", "ids"]},
            "frameId": {"type": "string"},
            "objectIds": {"type": "array", "items": {"type": "string"}},
            "typeFilter": {"type": "string", "enum": _TYPE_FILTER},
        }, ["scope"]),
    ),
}

TOOL_DECLARATIONS = [
    types.FunctionDeclaration(name=tool.value, description=desc, parameters_json_schema=schema)
    for tool, (desc, schema) in _DECLARATIONS.items()
]


def declarations_for(allowed: tuple[ToolName, ...] | None) -> list[types.FunctionDeclaration]:
    """Declarations for a restricted tool subset (None means every tool).

    getContext is always included so the model can fetch detail the digest left out.
    """
    if allowed is None:
        return list(TOOL_DECLARATIONS)
    names = {t.value for t in allowed} | {ToolName.GET_CONTEXT.value}
    return [d for d in TOOL_DECLARATIONS if d.name in names]
