"""Request-scoped tool state: viewport, object arena, placement cursor, results."""

from __future__ import annotations

import functools
import logging
import random
import re
import time
import uuid
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

from boardpilot.storage.sqlite_store import CanvasObject, SqliteStore
from boardpilot.tools.placement import resolve_placement

logger = logging.getLogger(__name__)

DEFAULT_COLOR = "#FBBF24"
FRAME_COLOR = "#F3F4F6"

COLOR_NAMES = {
    "yellow": "#FBBF24",
    "pink": "#F472B6",
    "blue": "#3B82F6",
    "green": "#22C55E",
    "orange": "#F97316",
    "purple": "#A855F7",
    "red": "#EF4444",
    "gray": "#9CA3AF",
    "grey": "#9CA3AF",
    "white": "#FFFFFF",
}

PALETTE = [
    "#FBBF24", "#F472B6", "#3B82F6", "#22C55E",
    "#F97316", "#A855F7", "#EF4444", "#9CA3AF",
]

_HEX_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")


def resolve_color(color: object) -> str:
    """Map a color name, hex code, or "random" to a hex code.

    Unknown values fall back to the default note yellow.
    """
    if not isinstance(color, str) or not color:
        return DEFAULT_COLOR
    value = color.strip()
    if value.lower() == "random":
        return random.choice(PALETTE)
    if _HEX_RE.match(value):
        return value
    return COLOR_NAMES.get(value.lower(), DEFAULT_COLOR)


@dataclass
class Viewport:
    min_x: float
    min_y: float
    max_x: float
    max_y: float
    center_x: float
    center_y: float
    scale: float = 1.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Viewport:
        return cls(
            min_x=float(data["min_x"]),
            min_y=float(data["min_y"]),
            max_x=float(data["max_x"]),
            max_y=float(data["max_y"]),
            center_x=float(data["center_x"]),
            center_y=float(data["center_y"]),
            scale=float(data.get("scale", 1.0)),
        )


class ObjectArena:
    """In-memory mirror of the canvas objects, indexed by id.

    Every tool write goes through the store first and then into the arena,
    so placement decisions made later in the same command see earlier
    creates.
    """

    def __init__(self, objects: list[CanvasObject] | None = None) -> None:
        self._by_id: dict[str, CanvasObject] = {}
        for obj in objects or []:
            self._by_id[obj.id] = obj

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, object_id: object) -> bool:
        return object_id in self._by_id

    def __iter__(self) -> Iterator[CanvasObject]:
        return iter(list(self._by_id.values()))

    def get(self, object_id: str) -> CanvasObject | None:
        return self._by_id.get(object_id)

    def get_frame(self, frame_id: str) -> CanvasObject | None:
        obj = self._by_id.get(frame_id)
        if obj is None or obj.type != "frame":
            return None
        return obj

    def add(self, obj: CanvasObject) -> None:
        self._by_id[obj.id] = obj

    def remove(self, object_ids: list[str]) -> None:
        gone = set(object_ids)
        for object_id in gone:
            self._by_id.pop(object_id, None)
        for obj in self._by_id.values():
            if obj.parent_id in gone:
                obj.parent_id = None

    def clear(self) -> None:
        self._by_id.clear()

    def children_of(self, frame_id: str) -> list[CanvasObject]:
        return [o for o in self._by_id.values() if o.parent_id == frame_id]

    def snapshot(self) -> list[CanvasObject]:
        return list(self._by_id.values())


@dataclass
class PlacementCursor:
    """Batch grid for creates that give neither a frame nor coordinates.

    The anchor is resolved on first use near the viewport center; later
    creates fill a ``max_cols``-wide grid from there.
    """

    gap: float = 20
    max_cols: int = 4
    anchor: tuple[float, float] | None = None
    next_index: int = 0
    cell_width: float = 0
    cell_height: float = 0

    def next_slot(
        self, w: float, h: float, viewport: Viewport, arena: ObjectArena,
    ) -> tuple[float, float]:
        if self.anchor is None:
            self.anchor = resolve_placement(
                viewport.center_x - w / 2,
                viewport.center_y - h / 2,
                w, h, viewport, arena,
            )
            self.next_index = 0
            self.cell_width = w + self.gap
            self.cell_height = h + self.gap
        row, col = divmod(self.next_index, self.max_cols)
        self.next_index += 1
        return (
            self.anchor[0] + col * self.cell_width,
            self.anchor[1] + row * self.cell_height,
        )

    def reset(self) -> None:
        self.anchor = None
        self.next_index = 0


@dataclass
class ToolContext:
    store: SqliteStore
    canvas_id: str
    user_id: str
    viewport: Viewport
    selected_ids: list[str] = field(default_factory=list)
    arena: ObjectArena = field(default_factory=ObjectArena)
    cursor: PlacementCursor = field(default_factory=PlacementCursor)

    def new_object(self, type_: str, x: float, y: float, w: float, h: float, **kw: Any) -> CanvasObject:
        """Persist a new object, mirror it into the arena, and return it."""
        z_offset = kw.pop("z_offset", 0)
        obj = CanvasObject(
            id=str(uuid.uuid4()),
            type=type_,
            x=x, y=y, width=w, height=h,
            z_index=int(time.time() * 1000) + z_offset,
            created_by=self.user_id,
            **kw,
        )
        self.store.insert_object(self.canvas_id, obj)
        self.arena.add(obj)
        return obj

    def patch_object(self, obj: CanvasObject, **changes: Any) -> None:
        """Persist changes to an existing object and apply them to the mirror."""
        self.store.update_object(self.canvas_id, obj.id, **changes)
        for key, value in changes.items():
            setattr(obj, key, value)


@dataclass
class ToolResult:
    success: bool
    object_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready form sent back to the model."""
        payload: dict[str, Any] = {"success": self.success}
        if self.object_id:
            payload["objectId"] = self.object_id
        if self.data:
            payload["data"] = self.data
        if self.error:
            payload["error"] = self.error
        return payload


def tool_boundary(fn: Callable[..., ToolResult]) -> Callable[..., ToolResult]:
    """Turn any exception escaping a tool into a failed ToolResult."""

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> ToolResult:
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            logger.warning("tool %s failed: %s", fn.__name__, e)
            return ToolResult(success=False, error=str(e))

    return wrapper
