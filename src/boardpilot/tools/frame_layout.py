"""Grid layout of children inside a frame (container)."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from boardpilot.storage.sqlite_store import CanvasObject

FRAME_TITLE_HEIGHT = 40
FRAME_PADDING = 20
OBJECT_GAP = 15
STICKY_SIZE = 150


@dataclass
class FrameSlot:
    """Where a new child goes, and the frame size needed to hold it."""

    x: float
    y: float
    expansion: tuple[float, float] | None = None


def _grid_columns(frame_width: float, object_width: float) -> int:
    content_width = frame_width - 2 * FRAME_PADDING
    return max(1, math.floor((content_width + OBJECT_GAP) / (object_width + OBJECT_GAP)))


def _needed_height(slots: int, cols: int, object_height: float) -> float:
    rows = math.ceil(slots / cols)
    return FRAME_TITLE_HEIGHT + FRAME_PADDING * 2 + rows * (object_height + OBJECT_GAP) - OBJECT_GAP


def place_in_frame(
    frame: CanvasObject,
    children: list[CanvasObject],
    object_width: float = STICKY_SIZE,
    object_height: float = STICKY_SIZE,
    reserve: int = 1,
) -> FrameSlot:
    """Next free grid cell below the frame title, growing the frame if needed.

    Existing children are snapped back onto grid cells to find which are
    occupied; the frame is grown to fit all children plus ``reserve`` spare
    slots.
    """
    left = frame.x + FRAME_PADDING
    top = frame.y + FRAME_TITLE_HEIGHT + FRAME_PADDING
    cols = _grid_columns(frame.width, object_width)

    occupied: set[tuple[int, int]] = set()
    for child in children:
        col = round((child.x - left) / (object_width + OBJECT_GAP))
        row = round((child.y - top) / (object_height + OBJECT_GAP))
        if 0 <= col < cols and row >= 0:
            occupied.add((row, col))

    target_row, target_col = 0, 0
    search = len(children) + reserve + 1
    for i in range(search * cols):
        r, c = divmod(i, cols)
        if (r, c) not in occupied:
            target_row, target_col = r, c
            break

    x = left + target_col * (object_width + OBJECT_GAP)
    y = top + target_row * (object_height + OBJECT_GAP)

    needed = _needed_height(len(children) + 1 + reserve, cols, object_height)
    expansion = (frame.width, max(frame.height, needed)) if needed > frame.height else None
    return FrameSlot(x=x, y=y, expansion=expansion)


def calculate_frame_size(
    object_count: int,
    object_width: float = STICKY_SIZE,
    object_height: float = STICKY_SIZE,
    max_cols: int = 4,
    reserve: int = 1,
) -> tuple[float, float]:
    """Frame ``(width, height)`` that holds ``object_count`` children plus spares."""
    cols = min(max(1, object_count), max_cols)
    rows = math.ceil((object_count + reserve) / cols)
    width = FRAME_PADDING * 2 + cols * (object_width + OBJECT_GAP) - OBJECT_GAP
    height = FRAME_TITLE_HEIGHT + FRAME_PADDING * 2 + rows * (object_height + OBJECT_GAP) - OBJECT_GAP
    return width, height


def arrange_children_in_grid(
    frame: CanvasObject,
    children: list[CanvasObject],
    object_width: float = STICKY_SIZE,
    object_height: float = STICKY_SIZE,
) -> dict[str, tuple[float, float]]:
    """Tidy row-first grid positions for ``children``, keyed by object id."""
    left = frame.x + FRAME_PADDING
    top = frame.y + FRAME_TITLE_HEIGHT + FRAME_PADDING
    cols = _grid_columns(frame.width, object_width)
    positions: dict[str, tuple[float, float]] = {}
    for index, child in enumerate(children):
        row, col = divmod(index, cols)
        positions[child.id] = (
            left + col * (object_width + OBJECT_GAP),
            top + row * (object_height + OBJECT_GAP),
        )
    return positions


def frame_expansion_for_children(
    frame: CanvasObject,
    child_count: int,
    object_width: float = STICKY_SIZE,
    object_height: float = STICKY_SIZE,
    reserve: int = 1,
) -> tuple[float, float] | None:
    """New ``(width, height)`` if the frame is too short for its children, else None."""
    cols = _grid_columns(frame.width, object_width)
    needed = _needed_height(child_count + reserve, cols, object_height)
    if needed > frame.height:
        return frame.width, needed
    return None
