"""Free placement: collision-avoiding position search and value clamping."""

from __future__ import annotations

import math
from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from boardpilot.storage.sqlite_store import CanvasObject
    from boardpilot.tools.context import Viewport

SIZE_MIN = 50
SIZE_MAX = 2000
COORD_MIN = -50000
COORD_MAX = 50000
TEXT_MAX_LENGTH = 500

SEARCH_STEP = 40
SEARCH_MAX_RADIUS = 1200
DEFAULT_PADDING = 20


def clamp_value(val: float, lo: float, hi: float) -> float:
    return max(lo, min(val, hi))


def _overlaps(
    x: float, y: float, w: float, h: float,
    existing: list[CanvasObject], padding: float,
) -> bool:
    for obj in existing:
        if (
            x < obj.x + obj.width + padding
            and x + w + padding > obj.x
            and y < obj.y + obj.height + padding
            and y + h + padding > obj.y
        ):
            return True
    return False


def clamp_to_viewport(
    x: float, y: float, w: float, h: float, viewport: Viewport,
) -> tuple[float, float]:
    """Keep a position within two viewport-sizes of the visible area."""
    margin = max(viewport.max_x - viewport.min_x, viewport.max_y - viewport.min_y) * 2
    cx = max(viewport.min_x - margin, min(x, viewport.max_x + margin - w))
    cy = max(viewport.min_y - margin, min(y, viewport.max_y + margin - h))
    return cx, cy


def resolve_placement(
    desired_x: float,
    desired_y: float,
    w: float,
    h: float,
    viewport: Viewport,
    existing: Iterable[CanvasObject],
    padding: float = DEFAULT_PADDING,
) -> tuple[float, float]:
    """Find a non-overlapping position near ``(desired_x, desired_y)``.

    Tries the desired spot first, then walks outward in rings of
    ``SEARCH_STEP`` checking eight directions per ring. Past the maximum
    radius the object is pushed to the right of the search area.
    """
    existing = list(existing)
    if not _overlaps(desired_x, desired_y, w, h, existing, padding):
        return clamp_to_viewport(desired_x, desired_y, w, h, viewport)

    for radius in range(SEARCH_STEP, SEARCH_MAX_RADIUS + 1, SEARCH_STEP):
        offsets = (
            (radius, 0), (-radius, 0), (0, radius), (0, -radius),
            (radius, radius), (-radius, radius), (radius, -radius), (-radius, -radius),
        )
        for dx, dy in offsets:
            cx, cy = desired_x + dx, desired_y + dy
            if not _overlaps(cx, cy, w, h, existing, padding):
                return clamp_to_viewport(cx, cy, w, h, viewport)

    return clamp_to_viewport(
        desired_x + SEARCH_MAX_RADIUS + SEARCH_STEP, desired_y, w, h, viewport,
    )


def sanitize_text(text: object) -> str:
    if not text:
        return ""
    return str(text)[:TEXT_MAX_LENGTH]


def sanitize_coord(val: object) -> float:
    """Coerce to a finite coordinate; missing or NaN becomes 0."""
    try:
        f = float(val)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(f):
        return 0.0
    return clamp_value(f, COORD_MIN, COORD_MAX)


def sanitize_size(val: object, lo: float = SIZE_MIN, hi: float = SIZE_MAX) -> float:
    """Coerce to a size within ``[lo, hi]``; missing or NaN becomes ``lo``."""
    try:
        f = float(val)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return float(lo)
    if math.isnan(f):
        return float(lo)
    return clamp_value(f, lo, hi)
