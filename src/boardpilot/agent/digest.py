"""Token-lean text digest of the canvas for model prompts.

The router decides the scope and whether object detail is needed; this
module only formats. Rough sizes: an empty canvas is one line, a summary
with a handful of frames stays under ~150 tokens, and 50 detailed objects
come to ~1.5k tokens.
"""

from __future__ import annotations

from collections import Counter

from boardpilot.storage.sqlite_store import CanvasObject
from boardpilot.tools.context import Viewport

EMPTY_DIGEST = "The board is currently empty."
DEFAULT_MAX_DETAIL = 50
VIEWPORT_MARGIN = 200
TEXT_PREVIEW = 60

_PLURALS = {"sticky": "stickies"}

SCOPE_LABELS = {
    "viewport": "Visible objects",
    "selected": "Context objects",
    "board": "All objects",
}


def _r(n: float) -> int:
    return round(n)


def format_object_line(obj: CanvasObject) -> str:
    """``OBJ <id> sticky pos=(120,80) 150×150 c=#FBBF24 p=<frame> "text"``.

    Ids are never shortened; the model needs them verbatim for tool calls.
    """
    parts = [f"OBJ {obj.id}", obj.type, f"pos=({_r(obj.x)},{_r(obj.y)})", f"{_r(obj.width)}×{_r(obj.height)}"]
    if obj.color:
        parts.append(f"c={obj.color}")
    if obj.parent_id:
        parts.append(f"p={obj.parent_id}")
    if obj.text:
        parts.append(f'"{obj.text[:TEXT_PREVIEW]}"')
    return " ".join(parts)


def _format_counts(objects: list[CanvasObject]) -> str:
    counts = Counter(o.type for o in objects)
    return ", ".join(
        f"{n} {_PLURALS.get(kind, kind + 's') if n > 1 else kind}" for kind, n in counts.items()
    )


def _in_viewport(obj: CanvasObject, viewport: Viewport) -> bool:
    return (
        obj.x < viewport.max_x + VIEWPORT_MARGIN
        and obj.x + obj.width > viewport.min_x - VIEWPORT_MARGIN
        and obj.y < viewport.max_y + VIEWPORT_MARGIN
        and obj.y + obj.height > viewport.min_y - VIEWPORT_MARGIN
    )


def _scoped_candidates(
    objects: list[CanvasObject], scope: str, viewport: Viewport, selected: set[str],
) -> list[CanvasObject]:
    """Non-frame, non-selected objects relevant to ``scope``, in canvas order."""
    candidates = [o for o in objects if o.id not in selected and o.type != "frame"]
    if scope == "selected":
        frame_ids = {o.id for o in objects if o.id in selected and o.type == "frame"}
        return [o for o in candidates if o.parent_id in frame_ids] if frame_ids else []
    if scope == "viewport":
        return [o for o in candidates if _in_viewport(o, viewport)]
    return candidates


def build_digest(
    objects: list[CanvasObject],
    selected_ids: list[str],
    viewport: Viewport,
    scope: str,
    include_detail: bool,
    max_detail_objects: int = DEFAULT_MAX_DETAIL,
) -> str:
    if not objects:
        return EMPTY_DIGEST

    selected = set(selected_ids)
    lines = [f"Board: {len(objects)} objects ({_format_counts(objects)})"]

    frames = [o for o in objects if o.type == "frame"]
    if frames:
        child_counts = Counter(o.parent_id for o in objects if o.parent_id)
        lines += ["", "Frames:"]
        for f in frames:
            lines.append(
                f'  FRAME {f.id} "{f.text or "(untitled)"}" pos=({_r(f.x)},{_r(f.y)}) '
                f"size={_r(f.width)}×{_r(f.height)} children={child_counts.get(f.id, 0)}"
            )

    chosen = [o for o in objects if o.id in selected]
    if chosen:
        lines += ["", f"Selected ({len(chosen)}):"]
        lines += ["  " + format_object_line(o) for o in chosen]

    if include_detail:
        candidates = _scoped_candidates(objects, scope, viewport, selected)
        shown = candidates[:max(0, max_detail_objects)]
        if shown:
            lines += ["", f"{SCOPE_LABELS.get(scope, 'All objects')} ({len(shown)}):"]
            lines += ["  " + format_object_line(o) for o in shown]
        omitted = len(candidates) - len(shown)
        if omitted > 0:
            lines.append(f"  ... and {omitted} more (use getContext to fetch)")
    else:
        hidden = sum(1 for o in objects if o.type != "frame" and o.id not in selected)
        if hidden:
            lines += [
                "",
                f"{hidden} additional objects not shown. "
                "Use getContext to fetch details when needed.",
            ]

    return "\n".join(lines)
