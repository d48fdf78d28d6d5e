"""Intent router: classify a command with regex heuristics, no model calls.

The route picks the model tier, the tool subset sent to the model, and how
much canvas detail the digest carries.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

from boardpilot.tools.catalog import ToolName

INTENTS = (
    "create_simple", "create_template", "edit_selected", "edit_specific",
    "delete", "reorganize", "query", "general",
)


@dataclass(frozen=True)
class RouteDecision:
    intent: str
    scope: str
    model: str
    template_id: str | None = None
    needs_full_context: bool = False
    # None means every tool
    allowed_tools: tuple[ToolName, ...] | None = None


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

TEMPLATE_PATTERNS: dict[str, re.Pattern[str]] = {
    "swot": re.compile(
        r"\b(?:s\.?\s*w\.?\s*o\.?\s*t\.?|swot|strengths?\s+weaknesses?\s+opportunities?\s+threats?)\b",
        re.I,
    ),
    "kanban": re.compile(r"\bkanban\b", re.I),
    "retro": re.compile(r"\bretro(?:spective)?\b", re.I),
    "pros_cons": re.compile(r"\bpros\s*(?:and|&|/)\s*cons\b", re.I),
    "brainstorm": re.compile(r"\bbrainstorm(?:ing)?\b", re.I),
    "timeline": re.compile(r"\b(?:timeline|roadmap)\b", re.I),
    "mind_map": re.compile(r"\bmind\s*map\b", re.I),
    "sprint_board": re.compile(r"\bsprint\s*(?:board|plan)\b", re.I),
    "matrix": re.compile(r"\bmatrix\b", re.I),
}

# Frame titles each template produces; used to notice a template already on the canvas
TEMPLATE_FRAME_TITLES: dict[str, list[str]] = {
    "swot": ["strengths", "weaknesses", "opportunities", "threats"],
    "kanban": ["backlog", "to do", "in progress", "done"],
    "retro": ["what went well", "to improve", "action items"],
    "pros_cons": ["pros", "cons"],
    "brainstorm": ["ideas", "questions", "next steps"],
    "timeline": ["phase 1", "phase 2", "phase 3", "phase 4"],
    "matrix": ["quick wins", "big projects", "fill-ins", "avoid"],
    "mind_map": ["central idea", "branch 1", "branch 2", "branch 3"],
    "sprint_board": ["sprint backlog", "in progress", "in review", "done"],
}

CREATION_VERBS = re.compile(r"\b(create|make|set\s*up|build|generate|start)\b", re.I)
EDIT_VERBS = re.compile(
    r"\b(?:update|edit|change|modify)\b|\b(?:add|put|insert|move)\b[\s\S]{0,40}\b(?:to|into|in|inside)\b",
    re.I,
)

QUERY_PATTERNS = [
    re.compile(r"\bwhat(?:'s| is)\b.*\b(?:on|in)\b.*\bboard\b", re.I),
    re.compile(r"\b(?:summarize|describe|list|show|tell\s*me)\b.*\bboard\b", re.I),
    re.compile(r"\bhow\s*many\b", re.I),
]

DELETE_PATTERNS = [
    re.compile(r"\b(?:delete|remove|clear|wipe|erase)\b.*\b(?:all|every|board|everything)\b", re.I),
    re.compile(r"\b(?:start\s*over|clean\s*slate|reset)\b", re.I),
    re.compile(r"\b(?:delete|remove|clear)\b", re.I),
]

REORG_PATTERNS = [
    re.compile(
        r"\b(?:reorganize|rearrange|restructure|reorder|tidy|clean\s*up|sort|organize|categorize|group|cluster)\b",
        re.I,
    ),
    re.compile(r"\b(?:convert|turn|transform)\b.*\b(?:into|to|as)\b", re.I),
    re.compile(r"\b(?:lay\s*out|arrange|align)\b", re.I),
]

SELECTED_PATTERNS = [
    re.compile(r"\b(?:these|selected|this|them|those)\b", re.I),
    re.compile(r"\b(?:make|change|move|resize|color|update|edit)\b.*\b(?:selected|these|them)\b", re.I),
]

CREATE_PATTERN = re.compile(r"\b(?:add|create|make|put|place|insert|new|generate|write)\b", re.I)
CONNECT_WORDS = re.compile(r"\bconnect|arrow|link\b", re.I)
ARRANGE_WORDS = re.compile(r"\barrange|grid|row|column|layout|align\b", re.I)
AND_WORD = re.compile(r"\band\b")

# ---------------------------------------------------------------------------
# Tool subsets
# ---------------------------------------------------------------------------

T = ToolName

TOOLS_CREATE_SIMPLE = (T.CREATE_STICKY_NOTE, T.CREATE_SHAPE, T.CREATE_FRAME, T.BULK_CREATE)
TOOLS_CREATE_FULL = (
    T.CREATE_STICKY_NOTE, T.CREATE_SHAPE, T.CREATE_FRAME,
    T.CREATE_CONNECTOR, T.BULK_CREATE, T.ARRANGE_OBJECTS,
)
TOOLS_EDIT = (
    T.MOVE_OBJECT, T.RESIZE_OBJECT, T.UPDATE_TEXT, T.CHANGE_COLOR,
    T.ADD_OBJECT_TO_FRAME, T.REMOVE_OBJECT_FROM_FRAME, T.ARRANGE_OBJECTS, T.REARRANGE_FRAME,
)
TOOLS_EDIT_SPECIFIC = (T.CREATE_STICKY_NOTE, T.BULK_CREATE, *TOOLS_EDIT)
TOOLS_DELETE = (T.BULK_DELETE, T.GET_CONTEXT)
TOOLS_QUERY = (T.GET_CONTEXT,)
TOOLS_TEMPLATE = (T.CREATE_FRAME, T.BULK_CREATE, T.ARRANGE_OBJECTS, T.REARRANGE_FRAME)
TOOLS_REORG = (
    T.BULK_DELETE, T.BULK_CREATE, T.CREATE_FRAME, T.MOVE_OBJECT,
    T.ADD_OBJECT_TO_FRAME, T.REMOVE_OBJECT_FROM_FRAME, T.ARRANGE_OBJECTS,
    T.REARRANGE_FRAME, T.GET_CONTEXT,
)


def normalize_title(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", " ", value.lower()).strip()


def has_existing_template(template_id: str, existing_frame_titles: list[str]) -> bool:
    """Whether the canvas already shows most of a template's frames.

    Needs at least 75% of the expected titles (minimum two), or all of them
    for templates with two or fewer frames, so one stray "Strengths" frame
    does not block creating a SWOT.
    """
    expected = TEMPLATE_FRAME_TITLES.get(template_id, [])
    if not expected:
        return False
    existing = [normalize_title(t) for t in existing_frame_titles]

    def present(title: str) -> bool:
        needle = normalize_title(title)
        return any(
            t == needle
            or t.startswith(f"{needle} ")
            or t.endswith(f" {needle}")
            or f" {needle} " in t
            for t in existing
        )

    matches = sum(1 for title in expected if present(title))
    if len(expected) <= 2:
        needed = len(expected)
    else:
        needed = max(2, math.ceil(len(expected) * 0.75))
    return matches >= needed


def route(
    command: str,
    selection_count: int,
    object_count: int,
    existing_frame_titles: list[str] | None = None,
) -> RouteDecision:
    """Classify ``command``. Pure: the same inputs always give the same route."""
    cmd = command.lower().strip()
    frame_titles = existing_frame_titles or []

    for template_id, pattern in TEMPLATE_PATTERNS.items():
        if not pattern.search(cmd):
            continue
        creating = bool(CREATION_VERBS.search(cmd))
        # "add a sticky to the SWOT" edits the template, it does not create one
        if EDIT_VERBS.search(cmd) and not creating:
            return RouteDecision(
                intent="edit_specific", scope="board", model="simple",
                allowed_tools=TOOLS_EDIT_SPECIFIC,
            )
        if has_existing_template(template_id, frame_titles) and not creating:
            break
        return RouteDecision(
            intent="create_template", scope="viewport", model="simple",
            template_id=template_id, allowed_tools=TOOLS_TEMPLATE,
        )

    if any(p.search(cmd) for p in QUERY_PATTERNS):
        return RouteDecision(
            intent="query", scope="board", model="simple", allowed_tools=TOOLS_QUERY,
        )

    if any(p.search(cmd) for p in DELETE_PATTERNS):
        return RouteDecision(
            intent="delete",
            scope="board" if object_count > 0 else "viewport",
            model="simple",
            needs_full_context=object_count <= 50,
            allowed_tools=TOOLS_DELETE,
        )

    if any(p.search(cmd) for p in REORG_PATTERNS):
        return RouteDecision(
            intent="reorganize",
            scope="selected" if selection_count > 0 else "board",
            model="complex",
            needs_full_context=True,
            allowed_tools=TOOLS_REORG,
        )

    if selection_count > 0 and any(p.search(cmd) for p in SELECTED_PATTERNS):
        return RouteDecision(
            intent="edit_selected", scope="selected", model="simple", allowed_tools=TOOLS_EDIT,
        )

    if CREATE_PATTERN.search(cmd):
        full_tools = bool(CONNECT_WORDS.search(cmd) or ARRANGE_WORDS.search(cmd))
        complex_cmd = len(cmd) > 150 and len(AND_WORD.findall(cmd)) >= 3
        return RouteDecision(
            intent="create_simple",
            scope="viewport",
            model="complex" if complex_cmd else "simple",
            allowed_tools=TOOLS_CREATE_FULL if full_tools else TOOLS_CREATE_SIMPLE,
        )

    return RouteDecision(
        intent="general",
        scope="selected" if selection_count > 0 else "viewport",
        model="complex" if object_count > 30 else "simple",
        needs_full_context=object_count <= 50,
        allowed_tools=None,
    )
