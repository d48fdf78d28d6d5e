"""Fast path: regex matching for high-frequency commands, plus an optional AI extractor.

A match runs straight through the tool layer with no model call. Any
failure while executing a match returns None so the caller demotes the
command to the general paths instead of reporting a partial result.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass

from boardpilot import config
from boardpilot.agent.provider import Message, ModelProvider, complete_with_timeout, parse_json_object
from boardpilot.agent.strategy import ExecutionResult, build_summary, compute_focus_bounds
from boardpilot.storage.sqlite_store import SHAPE_TYPES, CanvasObject
from boardpilot.tools.context import COLOR_NAMES, DEFAULT_COLOR, ToolContext
from boardpilot.tools.create import bulk_create, create_sticky_note
from boardpilot.tools.delete import bulk_delete

logger = logging.getLogger(__name__)

EXTRACTOR_MIN_CONFIDENCE = 0.8
FAST_PATH_MODEL = "fast-path"

_COLORS = r"(yellow|pink|blue|green|orange|purple|red|gray|grey|white)"

DELETE_SHAPES_EXCEPT = re.compile(
    r"\b(?:delete|remove|clear)\b\s+all\s+shapes\s+except\s+(circles?|rectangles?)\b", re.I,
)
EXCLUSIONS = re.compile(r"\bexcept\b|\bexcluding\b|\bbut\s+not\b", re.I)
DELETE_TYPE = re.compile(
    r"\b(delete|remove|clear)\b\s+(?:all\s+)?(?:the\s+)?"
    r"(sticky notes?|stickies|rectangles?|circles?|frames?|connectors?|shapes?)\b",
    re.I,
)
DELETE_ALL = re.compile(r"\b(delete|remove|clear|wipe|erase|nuke|purge)\b.*\b(all|everything|board)\b", re.I)
START_OVER = re.compile(r"\bstart\s*over\b", re.I)
ADD_TO_FRAME = re.compile(
    r"\b(?:add|create|make)\b\s+(?:a|an|one)?\s*(?:" + _COLORS + r"\s+)?sticky(?:\s+note)?"
    r"(?:\s+that\s+says\s+[\"“]?(.+?)[\"”]?)?\s+to\s+(?:the\s+)?(.+?)\s+frame\b",
    re.I,
)
ADD_SINGLE = re.compile(
    r"\b(?:add|create|make)\b\s+(?:a|an|one)?\s*(?:" + _COLORS + r"\s+)?sticky(?:\s+note)?"
    r"(?:\s+that\s+says\s+[\"“]?(.+?)[\"”]?)?$",
    re.I,
)
BATCH_STICKY = re.compile(
    r"\b(?:create|add|make|put|throw)\b[^\d]*(\d{1,3})\b(?:\s+\w+){0,3}?\s+"
    r"(?:" + _COLORS + r"\s+)?sticky\s*notes?(?:\s+(?:about|on)\s+(.+?))?\??$",
    re.I,
)
AND_WORD = re.compile(r"\band\b", re.I)
BATCH_SHAPE = re.compile(
    r"\b(?:create|add|make)\b\s+(\d{1,3})\s+(?:" + _COLORS + r"\s+)?(rectangles?|circles?)\b", re.I,
)
QUERY_SUMMARY = [
    re.compile(r"\bwhat(?:'s|\s+is)\b.*\b(on|in)\b.*\bboard\b", re.I),
    re.compile(r"\bhow\s+many\b.*\b(objects?|stick(?:y|ies)|frames?|rectangles?|circles?)\b", re.I),
    re.compile(r"\bsummarize\b.*\bboard\b", re.I),
]
LOOKS_SIMPLE = re.compile(
    r"\b(sticky|stickies|rectangle|rectangles|circle|circles|delete|remove|clear|nuke|how many|"
    r"what\s+is\s+on\s+this\s+board)\b",
    re.I,
)

EXTRACTOR_INTENTS = ("create_simple", "delete", "edit_specific", "query")

EXTRACTOR_PROMPT = """\
Extract a deterministic whiteboard action from the user command.
Return JSON only.
If uncertain, return {"kind":"none","confidence":0,"reason":"..."}.

Allowed kinds:
- delete_all
- delete_by_type (objectType: sticky|rectangle|circle|frame|connector|shape)
- delete_shapes_except (keep: circle|rectangle)
- create_sticky_batch (count, optional topic, optional color)
- create_single_sticky (text, optional color, optional frameName)
- create_shape_batch (count, shape: rectangle|circle, optional color)
- query_summary

Always include "confidence" (0 to 1) and a short "reason"."""


@dataclass(frozen=True)
class FastPathMatch:
    """One recognized command shape.

    ``kind`` selects which of the optional fields are meaningful:
    ``object_type`` for delete_by_type, ``keep`` for delete_shapes_except,
    ``count``/``topic``/``color`` for batches, ``text``/``frame_name`` for
    a single note, ``shape`` for shape batches.
    """

    kind: str
    object_type: str | None = None
    keep: str | None = None
    count: int = 0
    topic: str | None = None
    color: str | None = None
    text: str | None = None
    frame_name: str | None = None
    shape: str | None = None


@dataclass(frozen=True)
class IntentDecision:
    source: str  # "fast_path" | "ai_extractor" | "full_agent"
    confidence: float
    reason: str
    match: FastPathMatch | None = None


@dataclass(frozen=True)
class Extraction:
    match: FastPathMatch | None
    confidence: float
    reason: str
    input_tokens: int = 0
    output_tokens: int = 0


def _lower(value: str | None) -> str | None:
    return value.lower() if value else None


def parse_fast_path(command: str) -> FastPathMatch | None:
    """Recognize a command from the closed fast-path vocabulary, or return None."""
    cmd = command.strip()

    m = DELETE_SHAPES_EXCEPT.search(cmd)
    if m:
        keep = "circle" if m.group(1).lower().startswith("circle") else "rectangle"
        return FastPathMatch(kind="delete_shapes_except", keep=keep)

    # Any other exclusion is too open-ended to do deterministically
    if EXCLUSIONS.search(cmd):
        return None

    m = DELETE_TYPE.search(cmd)
    if m:
        raw = m.group(2).lower()
        for prefix in ("sticky", "rectangle", "circle", "frame", "connector"):
            if raw.startswith(prefix):
                return FastPathMatch(kind="delete_by_type", object_type=prefix)
        if raw.startswith("stickies"):
            return FastPathMatch(kind="delete_by_type", object_type="sticky")
        return FastPathMatch(kind="delete_by_type", object_type="shape")

    if DELETE_ALL.search(cmd) or START_OVER.search(cmd):
        return FastPathMatch(kind="delete_all")

    m = ADD_TO_FRAME.search(cmd)
    if m:
        color, text, frame_name = m.groups()
        return FastPathMatch(
            kind="create_single_sticky",
            text=(text or "New note").strip(),
            color=_lower(color),
            frame_name=frame_name.strip(),
        )

    m = ADD_SINGLE.search(cmd)
    if m:
        color, text = m.groups()
        return FastPathMatch(
            kind="create_single_sticky", text=(text or "New note").strip(), color=_lower(color),
        )

    m = BATCH_STICKY.search(cmd)
    if m:
        count = int(m.group(1))
        if 2 <= count <= 100:
            topic = m.group(3).strip() if m.group(3) else None
            return FastPathMatch(
                kind="create_sticky_batch", count=count, color=_lower(m.group(2)), topic=topic,
            )

    # "3 circles and 2 rectangles" needs the full agent
    if AND_WORD.search(cmd):
        return None

    m = BATCH_SHAPE.search(cmd)
    if m:
        count = int(m.group(1))
        if 2 <= count <= 100:
            shape = "circle" if m.group(3).lower().startswith("circle") else "rectangle"
            return FastPathMatch(
                kind="create_shape_batch", count=count, color=_lower(m.group(2)), shape=shape,
            )

    lc = cmd.lower()
    if any(p.search(lc) for p in QUERY_SUMMARY):
        return FastPathMatch(kind="query_summary")

    return None


_CONFIDENCE = {
    "delete_all": 0.99,
    "delete_by_type": 0.98,
    "delete_shapes_except": 0.95,
    "create_sticky_batch": 0.97,
    "create_shape_batch": 0.97,
    "query_summary": 0.94,
}


def confidence_for(match: FastPathMatch) -> float:
    if match.kind == "create_single_sticky":
        return 0.96 if match.frame_name else 0.95
    return _CONFIDENCE.get(match.kind, 0.9)


def should_try_extractor(command: str, intent: str) -> bool:
    trimmed = command.strip()
    if not trimmed or len(trimmed) > 240:
        return False
    if intent in EXTRACTOR_INTENTS:
        return len(AND_WORD.findall(trimmed)) < 4
    if intent == "general":
        return bool(LOOKS_SIMPLE.search(trimmed))
    return False


def decide_intent_route(command: str, intent: str) -> IntentDecision:
    """Pick the route source: regex fast path, AI extractor, or the full agent."""
    match = parse_fast_path(command)
    if match:
        return IntentDecision("fast_path", confidence_for(match), f"regex_match:{match.kind}", match)
    if should_try_extractor(command, intent):
        return IntentDecision("ai_extractor", 0.45, "simple_intent_without_regex_match")
    return IntentDecision("full_agent", 0.25, "default_full_agent")


_TYPE_PLURALS = {
    "sticky": "sticky notes",
    "rectangle": "rectangles",
    "circle": "circles",
    "frame": "frames",
    "connector": "connectors",
    "shape": "shapes",
}


def _synthesize(parsed: dict) -> str:
    """Canonical command text for an extractor classification."""
    kind = str(parsed.get("kind") or "none")
    if kind == "delete_all":
        return "delete all"
    if kind == "delete_by_type":
        plural = _TYPE_PLURALS.get(str(parsed.get("objectType") or "").lower())
        return f"delete all {plural}" if plural else ""
    if kind == "delete_shapes_except":
        return f"delete all shapes except {parsed.get('keep') or 'circles'}"
    if kind == "create_sticky_batch":
        command = f"create {parsed.get('count') or 0}"
        if parsed.get("color"):
            command += f" {parsed['color']}"
        command += " sticky notes"
        if parsed.get("topic"):
            command += f" about {parsed['topic']}"
        return command
    if kind == "create_single_sticky":
        color = f"{parsed['color']} " if parsed.get("color") else ""
        command = f"add a {color}sticky note that says {parsed.get('text') or 'New note'}"
        if parsed.get("frameName"):
            command += f" to the {parsed['frameName']} frame"
        return command
    if kind == "create_shape_batch":
        color = f"{parsed['color']} " if parsed.get("color") else ""
        return f"create {parsed.get('count') or 0} {color}{parsed.get('shape') or 'rectangle'}s"
    if kind == "query_summary":
        return "what is on this board"
    return ""


def extract_with_model(provider: ModelProvider, command: str) -> Extraction:
    """One short JSON-mode call classifying ``command`` into the fast-path vocabulary.

    The classification is turned back into canonical text and re-parsed, so
    only shapes the regex parser accepts can come out of here.
    """
    try:
        completion = complete_with_timeout(
            provider,
            config.EXTRACTOR_TIMEOUT_S,
            [Message(role="system", content=EXTRACTOR_PROMPT), Message(role="user", content=command)],
            response_format="json",
            model=config.MODEL_EXTRACTOR,
            temperature=0,
        )
    except Exception as e:
        logger.warning("AI extractor failed: %s", e)
        return Extraction(None, 0.0, "extractor_error")

    usage = completion.usage
    parsed = parse_json_object(completion.text)
    if parsed is None:
        return Extraction(None, 0.0, "extractor_error", usage.input_tokens, usage.output_tokens)
    try:
        confidence = float(parsed.get("confidence") or 0)
    except (TypeError, ValueError):
        confidence = 0.0
    reason = str(parsed.get("reason") or "ai_extractor")
    synthesized = _synthesize(parsed)
    match = parse_fast_path(synthesized) if synthesized else None
    logger.info("AI extractor: kind=%s confidence=%.2f -> %r", parsed.get("kind"), confidence, synthesized)
    return Extraction(match, confidence, reason, usage.input_tokens, usage.output_tokens)


def _normalize(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", " ", value.lower()).strip()


def _title_case(value: str) -> str:
    return " ".join(w[0].upper() + w[1:] for w in value.split())


def _result(
    message: str,
    started: float,
    created: list[str] | None = None,
    deleted: list[str] | None = None,
    focus: dict | None = None,
    tool_calls: int = 1,
) -> ExecutionResult:
    return ExecutionResult(
        success=True,
        message=message,
        objects_created=created or [],
        objects_deleted=deleted or [],
        focus=focus,
        model=FAST_PATH_MODEL,
        tool_calls_count=tool_calls,
        duration_ms=int((time.perf_counter() - started) * 1000),
    )


def summarize_canvas(objects: list[CanvasObject]) -> str:
    counts: dict[str, int] = {}
    for obj in objects:
        counts[obj.type] = counts.get(obj.type, 0) + 1
    labels = (("sticky", "stickies"), ("frame", "frames"), ("rectangle", "rectangles"),
              ("circle", "circles"), ("line", "lines"), ("text", "texts"))
    parts = [f"{counts[k]} {label}" for k, label in labels if counts.get(k)]
    summary = ", ".join(parts) if parts else "no objects"
    frame_lines = [
        f"{f.text or 'Untitled'}: {sum(1 for o in objects if o.parent_id == f.id)} item(s)"
        for f in [o for o in objects if o.type == "frame"][:4]
    ]
    message = f"Board has {len(objects)} objects: {summary}."
    if frame_lines:
        message = f"Board has {len(objects)} objects: {summary}. Frames: {'; '.join(frame_lines)}."
    return message


def execute_fast_path(
    match: FastPathMatch, ctx: ToolContext, objects: list[CanvasObject], started: float,
) -> ExecutionResult | None:
    """Run a matched command deterministically. Returns None on any failure."""
    try:
        return _execute(match, ctx, objects, started)
    except Exception as e:
        logger.warning("Fast path %s failed: %s", match.kind, e)
        return None


def _execute(
    match: FastPathMatch, ctx: ToolContext, objects: list[CanvasObject], started: float,
) -> ExecutionResult | None:
    match match.kind:
        case "delete_all":
            r = bulk_delete(ctx, "all")
            if not r.success:
                return None
            count = r.data.get("deletedCount")
            deleted = [f"all ({count})"] if count else ["all"]
            return _result(build_summary([], [], deleted), started, deleted=deleted)

        case "delete_by_type":
            r = bulk_delete(ctx, "by_type", object_type=match.object_type)
            if not r.success:
                return None
            deleted = r.data.get("deletedIds") or []
            if not deleted and r.data.get("deletedCount"):
                deleted = [f"{match.object_type} ({r.data['deletedCount']})"]
            if not deleted:
                return _result(f"No {match.object_type} objects to delete.", started, tool_calls=1)
            return _result(build_summary([], [], deleted), started, deleted=deleted)

        case "delete_shapes_except":
            ids = [o.id for o in objects if o.type in SHAPE_TYPES and o.type != match.keep]
            if not ids:
                return _result("Nothing to delete.", started, tool_calls=0)
            r = bulk_delete(ctx, "by_ids", object_ids=ids)
            if not r.success:
                return None
            deleted = r.data.get("deletedIds") or ids
            return _result(build_summary([], [], deleted), started, deleted=deleted)

        case "create_sticky_batch":
            color = COLOR_NAMES[match.color] if match.color else "random"
            items = [
                {
                    "type": "sticky",
                    "text": f"{_title_case(match.topic)} {i + 1}" if match.topic else f"Sticky {i + 1}",
                    "color": color,
                }
                for i in range(match.count)
            ]
            return _created(bulk_create(ctx, items), ctx, started)

        case "create_single_sticky":
            parent_id = None
            if match.frame_name:
                needle = _normalize(match.frame_name)
                frame = next(
                    (o for o in objects if o.type == "frame" and o.text and needle in _normalize(o.text)),
                    None,
                )
                if frame is None:
                    return None
                parent_id = frame.id
            color = COLOR_NAMES.get(match.color or "", DEFAULT_COLOR)
            r = create_sticky_note(ctx, match.text or "New note", color=color, parent_id=parent_id)
            if not r.success or not r.object_id:
                return None
            created = [r.object_id]
            return _result(
                build_summary(created, []), started, created=created,
                focus=compute_focus_bounds(created, ctx.arena),
            )

        case "create_shape_batch":
            color = COLOR_NAMES[match.color] if match.color else "random"
            w, h = (120, 120) if match.shape == "circle" else (160, 100)
            items = [{"type": match.shape, "color": color, "width": w, "height": h}] * match.count
            return _created(bulk_create(ctx, [dict(i) for i in items]), ctx, started)

        case "query_summary":
            return _result(summarize_canvas(objects), started, tool_calls=0)

    return None


def _created(r, ctx: ToolContext, started: float) -> ExecutionResult | None:
    if not r.success:
        return None
    created = r.data.get("createdIds") or []
    if r.data.get("failed") or not created:
        return None
    return _result(
        build_summary(created, []), started, created=created,
        focus=compute_focus_bounds(created, ctx.arena),
    )
