"""Plan, validate, execute: one tool-free model call, then deterministic execution.

Used for reorganize-style commands where a multi-round tool loop tends to
wander. The model returns a JSON plan with symbolic frame keys; the
validator enforces budgets; the executor runs it through the tool layer.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from boardpilot import config
from boardpilot.agent.digest import build_digest
from boardpilot.agent.provider import (
    Message,
    ModelProvider,
    UsageStats,
    complete_with_timeout,
    parse_json_object,
)
from boardpilot.errors import PlanValidationError, StoreError
from boardpilot.storage.sqlite_store import CanvasObject
from boardpilot.tools.context import DEFAULT_COLOR, FRAME_COLOR, ToolContext, ToolResult, Viewport
from boardpilot.tools.create import bulk_create
from boardpilot.tools.delete import bulk_delete
from boardpilot.tools.edit import add_object_to_frame, rearrange_frame
from boardpilot.tools.frame_layout import STICKY_SIZE, calculate_frame_size

logger = logging.getLogger(__name__)

MAX_PLAN_CREATES = 100
MAX_PLAN_DELETES = 200
MAX_PLAN_MOVES = 200
PLAN_DETAIL_OBJECTS = 80
PLAN_FRAME_GAP = 30
DEFAULT_FRAME_CHILDREN = 3

ProgressCallback = Callable[[int, int, str], None]


@dataclass
class PlanFrame:
    key: str
    title: str
    color: str = FRAME_COLOR


@dataclass
class PlanAssignment:
    object_id: str
    # New frame key or an existing frame id
    target_frame_key: str


@dataclass
class PlanSticky:
    text: str
    color: str = DEFAULT_COLOR
    target_frame_key: str | None = None


@dataclass
class Plan:
    summary: str = ""
    new_frames: list[PlanFrame] = field(default_factory=list)
    assignments: list[PlanAssignment] = field(default_factory=list)
    delete_ids: list[str] = field(default_factory=list)
    new_stickies: list[PlanSticky] = field(default_factory=list)
    rearrange_frame_keys: list[str] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Plan:
        """Build a plan from model JSON, coercing or dropping malformed entries."""

        def items(key: str) -> list[Any]:
            value = data.get(key)
            return value if isinstance(value, list) else []

        def dicts(key: str) -> list[dict[str, Any]]:
            return [v for v in items(key) if isinstance(v, dict)]

        return cls(
            summary=str(data.get("summary") or ""),
            new_frames=[
                PlanFrame(
                    key=str(f.get("key") or ""),
                    title=str(f.get("title") or "Untitled"),
                    color=str(f.get("color") or FRAME_COLOR),
                )
                for f in dicts("newFrames")
            ],
            assignments=[
                PlanAssignment(
                    object_id=str(a.get("objectId") or ""),
                    target_frame_key=str(a.get("targetFrameKey") or ""),
                )
                for a in dicts("assignments")
            ],
            delete_ids=[str(i) for i in items("deleteIds")],
            new_stickies=[
                PlanSticky(
                    text=str(s.get("text") or ""),
                    color=str(s.get("color") or DEFAULT_COLOR),
                    target_frame_key=str(s["targetFrameKey"]) if s.get("targetFrameKey") else None,
                )
                for s in dicts("newStickies")
            ],
            rearrange_frame_keys=[str(k) for k in items("rearrangeFrameKeys")],
        )

    @property
    def total_creates(self) -> int:
        return len(self.new_frames) + len(self.new_stickies)


@dataclass
class ValidationResult:
    ok: bool
    error: str | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class PlanExecutionResult:
    success: bool
    created_ids: list[str] = field(default_factory=list)
    updated_ids: list[str] = field(default_factory=list)
    deleted_ids: list[str] = field(default_factory=list)
    error: str | None = None
    steps_completed: int = 0
    steps_total: int = 0


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_plan(plan: Plan, object_count: int) -> ValidationResult:
    """Check budgets and invariants. Destructive plans warn but are not rejected."""
    warnings: list[str] = []

    if plan.total_creates > MAX_PLAN_CREATES:
        return ValidationResult(
            False, f"Plan creates {plan.total_creates} objects (max {MAX_PLAN_CREATES})", warnings,
        )
    if len(plan.delete_ids) > MAX_PLAN_DELETES:
        return ValidationResult(
            False, f"Plan deletes {len(plan.delete_ids)} objects (max {MAX_PLAN_DELETES})", warnings,
        )
    if len(plan.assignments) > MAX_PLAN_MOVES:
        return ValidationResult(
            False, f"Plan moves {len(plan.assignments)} objects (max {MAX_PLAN_MOVES})", warnings,
        )

    if plan.delete_ids:
        warnings.append(f"Plan will delete {len(plan.delete_ids)} object(s)")
    if len(plan.delete_ids) > object_count * 0.5:
        warnings.append("Plan deletes more than half the board")

    seen: set[str] = set()
    for frame in plan.new_frames:
        if frame.key in seen:
            return ValidationResult(False, f"Duplicate frame key: {frame.key}", warnings)
        seen.add(frame.key)

    return ValidationResult(True, None, warnings)


def require_valid(plan: Plan, object_count: int) -> ValidationResult:
    """Like validate_plan, but raise PlanValidationError when the plan is rejected."""
    result = validate_plan(plan, object_count)
    if not result.ok:
        raise PlanValidationError(result.error or "invalid plan")
    return result


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

PLANNER_SYSTEM = """\
You are a whiteboard layout planner. Given a user command and the current board \
state, output a structured JSON plan.

You MUST return valid JSON with this exact schema:
{
  "summary": "Brief description of what the plan does",
  "newFrames": [{"key": "frame_0", "title": "Category Name", "color": "#hex"}],
  "assignments": [{"objectId": "existing-uuid", "targetFrameKey": "frame_0"}],
  "deleteIds": ["uuid-to-delete"],
  "newStickies": [{"text": "content", "color": "#hex", "targetFrameKey": "frame_0"}],
  "rearrangeFrameKeys": ["frame_0"]
}

Rules:
- "key" in newFrames is a symbolic reference (e.g. "frame_0", "frame_1"). Use these in assignments and stickies.
- "targetFrameKey" can reference a new frame key OR an existing frame's id.
- For reorganization: group existing objects by theme, create frames, assign objects.
- For cleanup: rearrange existing frames (use rearrangeFrameKeys with existing frame ids).
- Minimize deletions. Move objects rather than delete and recreate.
- Colors: #FBBF24 yellow, #F472B6 pink, #3B82F6 blue, #22C55E green, #F97316 orange, \
#A855F7 purple, #EF4444 red, #9CA3AF gray
- Frame color is always "#F3F4F6". Use color on stickies only.
- Keep it simple. Fewer operations is better."""


def generate_plan(
    provider: ModelProvider,
    command: str,
    objects: list[CanvasObject],
    viewport: Viewport,
    selected_ids: list[str],
) -> tuple[Plan, UsageStats]:
    """One JSON-mode call on the complex tier. Raises on timeout or unparseable output."""
    digest = build_digest(
        objects,
        selected_ids,
        viewport,
        scope="selected" if selected_ids else "board",
        include_detail=True,
        max_detail_objects=PLAN_DETAIL_OBJECTS,
    )
    t0 = time.perf_counter()
    completion = complete_with_timeout(
        provider,
        config.PLAN_TIMEOUT_S,
        [
            Message(role="system", content=PLANNER_SYSTEM),
            Message(role="user", content=f"Command: {command}\n\nBoard state:\n{digest}"),
        ],
        response_format="json",
        model=config.MODEL_COMPLEX,
        temperature=0.3,
        max_tokens=2000,
    )
    parsed = parse_json_object(completion.text)
    if parsed is None:
        raise PlanValidationError("planner returned no JSON object")
    plan = Plan.from_json(parsed)
    logger.info(
        "Plan generated in %.0fms: %d frames, %d moves, %d deletes, %d stickies (%s)",
        (time.perf_counter() - t0) * 1000,
        len(plan.new_frames), len(plan.assignments), len(plan.delete_ids),
        len(plan.new_stickies), plan.summary,
    )
    return plan, completion.usage


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def _steps_total(plan: Plan) -> int:
    return (
        (1 if plan.delete_ids else 0)
        + len(plan.new_frames)
        + (1 if plan.assignments else 0)
        + (1 if plan.new_stickies else 0)
        + len(plan.rearrange_frame_keys)
    )


def _expected_children(plan: Plan) -> dict[str, int]:
    counts: dict[str, int] = {}
    for a in plan.assignments:
        counts[a.target_frame_key] = counts.get(a.target_frame_key, 0) + 1
    for s in plan.new_stickies:
        if s.target_frame_key:
            counts[s.target_frame_key] = counts.get(s.target_frame_key, 0) + 1
    return counts


def _require(r: ToolResult, step: str) -> ToolResult:
    if not r.success:
        raise StoreError(f"{step} failed: {r.error}")
    return r


def execute_plan(
    plan: Plan,
    ctx: ToolContext,
    viewport: Viewport,
    on_progress: ProgressCallback | None = None,
) -> PlanExecutionResult:
    """Run a validated plan in five phases: delete, frames, moves, stickies, rearrange.

    Symbolic frame keys resolve to the ids created in phase two; anything
    else is taken as an existing frame id. A failed step or an exception stops
    the remaining phases and the partial lists are returned with the error.
    """
    result = PlanExecutionResult(success=False, steps_total=_steps_total(plan))
    key_to_id: dict[str, str] = {}

    def progress(label: str) -> None:
        result.steps_completed += 1
        logger.debug("Plan step %d/%d: %s", result.steps_completed, result.steps_total, label)
        if on_progress is not None:
            on_progress(result.steps_completed, result.steps_total, label)

    try:
        if plan.delete_ids:
            progress("Deleting objects")
            r = _require(bulk_delete(ctx, "by_ids", object_ids=plan.delete_ids), "Delete")
            result.deleted_ids.extend(r.data.get("deletedIds", []))

        if plan.new_frames:
            counts = _expected_children(plan)
            sizes = [
                calculate_frame_size(
                    counts.get(f.key, DEFAULT_FRAME_CHILDREN), STICKY_SIZE, STICKY_SIZE,
                    max_cols=3, reserve=1,
                )
                for f in plan.new_frames
            ]
            total_width = sum(w for w, _ in sizes) + (len(sizes) - 1) * PLAN_FRAME_GAP
            cur_x = viewport.center_x - total_width / 2
            base_y = viewport.center_y - sizes[0][1] / 2
            for i, (spec, (w, h)) in enumerate(zip(plan.new_frames, sizes)):
                progress(f"Creating frame: {spec.title}")
                frame = ctx.new_object(
                    "frame", cur_x, base_y, w, h,
                    color=FRAME_COLOR, text=spec.title[:500], z_offset=-1000 + i,
                )
                result.created_ids.append(frame.id)
                key_to_id[spec.key] = frame.id
                cur_x += w + PLAN_FRAME_GAP

        if plan.assignments:
            progress("Moving objects into frames")
            for assign in plan.assignments:
                frame_id = key_to_id.get(assign.target_frame_key, assign.target_frame_key)
                if ctx.arena.get_frame(frame_id) is None:
                    logger.debug("Skipping assignment to unknown frame %s", assign.target_frame_key)
                    continue
                if ctx.arena.get(assign.object_id) is None:
                    logger.debug("Skipping assignment of unknown object %s", assign.object_id)
                    continue
                r = _require(add_object_to_frame(ctx, assign.object_id, frame_id), "Move")
                if r.object_id:
                    result.updated_ids.append(r.object_id)

        if plan.new_stickies:
            progress("Creating stickies")
            items = [
                {
                    "type": "sticky",
                    "text": s.text,
                    "color": s.color,
                    "parent_id": (
                        key_to_id.get(s.target_frame_key, s.target_frame_key)
                        if s.target_frame_key else None
                    ),
                }
                for s in plan.new_stickies
            ]
            r = bulk_create(ctx, items)
            result.created_ids.extend(r.data.get("createdIds", []))
            _require(r, "Sticky creation")
            if r.data.get("failed"):
                logger.warning("%d of %d plan stickies failed", r.data["failed"], len(items))

        for key in plan.rearrange_frame_keys:
            progress(f"Arranging frame: {key}")
            frame_id = key_to_id.get(key, key)
            if ctx.arena.get_frame(frame_id) is None:
                logger.debug("Skipping rearrange of unknown frame %s", key)
                continue
            r = _require(rearrange_frame(ctx, frame_id), "Rearrange")
            result.updated_ids.extend(
                i for i in r.data.get("updatedIds", []) if i not in result.updated_ids
            )
    except Exception as e:
        logger.exception("Plan execution aborted at step %d", result.steps_completed)
        result.error = str(e)
        return result

    result.success = True
    return result
