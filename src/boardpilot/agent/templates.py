"""Deterministic template engine.

The model only writes the text that goes on the notes (one small JSON
call). Frame positions, sizes and note placement are computed here.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field

from boardpilot import config
from boardpilot.agent.provider import (
    Message,
    ModelProvider,
    UsageStats,
    complete_with_timeout,
    parse_json_object,
)
from boardpilot.errors import BoardpilotError
from boardpilot.tools.context import FRAME_COLOR, ToolContext, Viewport
from boardpilot.tools.frame_layout import (
    FRAME_PADDING,
    FRAME_TITLE_HEIGHT,
    OBJECT_GAP,
    STICKY_SIZE,
    calculate_frame_size,
    frame_expansion_for_children,
)
from boardpilot.tools.placement import TEXT_MAX_LENGTH

logger = logging.getLogger(__name__)

ITEM_MAX_LENGTH = 200
GENERAL_TOPIC = "general topic"


@dataclass(frozen=True)
class FrameSpec:
    key: str
    title: str
    sticky_color: str
    col: int
    row: int
    default_count: int


@dataclass(frozen=True)
class TemplateSpec:
    id: str
    name: str
    columns: int
    frames: tuple[FrameSpec, ...]
    content_prompt: str
    frame_gap: int = 30


@dataclass
class TemplateResult:
    success: bool
    created_ids: list[str] = field(default_factory=list)
    frame_ids: list[str] = field(default_factory=list)
    error: str | None = None


# ---------------------------------------------------------------------------
# Template catalog
# ---------------------------------------------------------------------------

GREEN, RED, BLUE, ORANGE = "#22C55E", "#EF4444", "#3B82F6", "#F97316"
GRAY, YELLOW, PINK, PURPLE = "#9CA3AF", "#FBBF24", "#F472B6", "#A855F7"

TEMPLATES: dict[str, TemplateSpec] = {
    "swot": TemplateSpec(
        id="swot",
        name="SWOT Analysis",
        columns=2,
        frames=(
            FrameSpec("strengths", "Strengths", GREEN, 0, 0, 4),
            FrameSpec("weaknesses", "Weaknesses", RED, 1, 0, 4),
            FrameSpec("opportunities", "Opportunities", BLUE, 0, 1, 4),
            FrameSpec("threats", "Threats", ORANGE, 1, 1, 4),
        ),
        content_prompt=(
            "Generate SWOT analysis content. Return JSON:\n"
            '{"strengths":["..."],"weaknesses":["..."],"opportunities":["..."],"threats":["..."]}\n'
            "Each point: 3-8 words. Exactly 4 per category."
        ),
    ),
    "kanban": TemplateSpec(
        id="kanban",
        name="Kanban Board",
        columns=4,
        frames=(
            FrameSpec("backlog", "Backlog", GRAY, 0, 0, 3),
            FrameSpec("todo", "To Do", YELLOW, 1, 0, 3),
            FrameSpec("in_progress", "In Progress", BLUE, 2, 0, 3),
            FrameSpec("done", "Done", GREEN, 3, 0, 3),
        ),
        content_prompt=(
            "Generate kanban board content. Return JSON:\n"
            '{"backlog":["..."],"todo":["..."],"in_progress":["..."],"done":["..."]}\n'
            "Each item: 3-10 words (task descriptions). Exactly 3 per column."
        ),
    ),
    "retro": TemplateSpec(
        id="retro",
        name="Retrospective",
        columns=3,
        frames=(
            FrameSpec("went_well", "What Went Well", GREEN, 0, 0, 4),
            FrameSpec("to_improve", "To Improve", PINK, 1, 0, 4),
            FrameSpec("actions", "Action Items", BLUE, 2, 0, 4),
        ),
        content_prompt=(
            "Generate retrospective content. Return JSON:\n"
            '{"went_well":["..."],"to_improve":["..."],"actions":["..."]}\n'
            "Each point: 3-8 words. Exactly 4 per category."
        ),
    ),
    "pros_cons": TemplateSpec(
        id="pros_cons",
        name="Pros & Cons",
        columns=2,
        frames=(
            FrameSpec("pros", "Pros", GREEN, 0, 0, 5),
            FrameSpec("cons", "Cons", RED, 1, 0, 5),
        ),
        content_prompt=(
            "Generate pros and cons. Return JSON:\n"
            '{"pros":["..."],"cons":["..."]}\n'
            "Each point: 3-8 words. Exactly 5 per side."
        ),
    ),
    "brainstorm": TemplateSpec(
        id="brainstorm",
        name="Brainstorm",
        columns=3,
        frames=(
            FrameSpec("ideas", "Ideas", YELLOW, 0, 0, 5),
            FrameSpec("questions", "Questions", PINK, 1, 0, 3),
            FrameSpec("next", "Next Steps", BLUE, 2, 0, 3),
        ),
        content_prompt=(
            "Generate brainstorming content. Return JSON:\n"
            '{"ideas":["..."],"questions":["..."],"next":["..."]}\n'
            "Ideas: 3-8 words each (5 total). Questions: short questions (3). "
            "Next steps: actionable items (3)."
        ),
    ),
    "timeline": TemplateSpec(
        id="timeline",
        name="Timeline",
        columns=4,
        frames=(
            FrameSpec("phase1", "Phase 1", BLUE, 0, 0, 3),
            FrameSpec("phase2", "Phase 2", PURPLE, 1, 0, 3),
            FrameSpec("phase3", "Phase 3", ORANGE, 2, 0, 3),
            FrameSpec("phase4", "Phase 4", GREEN, 3, 0, 3),
        ),
        content_prompt=(
            "Generate timeline/roadmap content. Return JSON:\n"
            '{"phase1":["..."],"phase2":["..."],"phase3":["..."],"phase4":["..."]}\n'
            "Each item: 3-8 words (milestone or task). Exactly 3 per phase."
        ),
    ),
    "matrix": TemplateSpec(
        id="matrix",
        name="2x2 Matrix",
        columns=2,
        frames=(
            FrameSpec("high_impact_low_effort", "Quick Wins", GREEN, 0, 0, 3),
            FrameSpec("high_impact_high_effort", "Big Projects", BLUE, 1, 0, 3),
            FrameSpec("low_impact_low_effort", "Fill-ins", YELLOW, 0, 1, 3),
            FrameSpec("low_impact_high_effort", "Avoid", RED, 1, 1, 3),
        ),
        content_prompt=(
            "Generate prioritization matrix content. Return JSON:\n"
            '{"high_impact_low_effort":["..."],"high_impact_high_effort":["..."],'
            '"low_impact_low_effort":["..."],"low_impact_high_effort":["..."]}\n'
            "Each item: 3-8 words (task/project). Exactly 3 per quadrant."
        ),
    ),
    "mind_map": TemplateSpec(
        id="mind_map",
        name="Mind Map",
        columns=3,
        frames=(
            FrameSpec("central", "Central Idea", PURPLE, 1, 0, 1),
            FrameSpec("branch_1", "Branch 1", BLUE, 0, 1, 3),
            FrameSpec("branch_2", "Branch 2", GREEN, 1, 1, 3),
            FrameSpec("branch_3", "Branch 3", ORANGE, 2, 1, 3),
        ),
        content_prompt=(
            "Generate mind map content. Return JSON:\n"
            '{"central":["Main topic"],"branch_1":["..."],"branch_2":["..."],"branch_3":["..."]}\n'
            "Central: 1 item (the core idea). Branches: 3 items each (3-8 words)."
        ),
    ),
    "sprint_board": TemplateSpec(
        id="sprint_board",
        name="Sprint Board",
        columns=4,
        frames=(
            FrameSpec("backlog", "Sprint Backlog", GRAY, 0, 0, 4),
            FrameSpec("in_progress", "In Progress", BLUE, 1, 0, 3),
            FrameSpec("review", "In Review", ORANGE, 2, 0, 2),
            FrameSpec("done", "Done", GREEN, 3, 0, 2),
        ),
        content_prompt=(
            "Generate sprint board content. Return JSON:\n"
            '{"backlog":["..."],"in_progress":["..."],"review":["..."],"done":["..."]}\n'
            "Each item: task description (3-10 words). Backlog: 4 items, "
            "In Progress: 3, Review: 2, Done: 2."
        ),
    ),
}


def get_template(template_id: str) -> TemplateSpec | None:
    return TEMPLATES.get(template_id)


def list_template_ids() -> list[str]:
    return list(TEMPLATES)


# ---------------------------------------------------------------------------
# Content generation
# ---------------------------------------------------------------------------

_TOPIC_STRIP = [
    re.compile(r"\b(create|make|set\s*up|build|generate|add|new)\b", re.I),
    re.compile(r"\b(a|an|the|for|of|about|on|with)\b", re.I),
    re.compile(r"\b(analysis|board|template|session|brainstorm(?:ing)?|retrospective|retro)\b", re.I),
    re.compile(r"\b(swot|kanban|pros\s*(?:and|&|/)\s*cons|timeline|roadmap|matrix|mind\s*map|sprint)\b", re.I),
]


def extract_topic(command: str, template_id: str) -> str:
    """What the template is about, with verbs, fillers and template words removed."""
    topic = command
    for pattern in _TOPIC_STRIP[:2]:
        topic = pattern.sub("", topic)
    own_name = re.compile(r"\b" + template_id.replace("_", r"[\s_]") + r"\b", re.I)
    topic = own_name.sub("", topic)
    for pattern in _TOPIC_STRIP[2:]:
        topic = pattern.sub("", topic)
    topic = re.sub(r"\s+", " ", topic).strip(" \t,.:;!?")
    return topic or GENERAL_TOPIC


_SWOT_DEFAULTS = {
    "strengths": [
        "Strong team expertise in {subject}",
        "Clear customer value proposition",
        "Fast iteration and decision cycles",
        "Established domain knowledge",
    ],
    "weaknesses": [
        "Limited resources for rapid scale",
        "Manual processes in key workflows",
        "Gaps in brand awareness",
        "Dependency on a few key people",
    ],
    "opportunities": [
        "Growing demand in target market",
        "Partnership potential with adjacent players",
        "Automation can unlock efficiency gains",
        "New channels for customer acquisition",
    ],
    "threats": [
        "Aggressive competitor pricing pressure",
        "Market conditions may shift quickly",
        "Regulatory changes could slow rollout",
        "Customer expectations rising over time",
    ],
}


def deterministic_content(template: TemplateSpec, topic: str) -> dict[str, list[str]]:
    """Placeholder text for every frame, used when the model is skipped or fails."""
    subject = "the initiative" if topic == GENERAL_TOPIC else topic
    if template.id == "swot":
        return {k: [s.format(subject=subject) for s in v] for k, v in _SWOT_DEFAULTS.items()}
    return {
        spec.key: [
            f"{spec.title} for {subject} ({i + 1})"[:ITEM_MAX_LENGTH]
            for i in range(spec.default_count)
        ]
        for spec in template.frames
    }


def generate_template_content(
    provider: ModelProvider, command: str, template: TemplateSpec,
) -> tuple[dict[str, list[str]], UsageStats]:
    """Note text for each frame of ``template``, keyed by frame key.

    Skips the model when the command names no topic. Any timeout, parse
    failure or missing key falls back to deterministic text for that frame.
    """
    topic = extract_topic(command, template.id)
    fallback = deterministic_content(template, topic)
    if topic == GENERAL_TOPIC:
        return fallback, UsageStats()

    try:
        completion = complete_with_timeout(
            provider,
            config.CONTENT_TIMEOUT_S,
            [
                Message(
                    role="system",
                    content=template.content_prompt
                    + "\nKeep each item concise; these go on sticky notes.",
                ),
                Message(role="user", content=f"Topic: {topic}"),
            ],
            response_format="json",
            model=config.MODEL_CONTENT,
            temperature=0.4,
            max_tokens=300,
        )
    except Exception as e:
        logger.warning("Template content generation failed (%s), using defaults", e)
        return fallback, UsageStats()

    parsed = parse_json_object(completion.text) or {}
    content: dict[str, list[str]] = {}
    for spec in template.frames:
        items = parsed.get(spec.key)
        if isinstance(items, list) and items:
            content[spec.key] = [str(s)[:ITEM_MAX_LENGTH] for s in items]
        else:
            content[spec.key] = fallback[spec.key]
    return content, completion.usage


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def _frame_grid(
    template: TemplateSpec, content: dict[str, list[str]], viewport: Viewport,
) -> list[tuple[FrameSpec, float, float, float, float]]:
    """(spec, x, y, width, height) for each frame, centered on the viewport."""
    sizes = [
        calculate_frame_size(
            len(content.get(spec.key, [])) or spec.default_count,
            STICKY_SIZE, STICKY_SIZE, max_cols=3, reserve=1,
        )
        for spec in template.frames
    ]
    col_widths: dict[int, float] = {}
    row_heights: dict[int, float] = {}
    for spec, (w, h) in zip(template.frames, sizes):
        col_widths[spec.col] = max(col_widths.get(spec.col, 0), w)
        row_heights[spec.row] = max(row_heights.get(spec.row, 0), h)

    gap = template.frame_gap
    col_x: dict[int, float] = {}
    cursor = 0.0
    for c in sorted(col_widths):
        col_x[c] = cursor
        cursor += col_widths[c] + gap
    total_width = cursor - gap
    row_y: dict[int, float] = {}
    cursor = 0.0
    for r in sorted(row_heights):
        row_y[r] = cursor
        cursor += row_heights[r] + gap
    total_height = cursor - gap

    anchor_x = viewport.center_x - total_width / 2
    anchor_y = viewport.center_y - total_height / 2
    return [
        (spec, anchor_x + col_x[spec.col], anchor_y + row_y[spec.row], w, h)
        for spec, (w, h) in zip(template.frames, sizes)
    ]


def execute_template(
    template: TemplateSpec,
    content: dict[str, list[str]],
    ctx: ToolContext,
    viewport: Viewport,
) -> TemplateResult:
    """Create the template's frames and notes. No layout is left to the model.

    A store error stops the build; the result then carries the ids written
    so far and the error. Nothing is rolled back: a retry under the same
    job id is the recovery path.
    """
    t0 = time.perf_counter()
    created: list[str] = []
    frame_ids: list[str] = []
    try:
        frames: list[tuple[FrameSpec, str]] = []
        for i, (spec, x, y, w, h) in enumerate(_frame_grid(template, content, viewport)):
            frame = ctx.new_object(
                "frame", x, y, w, h, color=FRAME_COLOR, text=spec.title, z_offset=-1000 + i,
            )
            created.append(frame.id)
            frame_ids.append(frame.id)
            frames.append((spec, frame.id))

        for spec, frame_id in frames:
            frame = ctx.arena.get_frame(frame_id)
            if frame is None:
                continue
            items = content.get(spec.key, [])
            left = frame.x + FRAME_PADDING
            top = frame.y + FRAME_TITLE_HEIGHT + FRAME_PADDING
            cols = max(1, int((frame.width - 2 * FRAME_PADDING + OBJECT_GAP) // (STICKY_SIZE + OBJECT_GAP)))
            for j, text in enumerate(items):
                row, col = divmod(j, cols)
                note = ctx.new_object(
                    "sticky",
                    left + col * (STICKY_SIZE + OBJECT_GAP),
                    top + row * (STICKY_SIZE + OBJECT_GAP),
                    STICKY_SIZE, STICKY_SIZE,
                    color=spec.sticky_color,
                    text=text[:TEXT_MAX_LENGTH],
                    parent_id=frame_id,
                    z_offset=len(created),
                )
                created.append(note.id)
            expansion = frame_expansion_for_children(frame, len(items), reserve=0)
            if expansion:
                ctx.patch_object(frame, width=expansion[0], height=expansion[1])
    except BoardpilotError as e:
        logger.error("Template %s aborted after %d objects: %s", template.id, len(created), e)
        return TemplateResult(success=False, created_ids=created, frame_ids=frame_ids, error=str(e))

    logger.info(
        "Template %s: %d frames, %d objects (%.0fms)",
        template.id, len(frame_ids), len(created), (time.perf_counter() - t0) * 1000,
    )
    return TemplateResult(success=True, created_ids=created, frame_ids=frame_ids)
