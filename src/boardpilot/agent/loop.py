"""General tool-calling loop: the model drives the tool layer for a bounded number of rounds."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from boardpilot import config
from boardpilot.agent.digest import build_digest
from boardpilot.agent.provider import Message, ModelProvider, ToolCall, UsageStats, complete_with_timeout
from boardpilot.agent.router import RouteDecision
from boardpilot.agent.strategy import ExecutionResult, build_summary, compute_focus_bounds
from boardpilot.errors import BoardpilotError
from boardpilot.storage.sqlite_store import CanvasObject
from boardpilot.tools.catalog import CONNECTOR_TOOLS, CREATE_TOOLS, declarations_for, run_tool_call
from boardpilot.tools.context import ToolContext, ToolResult, Viewport
from boardpilot.tools.edit import PARALLEL_SAFE

logger = logging.getLogger(__name__)

# Intents where one successful round is enough; the second call would only write a summary
EARLY_EXIT_INTENTS = ("create_simple", "delete", "edit_specific", "edit_selected")
QUERY_DETAIL_OBJECTS = 20
MAX_PARALLEL_TOOLS = 8

SYSTEM_PROMPT_TEMPLATE = """\
You are an AI assistant that manipulates a collaborative whiteboard.

## Viewport
  Center: ({center_x}, {center_y})
  Zoom: {scale:.2f}x
{selection}

## Placement rules (IMPORTANT)
**You do NOT need to compute x/y coordinates.** The server handles layout:
- **Inside frames**: pass `parentFrameId` and omit x/y. Grid layout is automatic.
- **Free objects**: omit x/y. They are auto-placed in a clean grid near the viewport center.
- **Only specify x/y** for frame positioning in templates.
- **Only place objects inside frames when the user explicitly asks** (e.g. "add to the \
Strengths frame"). Otherwise create free-standing objects.

## Colors
yellow (#FBBF24), pink (#F472B6), blue (#3B82F6), green (#22C55E), orange (#F97316), \
purple (#A855F7), red (#EF4444), gray (#9CA3AF), white (#FFFFFF)
Color can be a hex code or "random" for a random palette color.
{guidance}
Always respond with tool calls unless answering a question.

## Board state
{digest}"""

INTENT_GUIDANCE = {
    "create_template": (
        "\n## Template\n1. Create frames with `expectedChildCount` and explicit x/y\n"
        "2. `bulkCreate` stickies with `parentFrameId`\n3. Space frames 30px apart\n"
    ),
    "create_simple": (
        "\n## Creating\n**Always use `bulkCreate` when creating 2+ objects.** Do NOT call "
        "createStickyNote/createShape repeatedly; use one `bulkCreate` call with all items.\n"
        "Only place objects inside frames (via parentFrameId) when the user explicitly asks.\n"
    ),
    "delete": '\n## Deleting\nUse `bulkDelete`: mode "all", "by_type" or "by_ids".\n',
    "edit_selected": "\n## Editing\nApply changes to the selected objects.\n",
    "edit_specific": (
        "\n## Targeted edits\nPrefer modifying existing objects and frames mentioned by name.\n"
        "Frame ids are listed in the board state below; use them directly without calling "
        "getContext first.\n"
    ),
    "query": (
        "\n## Answering questions\nAnswer from the board state summary below. Only call "
        "`getContext` if the user asks about object details not in the summary. "
        "You may respond with just text.\n"
    ),
}
DEFAULT_GUIDANCE = (
    "\n## Tools\n- `bulkCreate`/`bulkDelete` for batch operations\n"
    "- `arrangeObjects`/`rearrangeFrame` for layout\n- `getContext` for details\n"
)


def build_system_prompt(
    viewport: Viewport,
    selected_ids: list[str],
    objects: list[CanvasObject],
    route: RouteDecision,
) -> str:
    max_detail = QUERY_DETAIL_OBJECTS if route.intent == "query" else 50
    digest = build_digest(
        objects, selected_ids, viewport, route.scope,
        include_detail=route.needs_full_context, max_detail_objects=max_detail,
    )
    selection = (
        f"\nSelected objects: {', '.join(selected_ids)}" if selected_ids else "\nNo objects selected."
    )
    return SYSTEM_PROMPT_TEMPLATE.format(
        center_x=round(viewport.center_x),
        center_y=round(viewport.center_y),
        scale=viewport.scale,
        selection=selection,
        guidance=INTENT_GUIDANCE.get(route.intent, DEFAULT_GUIDANCE),
        digest=digest,
    )


@dataclass
class LoopTally:
    """Object ids touched so far, in the order the tools reported them."""

    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    failures: int = 0

    def track(self, tool_name: str, result: ToolResult) -> None:
        if not result.success:
            self.failures += 1
        if result.object_id and tool_name not in CONNECTOR_TOOLS:
            if tool_name in CREATE_TOOLS:
                self.created.append(result.object_id)
            else:
                self.updated.append(result.object_id)
        data = result.data
        self.created.extend(data.get("createdIds") or [])
        self.updated.extend(data.get("updatedIds") or [])
        self.deleted.extend(data.get("deletedIds") or [])
        if data.get("deletedCount") and "deletedIds" not in data:
            self.deleted.append(f"all ({data['deletedCount']})")


class ToolLoop:
    """Multi-round tool calling under iteration, tool-call and creation ceilings.

    Each round sends the transcript to the model, runs the requested tool
    calls and appends their results. The loop ends when the model answers
    in text, a ceiling is hit, or a simple intent finishes in one round.
    """

    def __init__(
        self,
        provider: ModelProvider,
        max_iterations: int | None = None,
        max_tool_calls: int | None = None,
        max_objects_created: int | None = None,
        timeout_s: float | None = None,
    ) -> None:
        self._provider = provider
        self.max_iterations = max_iterations or config.MAX_ITERATIONS
        self.max_tool_calls = max_tool_calls or config.MAX_TOOL_CALLS
        self.max_objects_created = max_objects_created or config.MAX_OBJECTS_CREATED
        self.timeout_s = timeout_s or config.MODEL_TIMEOUT_S

    def _execute_call(self, ctx: ToolContext, call: ToolCall) -> ToolResult:
        t0 = time.perf_counter()
        try:
            result = run_tool_call(ctx, call.name, call.args)
        except Exception as e:
            logger.error("  tool error: %s: %s", call.name, e)
            result = ToolResult(success=False, error=str(e))
        logger.debug(
            "  tool done: %s -> %s (%.3fs)",
            call.name, "ok" if result.success else result.error, time.perf_counter() - t0,
        )
        return result

    def _execute_batch(self, ctx: ToolContext, calls: list[ToolCall]) -> list[ToolResult]:
        """Run one round of calls. Results come back in the order the model asked."""
        parallel = len(calls) > 1 and all(c.name in PARALLEL_SAFE for c in calls)
        if not parallel:
            return [self._execute_call(ctx, c) for c in calls]
        logger.debug("  running %d calls in parallel", len(calls))
        with ThreadPoolExecutor(max_workers=min(len(calls), MAX_PARALLEL_TOOLS)) as pool:
            return list(pool.map(lambda c: self._execute_call(ctx, c), calls))

    def run(
        self,
        command: str,
        route: RouteDecision,
        ctx: ToolContext,
        objects: list[CanvasObject],
        started: float,
        on_progress: Callable[[str], None] | None = None,
    ) -> ExecutionResult:
        model = route.model
        model_name = config.model_for_tier(model)
        tools = declarations_for(route.allowed_tools)
        usage = UsageStats()
        tally = LoopTally()
        tool_calls = 0

        messages = [
            Message(role="system", content=build_system_prompt(ctx.viewport, ctx.selected_ids, objects, route)),
            Message(role="user", content=command),
        ]
        logger.info("Tool loop started: intent=%s model=%s tools=%d", route.intent, model_name, len(tools))

        def finish(message: str, success: bool = True) -> ExecutionResult:
            return ExecutionResult(
                success=success,
                message=message,
                objects_created=tally.created,
                objects_updated=tally.updated,
                objects_deleted=tally.deleted,
                focus=compute_focus_bounds(tally.created, ctx.arena),
                model=model,
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                total_tokens=usage.total_tokens,
                tool_calls_count=tool_calls,
                duration_ms=int((time.perf_counter() - started) * 1000),
            )

        for iteration in range(self.max_iterations):
            if tool_calls >= self.max_tool_calls:
                logger.warning("Tool-call ceiling reached (%d)", tool_calls)
                break
            if len(tally.created) >= self.max_objects_created:
                logger.warning("Creation ceiling reached (%d objects)", len(tally.created))
                break

            # Queries may answer in plain text; everything else must act on the first turn
            force = iteration == 0 and route.intent != "query"
            logger.info("--- Iteration %d/%d ---", iteration + 1, self.max_iterations)
            t0 = time.perf_counter()
            try:
                completion = complete_with_timeout(
                    self._provider,
                    self.timeout_s,
                    messages,
                    tools=tools,
                    tool_choice="required" if force else "auto",
                    model=model_name,
                )
            except BoardpilotError as e:
                logger.error("Tool loop stopped at iteration %d: %s", iteration + 1, e)
                return finish(f"AI request failed: {e}", success=False)
            except Exception as e:
                logger.exception("Model call failed at iteration %d", iteration + 1)
                return finish(f"AI request failed: {e}", success=False)
            usage.add(completion.usage)
            llm_elapsed = time.perf_counter() - t0

            if not completion.tool_calls:
                logger.info("Model answered in text (%d chars, LLM %.2fs)", len(completion.text or ""), llm_elapsed)
                return finish(completion.text or build_summary(tally.created, tally.updated, tally.deleted))

            calls = completion.tool_calls[: self.max_tool_calls - tool_calls]
            logger.info(
                "LLM requested %d tool call(s), running %d: %s (LLM %.2fs)",
                len(completion.tool_calls), len(calls),
                ", ".join(c.name for c in calls), llm_elapsed,
            )
            messages.append(Message(role="assistant", content=completion.text or "", tool_calls=calls))

            tool_calls += len(calls)
            results = self._execute_batch(ctx, calls)
            for call, result in zip(calls, results):
                tally.track(call.name, result)
                messages.append(Message(
                    role="tool",
                    content=json.dumps(result.to_payload()),
                    tool_call_id=call.id,
                    name=call.name,
                ))

            if on_progress is not None:
                on_progress(
                    f"Iteration {iteration + 1}: {len(tally.created)} created, {len(tally.updated)} updated"
                )

            if (
                iteration == 0
                and route.intent in EARLY_EXIT_INTENTS
                and (tally.created or tally.deleted)
                and tally.failures == 0
            ):
                logger.info("Early exit after one round (%s)", route.intent)
                return finish(build_summary(tally.created, tally.updated, tally.deleted))

        return finish(build_summary(tally.created, tally.updated, tally.deleted))
