"""Command engine: routes one command through the execution paths and keeps the job ledger.

Paths are tried in a fixed order (fast path or AI extractor, template,
planner, tool loop); each returns Ok, Retry or Fatal and a Retry hands the
command to the next path. The tool loop is always last.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import Any

from boardpilot.agent.fast_path import (
    EXTRACTOR_MIN_CONFIDENCE,
    IntentDecision,
    decide_intent_route,
    execute_fast_path,
    extract_with_model,
)
from boardpilot.agent.loop import ToolLoop
from boardpilot.agent.planner import execute_plan, generate_plan, require_valid
from boardpilot.agent.provider import ModelProvider
from boardpilot.agent.router import RouteDecision, route
from boardpilot.agent.strategy import (
    ExecutionPath,
    ExecutionResult,
    Fatal,
    Ok,
    PathOutcome,
    Retry,
    build_summary,
    compute_focus_bounds,
    run_fallback_chain,
)
from boardpilot.agent.templates import execute_template, generate_template_content, get_template
from boardpilot.api.metrics import RouteMetrics
from boardpilot.api.rate_limit import RateLimiter
from boardpilot.errors import ErrorCode, PlanValidationError, RateLimitedError, StructuredError
from boardpilot.storage.sqlite_store import CanvasObject, SqliteStore
from boardpilot.tools.context import ObjectArena, ToolContext, Viewport

logger = logging.getLogger(__name__)

CACHED_MODEL = "cached"
IDEMPOTENT_MESSAGE = "Command already completed (idempotent)."
DEMOTED_CONFIDENCE = 0.2


@dataclass
class RouteTrace:
    """Which route source ended up serving the command, and why."""

    source: str
    confidence: float
    reason: str

    def demote(self, confidence: float, reason: str) -> None:
        self.source = "full_agent"
        self.confidence = confidence
        self.reason = reason


class JobReporter:
    """Best-effort writes to the job row. Failures are logged, never raised."""

    def __init__(self, store: SqliteStore, canvas_id: str, job_id: str | None) -> None:
        self._store = store
        self._canvas_id = canvas_id
        self._job_id = job_id

    def __call__(self, **patch: Any) -> None:
        if not self._job_id:
            return
        patch = {k: v for k, v in patch.items() if v is not None}
        if not patch:
            return
        try:
            self._store.update_job_progress(self._canvas_id, self._job_id, **patch)
        except Exception as e:
            logger.warning("Job progress update failed for %s: %s", self._job_id, e)


class CommandRun:
    """State for one command while it moves through the execution paths."""

    def __init__(
        self,
        engine: CommandEngine,
        command: str,
        route: RouteDecision,
        decision: IntentDecision,
        ctx: ToolContext,
        objects: list[CanvasObject],
        started: float,
        report: JobReporter,
    ) -> None:
        self.engine = engine
        self.command = command
        self.route = route
        self.loop_route = route
        self.decision = decision
        self.trace = RouteTrace(decision.source, decision.confidence, decision.reason)
        self.ctx = ctx
        self.objects = objects
        self.started = started
        self.report = report

    def paths(self) -> list[ExecutionPath]:
        paths: list[ExecutionPath] = []
        if self.decision.source == "fast_path":
            paths.append(ExecutionPath("fast_path", self.run_fast_path))
        elif self.decision.source == "ai_extractor":
            paths.append(ExecutionPath("ai_extractor", self.run_ai_extractor))
        if self.route.intent == "create_template" and self.route.template_id:
            paths.append(ExecutionPath("template", self.run_template))
        elif self.route.intent == "reorganize":
            paths.append(ExecutionPath("planner", self.run_planner))
        paths.append(ExecutionPath("tool_loop", self.run_tool_loop))
        return paths

    def _elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started) * 1000)

    # ── Paths ──

    def run_fast_path(self) -> PathOutcome:
        match = self.decision.match
        result = execute_fast_path(match, self.ctx, self.objects, self.started) if match else None
        if result is None:
            self.trace.demote(DEMOTED_CONFIDENCE, f"fast_path_failed:{self.trace.reason}")
            return Retry("fast path execution failed")
        return Ok(result)

    def run_ai_extractor(self) -> PathOutcome:
        extraction = extract_with_model(self.engine.provider, self.command)
        usage = (extraction.input_tokens, extraction.output_tokens)
        if extraction.match is None or extraction.confidence < EXTRACTOR_MIN_CONFIDENCE:
            self.trace.demote(extraction.confidence, f"ai_extractor_no_match:{extraction.reason}")
            return Retry(f"no confident match ({extraction.confidence:.2f})", usage)
        result = execute_fast_path(extraction.match, self.ctx, self.objects, self.started)
        if result is None:
            self.trace.demote(DEMOTED_CONFIDENCE, f"ai_extractor_exec_failed:{extraction.reason}")
            return Retry("extracted command failed to execute", usage)
        self.trace.confidence = extraction.confidence
        self.trace.reason = extraction.reason
        result.input_tokens += usage[0]
        result.output_tokens += usage[1]
        return Ok(result)

    def run_template(self) -> PathOutcome:
        template = get_template(self.route.template_id or "")
        if template is None:
            self.loop_route = dataclasses.replace(self.route, intent="create_simple")
            return Retry(str(StructuredError.template_not_found(self.route.template_id or "")))

        self.report(progress="Generating content...")
        content, usage = generate_template_content(self.engine.provider, self.command, template)
        self.report(progress="Creating template layout...")
        built = execute_template(template, content, self.ctx, self.ctx.viewport)

        result = ExecutionResult(
            success=built.success,
            message=(
                f"Created {template.name}: {len(built.created_ids)} objects ({len(built.frame_ids)} frames)"
                if built.success else f"Template error: {built.error}"
            ),
            objects_created=built.created_ids,
            focus=compute_focus_bounds(built.created_ids, self.ctx.arena),
            model=self.route.model,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=self._elapsed_ms(),
        )
        if built.success:
            return Ok(result)
        return Fatal(StructuredError.db_error(built.error or "template build failed"), partial=result)

    def run_planner(self) -> PathOutcome:
        self.report(status="planning", progress="Analyzing board and creating plan...")
        try:
            plan, usage = generate_plan(
                self.engine.provider, self.command, self.objects,
                self.ctx.viewport, self.ctx.selected_ids,
            )
        except Exception as e:
            logger.warning("Plan generation failed: %s", e)
            return Retry(f"plan generation failed: {e}")

        tokens = (usage.input_tokens, usage.output_tokens)
        try:
            validation = require_valid(plan, len(self.objects))
        except PlanValidationError as e:
            return Retry(f"plan rejected: {e}", tokens)
        for warning in validation.warnings:
            logger.warning("Plan warning: %s", warning)

        self.report(
            status="executing", plan=dataclasses.asdict(plan), progress="Executing plan...",
        )

        def on_progress(step: int, total: int, label: str) -> None:
            self.report(current_step=step, total_steps=total, progress=f"Step {step}/{total}: {label}")

        executed = execute_plan(plan, self.ctx, self.ctx.viewport, on_progress)
        result = ExecutionResult(
            success=executed.success,
            message=build_summary(executed.created_ids, executed.updated_ids, executed.deleted_ids)
            + (f" ({plan.summary})" if plan.summary else ""),
            objects_created=executed.created_ids,
            objects_updated=executed.updated_ids,
            objects_deleted=executed.deleted_ids,
            focus=compute_focus_bounds(executed.created_ids, self.ctx.arena),
            model="complex",
            input_tokens=tokens[0],
            output_tokens=tokens[1],
            duration_ms=self._elapsed_ms(),
        )
        if not executed.success:
            # Tokens travel on the partial result
            return Retry(f"plan execution failed: {executed.error}", partial=result)
        return Ok(result)

    def run_tool_loop(self) -> PathOutcome:
        self.report(status="executing")
        result = self.engine.tool_loop.run(
            self.command, self.loop_route, self.ctx, self.objects, self.started,
            on_progress=lambda step: self.report(progress=step),
        )
        if result.success:
            return Ok(result)
        return Fatal(StructuredError(ErrorCode.MODEL_ERROR, result.message), partial=result)


def _merge_retries(result: ExecutionResult, retries: list[Retry]) -> None:
    """Fold token usage and partial work from paths that handed off into the final result."""
    for retry in retries:
        result.input_tokens += retry.usage[0]
        result.output_tokens += retry.usage[1]
        partial = retry.partial
        if partial is None:
            continue
        result.input_tokens += partial.input_tokens
        result.output_tokens += partial.output_tokens
        result.tool_calls_count += partial.tool_calls_count
        result.objects_created = partial.objects_created + [
            i for i in result.objects_created if i not in partial.objects_created
        ]
        result.objects_updated = partial.objects_updated + [
            i for i in result.objects_updated if i not in partial.objects_updated
        ]
        result.objects_deleted = partial.objects_deleted + [
            i for i in result.objects_deleted if i not in partial.objects_deleted
        ]


class CommandEngine:
    """Entry point for natural-language canvas commands.

    The rate limiter and metrics are injected services; the engine only
    calls ``check`` and ``record`` on them.
    """

    def __init__(
        self,
        store: SqliteStore,
        provider: ModelProvider,
        rate_limiter: RateLimiter | None = None,
        metrics: RouteMetrics | None = None,
        tool_loop: ToolLoop | None = None,
    ) -> None:
        self.store = store
        self.provider = provider
        self.rate_limiter = rate_limiter
        self.metrics = metrics
        self.tool_loop = tool_loop or ToolLoop(provider)

    def _cached(self, job: dict[str, Any], started: float) -> ExecutionResult:
        elapsed = int((time.perf_counter() - started) * 1000)
        if job["status"] == "completed":
            return ExecutionResult(
                success=True, message=IDEMPOTENT_MESSAGE, model=CACHED_MODEL, duration_ms=elapsed,
            )
        # Failed jobs are terminal too; replay the stored failure
        stored = job.get("response") or {}
        known = {f.name for f in dataclasses.fields(ExecutionResult)}
        result = ExecutionResult(**{k: v for k, v in stored.items() if k in known}) if stored else (
            ExecutionResult(success=False, message=job.get("error") or "Command failed")
        )
        result.success = False
        result.model = CACHED_MODEL
        result.duration_ms = elapsed
        return result

    def submit_command(
        self,
        command: str,
        canvas_id: str,
        user_id: str,
        viewport: Viewport,
        selected_ids: list[str] | None = None,
        job_id: str | None = None,
    ) -> ExecutionResult:
        """Run one command against a canvas.

        Raises RateLimitedError when the user's window is full. A ``job_id``
        already in a terminal state short-circuits with no writes.
        """
        started = time.perf_counter()
        selected = list(selected_ids or [])

        if self.rate_limiter is not None:
            decision = self.rate_limiter.check(user_id)
            if not decision.allowed:
                raise RateLimitedError(decision.retry_after_seconds)

        if job_id:
            try:
                job = self.store.load_job(canvas_id, job_id)
            except Exception as e:
                logger.warning("Job lookup failed for %s: %s", job_id, e)
                job = None
            if job and job["status"] in ("completed", "failed"):
                logger.info("Job %s already %s, skipping", job_id, job["status"])
                return self._cached(job, started)

        try:
            version_start = self.store.get_version(canvas_id)
        except Exception as e:
            logger.warning("Version lookup failed for %s: %s", canvas_id, e)
            version_start = 0

        objects = self.store.list_objects(canvas_id)
        frame_titles = [o.text.lower().strip() for o in objects if o.type == "frame" and o.text]
        decided_route = route(command, len(selected), len(objects), frame_titles)
        intent_decision = decide_intent_route(command, decided_route.intent)
        logger.info(
            "Command %r: intent=%s scope=%s tier=%s source=%s (%.2f, %s)",
            command[:80], decided_route.intent, decided_route.scope, decided_route.model,
            intent_decision.source, intent_decision.confidence, intent_decision.reason,
        )

        report = JobReporter(self.store, canvas_id, job_id)
        report(status="executing", command=command, version_start=version_start, progress="Processing...")

        ctx = ToolContext(
            store=self.store,
            canvas_id=canvas_id,
            user_id=user_id,
            viewport=viewport,
            selected_ids=selected,
            arena=ObjectArena(objects),
        )
        run = CommandRun(self, command, decided_route, intent_decision, ctx, objects, started, report)
        outcome, path_name, retries = run_fallback_chain(run.paths())

        match outcome:
            case Ok(result=ok):
                result = ok
            case Fatal(error=error, partial=partial):
                logger.error("Command failed on %s: %s", path_name, error)
                result = partial or ExecutionResult(success=False, message=str(error))
                result.success = False
            case Retry(reason=reason):
                result = ExecutionResult(success=False, message=f"No execution path succeeded: {reason}")

        _merge_retries(result, retries)
        result.total_tokens = result.input_tokens + result.output_tokens
        if result.focus is None and result.objects_created:
            result.focus = compute_focus_bounds(result.objects_created, ctx.arena)
        result.duration_ms = int((time.perf_counter() - started) * 1000)
        result.route_source = run.trace.source
        result.route_confidence = run.trace.confidence
        result.route_reason = run.trace.reason

        if result.success:
            version_end = None
            if result.mutated:
                try:
                    version_end = self.store.increment_version(canvas_id)
                except Exception as e:
                    logger.warning("Version bump failed for %s: %s", canvas_id, e)
            report(
                status="completed", version_end=version_end,
                progress=result.message, response=result.to_dict(),
            )
        else:
            report(status="failed", error=result.message, response=result.to_dict())

        if self.metrics is not None:
            self.metrics.record(run.trace.source, decided_route.intent, result.duration_ms)

        logger.info(
            "Command done via %s in %dms: success=%s created=%d updated=%d deleted=%d tokens=%d",
            path_name, result.duration_ms, result.success, len(result.objects_created),
            len(result.objects_updated), len(result.objects_deleted), result.total_tokens,
        )
        return result
