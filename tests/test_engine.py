"""End-to-end tests for CommandEngine: routing, fallbacks, idempotency and the job ledger."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from boardpilot.agent.engine import CACHED_MODEL, IDEMPOTENT_MESSAGE, CommandEngine
from boardpilot.api.metrics import RouteMetrics
from boardpilot.api.rate_limit import RateLimiter
from boardpilot.errors import ModelTimeoutError, RateLimitedError, StoreError
from tests.helpers import (
    CANVAS_ID,
    USER_ID,
    FakeProvider,
    json_completion,
    make_object,
    seed,
    seed_connector,
    seed_grid,
    text_completion,
    tool_call_completion,
)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def engine(store, provider):
    return CommandEngine(store, provider)


@pytest.fixture
def submit(engine, viewport):
    def _submit(command, job_id=None, selected_ids=None, user_id=USER_ID):
        return engine.submit_command(
            command, CANVAS_ID, user_id, viewport, selected_ids=selected_ids, job_id=job_id,
        )
    return _submit


# ── Fast path ──


class TestFastPath:
    def test_delete_all(self, store, provider, submit):
        objects = seed_grid(store, 12)
        for a, b in zip(objects[:3], objects[3:6]):
            seed_connector(store, a.id, b.id)

        result = submit("delete all", job_id="job-1")

        assert result.success
        assert result.objects_deleted == ["all (12)"]
        assert result.model == "fast-path"
        assert result.route_source == "fast_path"
        assert result.total_tokens == 0
        assert provider.calls == []
        assert store.list_objects(CANVAS_ID) == []
        assert store.list_connectors(CANVAS_ID) == []
        assert store.get_version(CANVAS_ID) == 1
        job = store.load_job(CANVAS_ID, "job-1")
        assert job["status"] == "completed"
        assert job["version_start"] == 0
        assert job["version_end"] == 1
        assert job["response"]["objects_deleted"] == ["all (12)"]

    def test_add_yellow_stickies(self, store, submit):
        result = submit("add 3 yellow sticky notes")
        assert len(result.objects_created) == 3
        assert {o.color for o in store.list_objects(CANVAS_ID)} == {"#FBBF24"}
        assert result.focus is not None

    def test_query_does_not_bump_version(self, store, submit):
        seed_grid(store, 2)
        result = submit("what's on the board", job_id="job-q")
        assert result.success
        assert not result.mutated
        assert store.get_version(CANVAS_ID) == 0
        assert store.load_job(CANVAS_ID, "job-q")["version_end"] is None

    def test_failed_fast_path_falls_back_to_loop(self, store, provider, submit):
        seed_grid(store, 3)
        provider.script = [text_completion("I could not clear the board.")]
        with patch.object(store, "delete_all_objects", side_effect=StoreError("database is locked")):
            result = submit("delete all")

        assert result.success
        assert result.message == "I could not clear the board."
        assert result.route_source == "full_agent"
        assert result.route_reason == "fast_path_failed:regex_match:delete_all"
        assert result.route_confidence == 0.2
        assert len(provider.calls) == 1


# ── AI extractor ──


class TestExtractor:
    def test_confident_extraction(self, store, provider, submit):
        stickies = seed_grid(store, 3)
        (circle,) = seed(store, [make_object("circle", x=2000)])
        provider.script = [json_completion({
            "kind": "delete_by_type", "objectType": "sticky", "confidence": 0.92, "reason": "clear ask",
        })]

        result = submit("get rid of every sticky")

        assert result.route_source == "ai_extractor"
        assert result.route_confidence == 0.92
        assert sorted(result.objects_deleted) == sorted(o.id for o in stickies)
        assert [o.id for o in store.list_objects(CANVAS_ID)] == [circle.id]
        assert (result.input_tokens, result.output_tokens) == (10, 5)

    def test_low_confidence_falls_back(self, store, provider, submit):
        seed_grid(store, 2)
        provider.script = [
            json_completion({"kind": "delete_by_type", "objectType": "sticky", "confidence": 0.5}),
            tool_call_completion(("bulkDelete", {"mode": "by_type", "objectType": "sticky"})),
            text_completion("Removed them"),
        ]

        result = submit("get rid of every sticky")

        assert result.success
        assert result.message == "Removed them"
        assert result.route_source == "full_agent"
        assert result.route_reason.startswith("ai_extractor_no_match")
        assert len(result.objects_deleted) == 2
        # Extractor tokens still count
        assert result.input_tokens == 30


# ── Templates ──


class TestTemplate:
    def test_swot_without_topic_is_deterministic(self, store, provider, submit):
        result = submit("create a SWOT analysis")
        assert result.success
        assert provider.calls == []
        assert len(result.objects_created) == 20
        assert result.message.startswith("Created SWOT")
        assert len(store.list_objects(CANVAS_ID)) == 20

    def test_topic_content_from_model(self, store, provider, submit):
        provider.script = [json_completion({"pros": ["Cheap"], "cons": ["Slow"]}, input_tokens=50)]
        result = submit("create a pros and cons list for trains")
        texts = {o.text for o in store.list_objects(CANVAS_ID)}
        assert {"Pros", "Cons", "Cheap", "Slow"} <= texts
        assert result.input_tokens == 50


# ── Planner ──


def _plan_for(objects):
    return {
        "summary": "Group fruit",
        "newFrames": [{"key": "frame_0", "title": "Fruit", "color": "#F3F4F6"}],
        "assignments": [{"objectId": o.id, "targetFrameKey": "frame_0"} for o in objects],
        "deleteIds": [],
        "newStickies": [],
        "rearrangeFrameKeys": ["frame_0"],
    }


class TestPlanner:
    def test_reorganize_runs_plan(self, store, provider, submit):
        objects = seed(store, [make_object(text="apple"), make_object(x=300, text="pear")])
        provider.script = [json_completion(_plan_for(objects))]

        result = submit("reorganize the board into groups", job_id="job-p")

        assert result.success
        assert result.model == "complex"
        assert len(result.objects_created) == 1
        assert set(result.objects_updated) == {o.id for o in objects}
        assert "(Group fruit)" in result.message
        frame_id = result.objects_created[0]
        assert {o.parent_id for o in store.list_objects(CANVAS_ID) if o.type == "sticky"} == {frame_id}
        job = store.load_job(CANVAS_ID, "job-p")
        assert job["status"] == "completed"
        assert job["plan"]["summary"] == "Group fruit"
        assert job["total_steps"] == 3

    def test_rejected_plan_falls_back_to_loop(self, store, provider, submit):
        seed_grid(store, 4)
        provider.script = [
            json_completion({"newStickies": [{"text": str(i)} for i in range(150)]}),
            text_completion("Organized."),
        ]

        result = submit("reorganize the board into groups")

        assert result.success
        assert result.message == "Organized."
        assert len(provider.calls) == 2
        assert result.input_tokens == 20
        assert len(store.list_objects(CANVAS_ID)) == 4

    def test_failed_plan_execution_falls_back_to_loop(self, store, provider, submit):
        objects = seed_grid(store, 3)
        plan = _plan_for(objects[:1])
        plan["deleteIds"] = [o.id for o in objects[1:]]
        provider.script = [json_completion(plan), text_completion("Handled.")]

        with patch.object(store, "delete_objects", side_effect=StoreError("disk full")):
            result = submit("reorganize the board into groups", job_id="job-pf")

        assert result.success
        assert result.message == "Handled."
        assert result.route_source == "full_agent"
        assert len(provider.calls) == 2
        assert len(store.list_objects(CANVAS_ID)) == 3
        # Plan tokens still count
        assert result.input_tokens == 20
        assert store.load_job(CANVAS_ID, "job-pf")["status"] == "completed"

    def test_plan_with_duplicate_frame_keys_is_rejected(self, store, provider, submit):
        seed_grid(store, 2)
        provider.script = [
            json_completion({"newFrames": [{"key": "k", "title": "A"}, {"key": "k", "title": "B"}]}),
            text_completion("Organized."),
        ]

        result = submit("reorganize the board into groups")

        assert result.message == "Organized."
        assert len(provider.calls) == 2
        assert [o.type for o in store.list_objects(CANVAS_ID)] == ["sticky", "sticky"]

    def test_plan_timeout_falls_back_to_loop(self, store, provider, submit):
        seed_grid(store, 4)
        provider.script = [ModelTimeoutError(30), text_completion("ok")]
        result = submit("reorganize the board into groups")
        assert result.success
        assert len(provider.calls) == 2


# ── Tool loop and failures ──


class TestToolLoopPath:
    def test_terminal_failure_keeps_partial_work(self, store, provider, submit):
        provider.script = [
            tool_call_completion(("createStickyNote", {"text": "hi"})),
            RuntimeError("provider down"),
        ]

        result = submit("hello there", job_id="job-f")

        assert not result.success
        assert "provider down" in result.message
        assert len(result.objects_created) == 1
        assert store.get_version(CANVAS_ID) == 0
        job = store.load_job(CANVAS_ID, "job-f")
        assert job["status"] == "failed"
        assert "provider down" in job["error"]


# ── Idempotency ──


class TestIdempotency:
    def test_completed_job_short_circuits(self, store, provider, submit):
        seed_grid(store, 3)
        store.update_job_progress(CANVAS_ID, "job-1", status="completed", command="delete all")

        result = submit("delete all", job_id="job-1")

        assert result.success
        assert result.model == CACHED_MODEL
        assert result.message == IDEMPOTENT_MESSAGE
        assert result.objects_deleted == []
        assert len(store.list_objects(CANVAS_ID)) == 3
        assert store.get_version(CANVAS_ID) == 0
        assert provider.calls == []

    def test_replayed_command_is_not_rerun(self, store, submit):
        first = submit("add 3 yellow sticky notes", job_id="job-2")
        second = submit("add 3 yellow sticky notes", job_id="job-2")
        assert len(first.objects_created) == 3
        assert second.model == CACHED_MODEL
        assert len(store.list_objects(CANVAS_ID)) == 3
        assert store.get_version(CANVAS_ID) == 1

    def test_failed_job_replays_failure(self, provider, submit):
        provider.script = [RuntimeError("provider down")]
        submit("hello there", job_id="job-3")
        replay = submit("hello there", job_id="job-3")
        assert not replay.success
        assert replay.model == CACHED_MODEL
        assert "provider down" in replay.message
        assert len(provider.calls) == 1


# ── Injected services ──


class TestServices:
    def test_rate_limited(self, store, provider, viewport):
        engine = CommandEngine(store, provider, rate_limiter=RateLimiter(max_requests=1, window_s=60))
        engine.submit_command("what's on the board", CANVAS_ID, USER_ID, viewport)
        with pytest.raises(RateLimitedError) as exc_info:
            engine.submit_command("what's on the board", CANVAS_ID, USER_ID, viewport)
        assert exc_info.value.retry_after_seconds >= 1
        # Other users are unaffected
        engine.submit_command("what's on the board", CANVAS_ID, "user-2", viewport)

    def test_metrics_recorded(self, store, provider, viewport):
        metrics = RouteMetrics()
        engine = CommandEngine(store, provider, metrics=metrics)
        engine.submit_command("delete all", CANVAS_ID, USER_ID, viewport)
        stats = metrics.stats()
        assert stats["sample_count"] == 1
        assert stats["by_source"]["fast_path"]["count"] == 1
        assert stats["by_intent"]["delete"]["count"] == 1
