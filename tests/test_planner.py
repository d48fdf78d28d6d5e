"""Tests for plan parsing, validation, generation and execution."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from boardpilot import config
from boardpilot.agent.planner import (
    Plan,
    PlanAssignment,
    PlanFrame,
    PlanSticky,
    execute_plan,
    generate_plan,
    require_valid,
    validate_plan,
)
from boardpilot.errors import ModelTimeoutError, PlanValidationError, StoreError
from tests.helpers import CANVAS_ID, FakeProvider, json_completion, make_object, seed, seed_grid, text_completion


def _stickies(n):
    return [PlanSticky(text=f"s{i}") for i in range(n)]


# ── Parsing ──


class TestPlanFromJson:
    def test_camel_case_keys(self):
        plan = Plan.from_json({
            "summary": "Group by theme",
            "newFrames": [{"key": "frame_0", "title": "Fruit"}],
            "assignments": [{"objectId": "a", "targetFrameKey": "frame_0"}],
            "deleteIds": ["b"],
            "newStickies": [{"text": "Kiwi", "targetFrameKey": "frame_0"}],
            "rearrangeFrameKeys": ["frame_0"],
        })
        assert plan.summary == "Group by theme"
        assert plan.new_frames == [PlanFrame(key="frame_0", title="Fruit")]
        assert plan.assignments == [PlanAssignment(object_id="a", target_frame_key="frame_0")]
        assert plan.delete_ids == ["b"]
        assert plan.new_stickies[0].target_frame_key == "frame_0"
        assert plan.rearrange_frame_keys == ["frame_0"]

    def test_malformed_entries_dropped(self):
        plan = Plan.from_json({
            "newFrames": "nope",
            "assignments": [None, 3, {"objectId": "a", "targetFrameKey": "k"}],
            "newStickies": [{"text": "x"}],
        })
        assert plan.new_frames == []
        assert len(plan.assignments) == 1
        assert plan.new_stickies[0].target_frame_key is None
        assert plan.total_creates == 1


# ── Validation ──


class TestValidatePlan:
    def test_too_many_creates(self):
        result = validate_plan(Plan(new_stickies=_stickies(150)), object_count=10)
        assert not result.ok
        assert "150" in result.error

    def test_too_many_deletes_or_moves(self):
        ids = [f"id-{i}" for i in range(201)]
        assert not validate_plan(Plan(delete_ids=ids), 500).ok
        moves = [PlanAssignment(object_id=i, target_frame_key="k") for i in ids]
        assert not validate_plan(Plan(assignments=moves), 500).ok

    def test_destructive_plan_warns_but_passes(self):
        plan = Plan(delete_ids=[f"id-{i}" for i in range(60)])
        result = validate_plan(plan, object_count=100)
        assert result.ok
        assert "Plan deletes more than half the board" in result.warnings

    def test_duplicate_frame_keys(self):
        plan = Plan(new_frames=[PlanFrame("k", "A"), PlanFrame("k", "B")])
        result = validate_plan(plan, 0)
        assert not result.ok
        assert "Duplicate frame key" in result.error

    def test_require_valid_raises(self):
        with pytest.raises(PlanValidationError):
            require_valid(Plan(new_stickies=_stickies(101)), 0)
        assert require_valid(Plan(), 0).ok


# ── Generation ──


class TestGeneratePlan:
    def test_json_call_on_complex_tier(self, viewport):
        objects = [make_object(text="apple"), make_object(x=300, text="carrot")]
        provider = FakeProvider([json_completion(
            {"summary": "s", "newFrames": [{"key": "frame_0", "title": "Food"}]},
            input_tokens=300, output_tokens=80,
        )])

        plan, usage = generate_plan(provider, "group these", objects, viewport, [])

        assert plan.new_frames[0].title == "Food"
        assert (usage.input_tokens, usage.output_tokens) == (300, 80)
        call = provider.calls[0]
        assert call["response_format"] == "json"
        assert call["temperature"] == 0.3
        assert call["model"] == config.MODEL_COMPLEX
        assert call["tools"] is None
        user = call["messages"][-1].content
        assert "Command: group these" in user
        assert objects[0].id in user and objects[1].id in user

    def test_unparseable(self, viewport):
        with pytest.raises(PlanValidationError):
            generate_plan(FakeProvider([text_completion("sorry")]), "x", [], viewport, [])

    def test_timeout_propagates(self, viewport):
        with pytest.raises(ModelTimeoutError):
            generate_plan(FakeProvider([ModelTimeoutError(30)]), "x", [], viewport, [])


# ── Execution ──


class TestExecutePlan:
    def test_five_phases(self, store, make_ctx, viewport):
        apple, pear, carrot, leek, junk = seed(store, [
            make_object(text="apple"), make_object(x=200, text="pear"),
            make_object(x=400, text="carrot"), make_object(x=600, text="leek"),
            make_object(x=800, text="junk"),
        ])
        plan = Plan(
            summary="fruit and veg",
            new_frames=[PlanFrame("frame_0", "Fruit"), PlanFrame("frame_1", "Veg")],
            assignments=[
                PlanAssignment(apple.id, "frame_0"), PlanAssignment(pear.id, "frame_0"),
                PlanAssignment(carrot.id, "frame_1"), PlanAssignment(leek.id, "frame_1"),
            ],
            delete_ids=[junk.id],
            new_stickies=[PlanSticky("onion", target_frame_key="frame_1")],
            rearrange_frame_keys=["frame_0"],
        )
        ctx = make_ctx()
        progress = []

        result = execute_plan(plan, ctx, viewport, lambda done, total, label: progress.append((done, total)))

        assert result.success
        assert result.deleted_ids == [junk.id]
        assert result.steps_total == 6
        assert progress == [(i, 6) for i in range(1, 7)]

        fruit_id, veg_id = result.created_ids[:2]
        assert ctx.arena.get(fruit_id).text == "Fruit"
        assert {o.id for o in ctx.arena.children_of(fruit_id)} == {apple.id, pear.id}
        veg_children = ctx.arena.children_of(veg_id)
        assert {o.text for o in veg_children} == {"carrot", "leek", "onion"}
        assert set(result.updated_ids) >= {apple.id, pear.id, carrot.id, leek.id}

        # Frames sit in one row centered on the viewport
        fruit, veg = ctx.arena.get(fruit_id), ctx.arena.get(veg_id)
        assert fruit.y == veg.y
        assert veg.x == fruit.x + fruit.width + 30
        assert (fruit.x + veg.x + veg.width) / 2 == pytest.approx(viewport.center_x)

        persisted = {o.id: o for o in store.list_objects(CANVAS_ID)}
        assert junk.id not in persisted
        assert persisted[apple.id].parent_id == fruit_id

    def test_existing_frame_id_and_unknown_key(self, store, make_ctx, viewport):
        frame = make_object("frame", x=1000, width=520, height=400, text="Inbox")
        note = make_object(text="n")
        stray = make_object(x=300, text="stray")
        seed(store, [frame, note, stray])
        plan = Plan(assignments=[
            PlanAssignment(note.id, frame.id),
            PlanAssignment(stray.id, "frame_9"),
        ])
        ctx = make_ctx()

        result = execute_plan(plan, ctx, viewport)

        assert result.success
        assert result.updated_ids == [note.id]
        assert ctx.arena.get(note.id).parent_id == frame.id
        assert ctx.arena.get(stray.id).parent_id is None

    def test_store_failure_mid_plan_keeps_partial_results(self, store, make_ctx, viewport):
        seed_grid(store, 2)
        plan = Plan(
            new_frames=[PlanFrame("frame_0", "A")],
            new_stickies=_stickies(2),
            rearrange_frame_keys=["frame_0"],
        )
        real_insert = store.insert_object
        writes = []

        def flaky(canvas_id, obj):
            if writes:
                raise StoreError("disk full")
            writes.append(obj.id)
            real_insert(canvas_id, obj)

        with patch.object(store, "insert_object", side_effect=flaky):
            result = execute_plan(plan, make_ctx(), viewport)

        assert not result.success
        assert "disk full" in result.error
        assert result.created_ids == writes
        assert result.steps_completed == 2
        assert result.steps_total == 3
        # No rollback
        assert len(store.list_objects(CANVAS_ID)) == 3

    def test_failed_delete_stops_plan(self, store, make_ctx, viewport):
        objects = seed_grid(store, 3)
        plan = Plan(delete_ids=[o.id for o in objects], new_stickies=_stickies(1))
        with patch.object(store, "delete_objects", side_effect=StoreError("disk full")):
            result = execute_plan(plan, make_ctx(), viewport)

        assert not result.success
        assert "disk full" in result.error
        assert result.deleted_ids == []
        assert result.created_ids == []
        assert result.steps_completed == 1
        assert len(store.list_objects(CANVAS_ID)) == 3

    def test_failed_move_stops_plan(self, store, make_ctx, viewport):
        (note,) = seed(store, [make_object(text="n")])
        plan = Plan(
            new_frames=[PlanFrame("frame_0", "A")],
            assignments=[PlanAssignment(note.id, "frame_0")],
        )
        with patch.object(store, "update_object", side_effect=StoreError("database is locked")):
            result = execute_plan(plan, make_ctx(), viewport)

        assert not result.success
        assert "database is locked" in result.error
        assert len(result.created_ids) == 1
        assert result.updated_ids == []

    def test_deleted_and_unknown_objects_are_skipped(self, store, make_ctx, viewport):
        keep, junk = seed(store, [make_object(text="keep"), make_object(x=300, text="junk")])
        plan = Plan(
            new_frames=[PlanFrame("frame_0", "A")],
            delete_ids=[junk.id],
            assignments=[
                PlanAssignment(junk.id, "frame_0"),
                PlanAssignment("ghost", "frame_0"),
                PlanAssignment(keep.id, "frame_0"),
            ],
            rearrange_frame_keys=["frame_0", "frame_7"],
        )
        ctx = make_ctx()

        result = execute_plan(plan, ctx, viewport)

        assert result.success
        assert result.deleted_ids == [junk.id]
        assert keep.id in result.updated_ids
        assert ctx.arena.get(keep.id).parent_id == result.created_ids[0]
