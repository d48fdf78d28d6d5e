"""Tests for the tool execution layer: placement, create/edit/delete tools, getContext, catalog."""

from __future__ import annotations

import math
from unittest.mock import patch

import pytest

from boardpilot.errors import StoreError
from boardpilot.tools.board_context import CONTEXT_CAP, get_context
from boardpilot.tools.catalog import (
    CONNECTOR_TOOLS,
    CREATE_TOOLS,
    TOOL_DECLARATIONS,
    ShapeArgs,
    StickyArgs,
    ToolName,
    declarations_for,
    dispatch_tool,
    parse_tool_args,
    run_tool_call,
)
from boardpilot.tools.context import DEFAULT_COLOR, PALETTE, ObjectArena, resolve_color
from boardpilot.tools.create import (
    bulk_create,
    create_connector,
    create_frame,
    create_shape,
    create_sticky_note,
    frame_size,
)
from boardpilot.tools.delete import bulk_delete
from boardpilot.tools.edit import (
    PARALLEL_SAFE,
    add_object_to_frame,
    arrange_objects,
    change_color,
    move_object,
    rearrange_frame,
    remove_object_from_frame,
    resize_object,
    update_text,
)
from boardpilot.tools.placement import (
    COORD_MAX,
    SIZE_MAX,
    SIZE_MIN,
    TEXT_MAX_LENGTH,
    resolve_placement,
    sanitize_coord,
    sanitize_size,
    sanitize_text,
)
from tests.helpers import CANVAS_ID, make_object, seed, seed_connector, seed_grid


def _overlap(a, b):
    return (
        a.x < b.x + b.width and a.x + a.width > b.x
        and a.y < b.y + b.height and a.y + a.height > b.y
    )


# ── Sanitizing ──


class TestSanitize:
    def test_coord_clamped(self):
        assert sanitize_coord(1e9) == COORD_MAX
        assert sanitize_coord(-1e9) == -COORD_MAX

    def test_coord_garbage_becomes_zero(self):
        assert sanitize_coord("abc") == 0.0
        assert sanitize_coord(None) == 0.0
        assert sanitize_coord(float("nan")) == 0.0

    def test_size_clamped(self):
        assert sanitize_size(10) == SIZE_MIN
        assert sanitize_size(99999) == SIZE_MAX
        assert sanitize_size(None) == SIZE_MIN

    def test_text_truncated(self):
        assert len(sanitize_text("x" * 900)) == TEXT_MAX_LENGTH
        assert sanitize_text(None) == ""

    def test_resolve_color(self):
        assert resolve_color("blue") == "#3B82F6"
        assert resolve_color("Green") == "#22C55E"
        assert resolve_color("#abcdef") == "#abcdef"
        assert resolve_color("mauve") == DEFAULT_COLOR
        assert resolve_color(None) == DEFAULT_COLOR
        assert resolve_color("random") in PALETTE


# ── Placement ──


class TestPlacement:
    def test_free_spot_kept(self, viewport):
        assert resolve_placement(100, 100, 150, 150, viewport, []) == (100, 100)

    def test_collision_avoided(self, viewport):
        existing = [make_object(x=0, y=0)]
        x, y = resolve_placement(0, 0, 150, 150, viewport, existing)
        placed = make_object(x=x, y=y)
        assert (x, y) != (0, 0)
        assert not _overlap(placed, existing[0])

    def test_sequential_creates_form_grid(self, ctx):
        ids = [create_sticky_note(ctx, f"note {i}").object_id for i in range(5)]
        objects = [ctx.arena.get(i) for i in ids]

        for i, a in enumerate(objects):
            for b in objects[i + 1:]:
                assert not _overlap(a, b)

        first_row = [o for o in objects if o.y == objects[0].y]
        assert len(first_row) == 4
        xs = sorted(o.x for o in first_row)
        assert all(math.isclose(b - a, 170) for a, b in zip(xs, xs[1:]))
        # Fifth note wraps under the first
        assert objects[4].x == objects[0].x
        assert objects[4].y == objects[0].y + 170


# ── Create tools ──


class TestCreateTools:
    def test_sticky_persisted_and_mirrored(self, ctx, store):
        result = create_sticky_note(ctx, "Hello", x=100, y=100, color="pink")
        assert result.success
        row = store.get_object(CANVAS_ID, result.object_id)
        assert row.text == "Hello"
        assert row.color == "#F472B6"
        assert row.created_by == "user-1"
        assert result.object_id in ctx.arena

    def test_sticky_into_missing_frame(self, ctx):
        result = create_sticky_note(ctx, "x", parent_id="nope")
        assert not result.success
        assert "Frame not found" in result.error

    def test_notes_in_frame_grid_and_grow(self, ctx, store):
        frame_id = create_frame(ctx, "Ideas", x=0, y=0, width=400, height=300).object_id
        ids = [create_sticky_note(ctx, f"idea {i}", parent_id=frame_id).object_id for i in range(4)]

        positions = {(ctx.arena.get(i).x, ctx.arena.get(i).y) for i in ids}
        assert positions == {(20, 60), (185, 60), (20, 225), (185, 225)}
        frame = ctx.arena.get(frame_id)
        assert frame.height == 560
        assert store.get_object(CANVAS_ID, frame_id).height == 560
        assert all(ctx.arena.get(i).parent_id == frame_id for i in ids)

    def test_shape_from_two_corners(self, ctx):
        result = create_shape(ctx, "circle", x=100, y=100, x2=0, y2=50)
        obj = ctx.arena.get(result.object_id)
        assert obj.type == "circle"
        assert (obj.x, obj.y, obj.width, obj.height) == (0, 50, 100, 50)

    def test_unknown_shape_kind_is_rectangle(self, ctx):
        result = create_shape(ctx, "hexagon")
        assert ctx.arena.get(result.object_id).type == "rectangle"

    def test_frame_size_from_expected_children(self):
        assert frame_size(None, None, 6) == (685, 395)
        assert frame_size(None, None, None) == (400, 300)
        assert frame_size(10, 10, None) == (200, 150)

    def test_frame_renders_below(self, ctx):
        note = create_sticky_note(ctx, "n", x=2000, y=2000).object_id
        frame = create_frame(ctx, "F").object_id
        assert ctx.arena.get(frame).z_index < ctx.arena.get(note).z_index

    def test_connector_requires_known_endpoints(self, ctx, store):
        a = create_sticky_note(ctx, "a").object_id
        result = create_connector(ctx, a, "ghost")
        assert not result.success
        assert "ghost" in result.error

        b = create_sticky_note(ctx, "b").object_id
        result = create_connector(ctx, a, b, style="zigzag")
        assert result.success
        (connector,) = store.list_connectors(CANVAS_ID)
        assert connector.style == "arrow"

    def test_bulk_create_mixed(self, ctx):
        frame_id = create_frame(ctx, "Box", x=3000, y=3000).object_id
        result = bulk_create(ctx, [
            {"type": "sticky", "text": "a", "color": "blue"},
            {"type": "rectangle", "width": 120, "height": 80},
            {"type": "sticky", "text": "inside", "parent_id": frame_id},
            {"type": "frame", "text": "Another"},
            {"type": "hexagon"},
        ])
        assert result.success
        assert result.data["count"] == 4
        assert result.data["failed"] == 1
        inside = ctx.arena.get(result.data["createdIds"][2])
        assert inside.parent_id == frame_id

    def test_bulk_create_empty(self, ctx):
        assert not bulk_create(ctx, []).success

    def test_bulk_create_all_failed(self, ctx):
        result = bulk_create(ctx, [{"type": "hexagon"}, {"type": "hexagon"}])
        assert not result.success
        assert result.data["createdIds"] == []
        assert result.data["failed"] == 2
        assert "hexagon" in result.error

    def test_bulk_create_store_failure(self, ctx, store):
        with patch.object(store, "insert_object", side_effect=StoreError("disk full")):
            result = bulk_create(ctx, [{"type": "sticky", "text": "a"}])
        assert not result.success
        assert "disk full" in result.error
        assert len(ctx.arena) == 0


# ── Edit tools ──


class TestEditTools:
    def test_move_resize_text_color(self, ctx, store):
        oid = create_sticky_note(ctx, "x", x=0, y=0).object_id
        assert move_object(ctx, oid, 300, 1e9).success
        assert resize_object(ctx, oid, 10, 99999).success
        assert update_text(ctx, oid, "renamed").success
        assert change_color(ctx, oid, "red").success

        row = store.get_object(CANVAS_ID, oid)
        assert (row.x, row.y) == (300, COORD_MAX)
        assert (row.width, row.height) == (SIZE_MIN, SIZE_MAX)
        assert row.text == "renamed"
        assert row.color == "#EF4444"

    @pytest.mark.parametrize("tool,args", [
        (move_object, (1, 2)),
        (resize_object, (100, 100)),
        (update_text, ("t",)),
        (change_color, ("red",)),
        (remove_object_from_frame, ()),
    ])
    def test_missing_object(self, ctx, tool, args):
        result = tool(ctx, "ghost", *args)
        assert not result.success
        assert "Object not found: ghost" in result.error

    def test_store_error_becomes_failed_result(self, ctx, store):
        oid = create_sticky_note(ctx, "x").object_id
        with patch.object(store, "update_object", side_effect=StoreError("disk full")):
            result = move_object(ctx, oid, 5, 5)
        assert not result.success
        assert "disk full" in result.error

    def test_add_and_remove_from_frame(self, ctx):
        frame_id = create_frame(ctx, "F", x=0, y=0, width=400, height=300).object_id
        oid = create_sticky_note(ctx, "x", x=2000, y=2000).object_id

        assert add_object_to_frame(ctx, oid, frame_id).success
        obj = ctx.arena.get(oid)
        assert obj.parent_id == frame_id
        assert (obj.x, obj.y) == (20, 60)

        assert remove_object_from_frame(ctx, oid).success
        assert obj.parent_id is None
        assert (obj.x, obj.y) == (20, 60)

    def test_add_to_non_frame(self, ctx):
        a = create_sticky_note(ctx, "a").object_id
        b = create_sticky_note(ctx, "b").object_id
        result = add_object_to_frame(ctx, a, b)
        assert not result.success
        assert "Frame not found" in result.error

    def test_arrange_row_centered(self, ctx):
        ids = [
            create_shape(ctx, "rectangle", x=x, y=y, width=100, height=100).object_id
            for x, y in ((0, 0), (500, 300), (200, 100))
        ]
        result = arrange_objects(ctx, ids, "row", spacing=20)
        assert result.data["count"] == 3
        positions = [(ctx.arena.get(i).x, ctx.arena.get(i).y) for i in ids]
        assert positions == [(130, 150), (250, 150), (370, 150)]

    def test_arrange_grid_no_overlap(self, ctx):
        ids = [create_sticky_note(ctx, str(i), x=i * 7, y=i * 3).object_id for i in range(6)]
        arrange_objects(ctx, ids, "grid")
        objects = [ctx.arena.get(i) for i in ids]
        for i, a in enumerate(objects):
            for b in objects[i + 1:]:
                assert not _overlap(a, b)

    def test_arrange_nothing(self, ctx):
        assert not arrange_objects(ctx, []).success
        assert not arrange_objects(ctx, ["ghost"]).success

    def test_rearrange_frame(self, ctx, store):
        frame = make_object("frame", x=0, y=0, width=400, height=300, text="F")
        children = [
            make_object(x=37 * i, y=500 + 11 * i, parent_id=frame.id) for i in range(5)
        ]
        seed(store, [frame, *children])
        ctx.arena = ObjectArena(store.list_objects(CANVAS_ID))

        result = rearrange_frame(ctx, frame.id)
        assert result.data["count"] == 5
        positions = {(ctx.arena.get(c.id).x, ctx.arena.get(c.id).y) for c in children}
        assert positions == {(20, 60), (185, 60), (20, 225), (185, 225), (20, 390)}
        assert store.get_object(CANVAS_ID, frame.id).height == 560

    def test_rearrange_empty_frame(self, ctx):
        frame_id = create_frame(ctx, "Empty").object_id
        result = rearrange_frame(ctx, frame_id)
        assert result.success
        assert result.data["updatedIds"] == []

    def test_parallel_safe_set(self):
        assert PARALLEL_SAFE == {"moveObject", "resizeObject", "updateText", "changeColor"}


# ── Bulk delete ──


class TestBulkDelete:
    def test_delete_all_cascades_connectors(self, store, make_ctx):
        objects = seed_grid(store, 12)
        for a, b in zip(objects[:3], objects[3:6]):
            seed_connector(store, a.id, b.id)
        ctx = make_ctx()

        result = bulk_delete(ctx, "all")
        assert result.data["deletedCount"] == 12
        assert store.list_objects(CANVAS_ID) == []
        assert store.list_connectors(CANVAS_ID) == []
        assert len(ctx.arena) == 0

    def test_delete_by_type_shape(self, store, make_ctx):
        seed(store, [
            make_object("rectangle"), make_object("circle", x=300),
            make_object("line", x=600), make_object("sticky", x=900),
        ])
        ctx = make_ctx()
        result = bulk_delete(ctx, "by_type", object_type="shape")
        assert result.data["count"] == 3
        assert [o.type for o in store.list_objects(CANVAS_ID)] == ["sticky"]

    def test_delete_by_ids_cascades_and_reports_missing(self, store, make_ctx):
        a, b = seed_grid(store, 2)
        seed_connector(store, a.id, b.id)
        ctx = make_ctx()

        result = bulk_delete(ctx, "by_ids", object_ids=[a.id, "ghost"])
        assert result.data["deletedIds"] == [a.id]
        assert result.data["notFound"] == ["ghost"]
        assert store.list_connectors(CANVAS_ID) == []
        assert b.id in ctx.arena

    def test_delete_frame_orphans_children(self, store, make_ctx):
        frame = make_object("frame", width=400, height=300)
        child = make_object(parent_id=frame.id, x=20, y=60)
        seed(store, [frame, child])
        ctx = make_ctx()

        bulk_delete(ctx, "by_ids", object_ids=[frame.id])
        assert ctx.arena.get(child.id).parent_id is None
        assert store.get_object(CANVAS_ID, child.id).parent_id is None

    def test_delete_connectors_by_type(self, store, make_ctx):
        a, b = seed_grid(store, 2)
        seed_connector(store, a.id, b.id)
        result = bulk_delete(make_ctx(), "by_type", object_type="connector")
        assert result.data["deletedCount"] == 1
        assert len(store.list_objects(CANVAS_ID)) == 2

    def test_invalid_inputs(self, ctx):
        assert "Invalid type" in bulk_delete(ctx, "by_type", object_type="planet").error
        assert "Invalid mode" in bulk_delete(ctx, "some").error
        assert not bulk_delete(ctx, "by_ids", object_ids=[]).success

    def test_nothing_of_type(self, ctx):
        result = bulk_delete(ctx, "by_type", object_type="frame")
        assert result.success
        assert result.data["deletedCount"] == 0


# ── getContext ──


class TestGetContext:
    def test_scopes(self, store, make_ctx):
        frame = make_object("frame", x=0, y=0, width=400, height=300, text="F")
        inside = make_object(x=20, y=60, parent_id=frame.id)
        far = make_object("rectangle", x=20000, y=20000)
        seed(store, [frame, inside, far])
        ctx = make_ctx(selected_ids=[far.id])

        def ids(**kw):
            return {row["id"] for row in get_context(ctx, **kw).data["objects"]}

        assert ids(scope="all") == {frame.id, inside.id, far.id}
        assert ids(scope="viewport") == {frame.id, inside.id}
        assert ids(scope="selected") == {far.id}
        assert ids(scope="frame", frame_id=frame.id) == {frame.id, inside.id}
        assert ids(scope="ids", object_ids=[inside.id]) == {inside.id}
        assert ids(scope="all", type_filter="shape") == {far.id}

    def test_parent_reported(self, store, make_ctx):
        frame = make_object("frame", width=400, height=300)
        inside = make_object(parent_id=frame.id)
        seed(store, [frame, inside])
        rows = get_context(make_ctx(), scope="ids", object_ids=[inside.id]).data["objects"]
        assert rows[0]["parentFrameId"] == frame.id

    def test_capped(self, store, make_ctx):
        seed_grid(store, 120)
        result = get_context(make_ctx(), scope="all")
        assert len(result.data["objects"]) == CONTEXT_CAP
        assert result.data["total"] == 120


# ── Catalog ──


class TestCatalog:
    def test_declarations_cover_every_tool(self):
        assert {d.name for d in TOOL_DECLARATIONS} == {t.value for t in ToolName}

    def test_restricted_subset_keeps_get_context(self):
        names = {d.name for d in declarations_for((ToolName.BULK_DELETE,))}
        assert names == {"bulkDelete", "getContext"}
        assert len(declarations_for(None)) == len(ToolName)

    def test_create_tools_match_model_names(self):
        assert "createStickyNote" in CREATE_TOOLS
        assert "moveObject" not in CREATE_TOOLS
        assert "createConnector" not in CREATE_TOOLS
        assert "createConnector" in CONNECTOR_TOOLS

    def test_parse_coerces_arguments(self):
        args = parse_tool_args(
            ToolName.CREATE_STICKY_NOTE,
            {"text": "hi", "x": "10", "y": True, "parentFrameId": ""},
        )
        assert args == StickyArgs(text="hi", x=10.0, y=None, color=None, parent_id=None)

    def test_parse_bulk_items(self):
        args = parse_tool_args(ToolName.BULK_CREATE, {"items": [
            {"type": "sticky", "parentFrameId": "f1", "expectedChildCount": 3}, "junk",
        ]})
        assert len(args.items) == 1
        assert args.items[0]["parent_id"] == "f1"
        assert args.items[0]["expected_child_count"] == 3

    def test_parse_single_id_string(self):
        args = parse_tool_args(ToolName.BULK_DELETE, {"mode": "by_ids", "objectIds": "abc"})
        assert args.object_ids == ["abc"]

    def test_run_tool_call(self, ctx):
        result = run_tool_call(ctx, "createStickyNote", {"text": "via catalog", "color": "green"})
        assert result.success
        assert ctx.arena.get(result.object_id).color == "#22C55E"

    def test_unknown_tool(self, ctx):
        result = run_tool_call(ctx, "launchRocket", {})
        assert not result.success
        assert "Unknown tool" in result.error

    def test_mismatched_arguments_rejected(self, ctx):
        with pytest.raises(TypeError):
            dispatch_tool(ctx, ToolName.CREATE_STICKY_NOTE, ShapeArgs())

    def test_payload_shape(self, ctx):
        result = run_tool_call(ctx, "moveObject", {"objectId": "ghost", "x": 1, "y": 1})
        payload = result.to_payload()
        assert payload["success"] is False
        assert "objectId" not in payload
        assert "error" in payload
