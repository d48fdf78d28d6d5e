"""Tests for the intent router."""

from __future__ import annotations

import time

import pytest

from boardpilot.agent.router import (
    TOOLS_CREATE_FULL,
    TOOLS_CREATE_SIMPLE,
    TOOLS_EDIT,
    TOOLS_QUERY,
    TOOLS_TEMPLATE,
    has_existing_template,
    route,
)

LONG_CREATE = (
    "create one sticky for marketing and one for sales and one for engineering "
    "and one for support, each with a short description of what that team wants "
    "to accomplish over the next quarter"
)


class TestTemplates:
    @pytest.mark.parametrize("command,template_id", [
        ("create a SWOT analysis", "swot"),
        ("make a kanban board for the launch", "kanban"),
        ("set up a sprint retrospective", "retro"),
        ("build a pros and cons list for remote work", "pros_cons"),
        ("generate a roadmap", "timeline"),
        ("create a mind map about cooking", "mind_map"),
    ])
    def test_template_detected(self, command, template_id):
        decision = route(command, 0, 0, [])
        assert decision.intent == "create_template"
        assert decision.template_id == template_id
        assert decision.allowed_tools == TOOLS_TEMPLATE

    def test_edit_of_existing_template(self):
        decision = route("add a sticky to the SWOT strengths", 0, 20, [])
        assert decision.intent == "edit_specific"
        assert decision.template_id is None

    def test_existing_template_not_recreated(self):
        titles = ["strengths", "weaknesses", "opportunities"]
        assert route("swot", 0, 20, titles).intent == "general"
        assert route("swot", 0, 20, []).intent == "create_template"

    def test_explicit_create_wins_over_existing(self):
        titles = ["strengths", "weaknesses", "opportunities", "threats"]
        assert route("create another swot", 0, 20, titles).intent == "create_template"


class TestHasExistingTemplate:
    def test_three_quarters_of_titles(self):
        assert not has_existing_template("swot", ["Strengths", "Weaknesses"])
        assert has_existing_template("swot", ["Strengths", "Weaknesses", "Opportunities"])

    def test_small_templates_need_every_title(self):
        assert not has_existing_template("pros_cons", ["Pros"])
        assert has_existing_template("pros_cons", ["Pros", "Cons"])

    def test_titles_match_as_whole_words(self):
        assert has_existing_template("pros_cons", ["Pros of remote", "Cons"])
        assert not has_existing_template("pros_cons", ["Prose", "Cons"])

    def test_unknown_template(self):
        assert not has_existing_template("nope", ["anything"])


class TestCascade:
    def test_query(self):
        decision = route("what is on the board?", 0, 10, [])
        assert decision.intent == "query"
        assert decision.allowed_tools == TOOLS_QUERY
        assert route("how many stickies are there", 0, 10, []).intent == "query"

    def test_delete(self):
        decision = route("delete all the rectangles", 0, 10, [])
        assert decision.intent == "delete"
        assert decision.scope == "board"
        assert decision.needs_full_context

    def test_delete_large_board_skips_detail(self):
        assert not route("remove everything", 0, 80, []).needs_full_context

    def test_reorganize_escalates(self):
        decision = route("organize these notes by theme", 2, 30, [])
        assert decision.intent == "reorganize"
        assert decision.scope == "selected"
        assert decision.model == "complex"
        assert route("organize the notes by theme", 0, 30, []).scope == "board"

    def test_selection_edit_needs_selection(self):
        decision = route("make them blue", 3, 10, [])
        assert decision.intent == "edit_selected"
        assert decision.allowed_tools == TOOLS_EDIT
        assert route("make them blue", 0, 10, []).intent == "create_simple"

    def test_create_simple(self):
        decision = route("add a yellow sticky", 0, 0, [])
        assert decision.intent == "create_simple"
        assert decision.model == "simple"
        assert decision.allowed_tools == TOOLS_CREATE_SIMPLE

    def test_create_with_connectors_widens_tools(self):
        decision = route("add a circle and connect it with an arrow", 0, 0, [])
        assert decision.allowed_tools == TOOLS_CREATE_FULL

    def test_long_conjunction_heavy_create_is_complex(self):
        assert len(LONG_CREATE) > 150
        assert route(LONG_CREATE, 0, 0, []).model == "complex"

    def test_general_catch_all(self):
        small = route("hello there", 0, 10, [])
        assert small.intent == "general"
        assert small.allowed_tools is None
        assert small.model == "simple"
        assert route("hello there", 0, 40, []).model == "complex"


class TestDeterminism:
    def test_same_inputs_same_route(self):
        args = ("organize everything into groups", 0, 42, ["ideas", "done"])
        assert route(*args) == route(*args)

    def test_fast(self):
        t0 = time.perf_counter()
        for _ in range(100):
            route(LONG_CREATE, 0, 100, ["strengths", "weaknesses"])
        assert (time.perf_counter() - t0) / 100 < 0.001
