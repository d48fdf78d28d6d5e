"""Shared test helpers: canvas seeding, scripted model provider, mock Gemini response factories."""

import json
import uuid
from unittest.mock import MagicMock

from boardpilot.agent.provider import Completion, ToolCall, UsageStats
from boardpilot.storage.sqlite_store import CanvasObject, Connector

CANVAS_ID = "canvas-1"
USER_ID = "user-1"


def make_object(type_="sticky", x=0.0, y=0.0, width=150.0, height=150.0,
                text="", parent_id=None, color="#FBBF24", object_id=None):
    return CanvasObject(
        id=object_id or str(uuid.uuid4()),
        type=type_,
        x=x, y=y, width=width, height=height,
        color=color, text=text, parent_id=parent_id,
    )


def seed(store, objects, canvas_id=CANVAS_ID):
    """Insert objects into the store and return them."""
    for obj in objects:
        store.insert_object(canvas_id, obj)
    return objects


def seed_grid(store, count, type_="sticky", canvas_id=CANVAS_ID, start_x=0, start_y=0):
    """``count`` non-overlapping objects in rows of ten."""
    objects = [
        make_object(type_, x=start_x + (i % 10) * 200, y=start_y + (i // 10) * 200, text=f"item {i}")
        for i in range(count)
    ]
    return seed(store, objects, canvas_id)


def seed_connector(store, from_id, to_id, canvas_id=CANVAS_ID):
    connector = Connector(id=str(uuid.uuid4()), from_id=from_id, to_id=to_id)
    store.insert_connector(canvas_id, connector)
    return connector


class FakeProvider:
    """ModelProvider that replays a script of completions.

    Script entries are Completion objects, exceptions (raised), or callables
    taking the call kwargs. Every call is recorded in ``calls``.
    """

    def __init__(self, script=None, default=None):
        self.script = list(script or [])
        self.default = default
        self.calls = []

    def complete(self, messages, tools=None, tool_choice="auto", response_format=None,
                 model=None, temperature=None, max_tokens=None):
        call = {
            "messages": list(messages),
            "tools": tools,
            "tool_choice": tool_choice,
            "response_format": response_format,
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        self.calls.append(call)
        if self.script:
            step = self.script.pop(0)
        elif self.default is not None:
            step = self.default
        else:
            raise AssertionError("FakeProvider script exhausted")
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step(call)
        return step


def text_completion(text, input_tokens=10, output_tokens=5):
    return Completion(text=text, usage=UsageStats(input_tokens, output_tokens))


def json_completion(data, input_tokens=10, output_tokens=5):
    return text_completion(json.dumps(data), input_tokens, output_tokens)


def tool_call_completion(*calls, input_tokens=10, output_tokens=5):
    """``calls`` are ``(name, args)`` pairs."""
    return Completion(
        text=None,
        tool_calls=[ToolCall(id=f"call-{i}", name=name, args=args) for i, (name, args) in enumerate(calls)],
        usage=UsageStats(input_tokens, output_tokens),
    )


def _make_text_response(text: str, prompt_tokens: int = 12, output_tokens: int = 3):
    """Create a mock Gemini response with text content."""
    response = MagicMock()
    response.function_calls = None
    response.text = text
    response.usage_metadata.prompt_token_count = prompt_tokens
    response.usage_metadata.candidates_token_count = output_tokens
    return response


def _make_fn_call_response(name: str, args: dict, call_id: str | None = "fc-1"):
    """Create a mock Gemini response with a function call."""
    fn_call = MagicMock()
    fn_call.name = name
    fn_call.args = args
    fn_call.id = call_id

    response = MagicMock()
    response.function_calls = [fn_call]
    response.text = None
    response.usage_metadata.prompt_token_count = 20
    response.usage_metadata.candidates_token_count = 4
    return response
