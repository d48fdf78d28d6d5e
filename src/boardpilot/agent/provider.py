"""LLM provider interface and Gemini implementation."""

from __future__ import annotations

import json
import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Any, Protocol

from google import genai
from google.genai import types

from boardpilot import config
from boardpilot.errors import ModelTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class ToolCall:
    id: str
    name: str
    args: dict[str, Any]


@dataclass
class Message:
    """One transcript entry.

    ``role`` is "system", "user", "assistant", or "tool". Assistant messages
    may carry ``tool_calls``; tool messages answer one call by ``tool_call_id``.
    """

    role: str
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None


@dataclass
class UsageStats:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def add(self, other: UsageStats) -> None:
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens


@dataclass
class Completion:
    text: str | None
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: UsageStats = field(default_factory=UsageStats)


class ModelProvider(Protocol):
    """Protocol for chat-completion providers with tool calling."""

    def complete(
        self,
        messages: list[Message],
        tools: list[types.FunctionDeclaration] | None = None,
        tool_choice: str = "auto",
        response_format: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Completion:
        """Run one model turn. ``tool_choice`` is "auto", "required", or "none";
        ``response_format="json"`` asks for a JSON body."""
        ...


_TOOL_CHOICE_MODES = {"auto": "AUTO", "required": "ANY", "none": "NONE"}


def _extract_usage(response: Any) -> UsageStats:
    meta = getattr(response, "usage_metadata", None)
    if meta is None:
        return UsageStats()
    return UsageStats(
        input_tokens=getattr(meta, "prompt_token_count", None) or 0,
        output_tokens=getattr(meta, "candidates_token_count", None) or 0,
    )


def _to_contents(messages: list[Message]) -> tuple[str | None, list[types.Content]]:
    """Split out the system instruction and map the rest to Gemini contents.

    Consecutive tool messages are folded into one user turn of
    function-response parts, as Gemini expects.
    """
    system_parts: list[str] = []
    contents: list[types.Content] = []
    pending: list[types.Part] = []

    def flush() -> None:
        if pending:
            contents.append(types.Content(role="user", parts=list(pending)))
            pending.clear()

    for msg in messages:
        if msg.role == "system":
            system_parts.append(msg.content)
            continue
        if msg.role == "tool":
            pending.append(types.Part.from_function_response(
                name=msg.name or "tool",
                response={"result": msg.content},
            ))
            continue
        flush()
        if msg.role == "assistant":
            parts: list[types.Part] = []
            if msg.content:
                parts.append(types.Part.from_text(text=msg.content))
            for call in msg.tool_calls:
                parts.append(types.Part.from_function_call(name=call.name, args=call.args))
            contents.append(types.Content(role="model", parts=parts))
        else:
            contents.append(types.Content(
                role="user", parts=[types.Part.from_text(text=msg.content)],
            ))
    flush()
    system = "\n\n".join(system_parts) if system_parts else None
    return system, contents


class GeminiProvider:
    """Gemini implementation of ModelProvider."""

    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        self._client = genai.Client(api_key=api_key or config.GEMINI_API_KEY)
        self._model = model or config.MODEL_SIMPLE

    def complete(
        self,
        messages: list[Message],
        tools: list[types.FunctionDeclaration] | None = None,
        tool_choice: str = "auto",
        response_format: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Completion:
        system, contents = _to_contents(messages)
        config_kwargs: dict[str, Any] = {
            "system_instruction": system,
            "temperature": temperature,
            "max_output_tokens": max_tokens,
        }
        if tools:
            config_kwargs["tools"] = [types.Tool(function_declarations=tools)]
            config_kwargs["automatic_function_calling"] = types.AutomaticFunctionCallingConfig(
                disable=True
            )
            config_kwargs["tool_config"] = types.ToolConfig(
                function_calling_config=types.FunctionCallingConfig(
                    mode=_TOOL_CHOICE_MODES.get(tool_choice, "AUTO")
                )
            )
        if response_format == "json":
            config_kwargs["response_mime_type"] = "application/json"

        model_name = model or self._model
        logger.debug("Generate via %s (%d messages, %d tools)", model_name, len(contents), len(tools or []))
        t0 = time.perf_counter()
        response = self._client.models.generate_content(
            model=model_name,
            contents=contents,
            config=types.GenerateContentConfig(**config_kwargs),
        )
        calls = [
            ToolCall(id=fc.id or str(uuid.uuid4()), name=fc.name, args=dict(fc.args or {}))
            for fc in (response.function_calls or [])
        ]
        text = None if calls else response.text
        logger.debug(
            "Generate complete: %d tool call(s), %d chars, %.0fms",
            len(calls), len(text or ""), (time.perf_counter() - t0) * 1000,
        )
        return Completion(text=text, tool_calls=calls, usage=_extract_usage(response))


def complete_with_timeout(
    provider: ModelProvider, timeout_s: float, messages: list[Message], **kwargs: Any,
) -> Completion:
    """Run ``provider.complete`` with a deadline.

    Raises ModelTimeoutError when the call does not finish in time. The
    worker thread is abandoned, not interrupted.
    """
    pool = ThreadPoolExecutor(max_workers=1)
    future = pool.submit(provider.complete, messages, **kwargs)
    try:
        return future.result(timeout=timeout_s)
    except FutureTimeout:
        logger.warning("Model call timed out after %.1fs", timeout_s)
        raise ModelTimeoutError(timeout_s) from None
    finally:
        pool.shutdown(wait=False)


def parse_json_object(text: str | None) -> dict[str, Any] | None:
    """Parse a JSON object from model output, tolerating a markdown code fence."""
    if not text:
        return None
    body = text.strip()
    if body.startswith("```"):
        body = body.split("\n", 1)[1] if "\n" in body else ""
        body = body.rsplit("```", 1)[0]
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        start, end = body.find("{"), body.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            data = json.loads(body[start:end + 1])
        except json.JSONDecodeError:
            return None
    return data if isinstance(data, dict) else None
