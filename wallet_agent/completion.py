"""Completion-service boundary: turn types, client protocol, litellm adapter.

The loop only needs two calls from a completion service::

    turn = await client.chat(messages=msgs, tools=schemas, tool_choice="auto")
    turn = await client.chat_stream(messages=msgs, tools=schemas, on_chunk=cb)  # optional

Both return a :class:`CompletionTurn`. ``chat_stream`` invokes ``on_chunk(text)``
zero or more times before returning. Any model string litellm understands
works with :class:`LiteLLMCompletionClient`::

    client = LiteLLMCompletionClient("gemini/gemini-2.5-flash")
    client = LiteLLMCompletionClient("gpt-4o-mini", timeout=30)
"""

from __future__ import annotations

import json as _json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, runtime_checkable

import litellm

from wallet_agent.errors import CompletionError

logger = logging.getLogger(__name__)

# Silence litellm's noisy default logging
litellm.suppress_debug_info = True

ChunkCallback = Callable[[str], Any]


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolCall:
    """One tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_openai(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": _json.dumps(self.arguments),
            },
        }


@dataclass(frozen=True)
class CompletionTurn:
    """One assistant turn: final text, tool calls, or (rarely) neither."""

    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    thinking: str | None = None


@runtime_checkable
class CompletionClient(Protocol):
    """Blocking completion. Clients may additionally define ``chat_stream``."""

    async def chat(
        self,
        *,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        tool_choice: str = "auto",
    ) -> CompletionTurn: ...


@runtime_checkable
class StreamingCompletionClient(CompletionClient, Protocol):
    async def chat_stream(
        self,
        *,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        on_chunk: ChunkCallback,
    ) -> CompletionTurn: ...


def supports_streaming(client: Any) -> bool:
    return callable(getattr(client, "chat_stream", None))


# ---------------------------------------------------------------------------
# Tool-call parsing
# ---------------------------------------------------------------------------


def parse_tool_call(raw: dict[str, Any]) -> ToolCall:
    """Build a ToolCall from an OpenAI-format tool call dict.

    Accepts ``arguments`` as a JSON string or an already-decoded dict.
    Undecodable arguments become ``{}`` so schema validation reports the problem.
    """
    fn_info = raw.get("function") or {}
    name = str(fn_info.get("name") or raw.get("name") or "")
    arguments_raw = fn_info.get("arguments", raw.get("arguments", "{}"))
    arguments: Any
    if isinstance(arguments_raw, str):
        try:
            arguments = _json.loads(arguments_raw) if arguments_raw.strip() else {}
        except _json.JSONDecodeError:
            logger.error("Failed to parse tool call arguments for %s: %s", name, arguments_raw[:200])
            arguments = {}
    else:
        arguments = arguments_raw
    if not isinstance(arguments, dict):
        arguments = {}
    return ToolCall(id=str(raw.get("id") or ""), name=name, arguments=arguments)


def _extract_tool_calls(message: Any) -> list[dict[str, Any]]:
    """Extract tool calls from a litellm response message into plain dicts."""
    if not getattr(message, "tool_calls", None):
        return []
    result: list[dict[str, Any]] = []
    for tc in message.tool_calls:
        result.append({
            "id": tc.id,
            "type": getattr(tc, "type", "function"),
            "function": {
                "name": tc.function.name,
                "arguments": tc.function.arguments,
            },
        })
    return result


def _turn_from_message(message: Any, content_override: str | None = None) -> CompletionTurn:
    content = content_override if content_override is not None else (getattr(message, "content", None) or "")
    thinking = getattr(message, "reasoning_content", None)
    return CompletionTurn(
        content=content,
        tool_calls=tuple(parse_tool_call(tc) for tc in _extract_tool_calls(message)),
        thinking=thinking if isinstance(thinking, str) and thinking else None,
    )


# ---------------------------------------------------------------------------
# litellm adapter
# ---------------------------------------------------------------------------


class LiteLLMCompletionClient:
    """Completion client backed by ``litellm.acompletion``.

    Args:
        model: Any litellm model string.
        timeout: Per-request timeout in seconds.
        api_base: Optional custom endpoint.
        **kwargs: Passed through to litellm (temperature, max_tokens, ...).
    """

    def __init__(
        self,
        model: str,
        *,
        timeout: int = 60,
        api_base: str | None = None,
        **kwargs: Any,
    ) -> None:
        self.model = model
        self.timeout = timeout
        self.api_base = api_base
        self.extra_kwargs = kwargs

    def _call_kwargs(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> dict[str, Any]:
        call_kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "timeout": self.timeout,
            **self.extra_kwargs,
        }
        if tools:
            call_kwargs["tools"] = tools
        if self.api_base:
            call_kwargs["api_base"] = self.api_base
        return call_kwargs

    async def chat(
        self,
        *,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        tool_choice: str = "auto",
    ) -> CompletionTurn:
        call_kwargs = self._call_kwargs(messages, tools)
        if tools:
            call_kwargs["tool_choice"] = tool_choice
        try:
            response = await litellm.acompletion(**call_kwargs)
        except Exception as exc:
            raise CompletionError(f"{type(exc).__name__}: {exc}", original=exc) from exc
        if not response.choices:
            raise CompletionError(f"{self.model} returned no choices")
        return _turn_from_message(response.choices[0].message)

    async def chat_stream(
        self,
        *,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        on_chunk: ChunkCallback,
    ) -> CompletionTurn:
        call_kwargs = self._call_kwargs(messages, tools)
        call_kwargs["stream"] = True
        try:
            response = await litellm.acompletion(**call_kwargs)
            raw_chunks: list[Any] = []
            text_parts: list[str] = []
            async for chunk in response:
                raw_chunks.append(chunk)
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                text = (delta.content if delta and delta.content else "") or ""
                if text:
                    text_parts.append(text)
                    on_chunk(text)
        except Exception as exc:
            raise CompletionError(f"{type(exc).__name__}: {exc}", original=exc) from exc

        content = "".join(text_parts)
        if not raw_chunks:
            return CompletionTurn(content=content)
        complete = litellm.stream_chunk_builder(raw_chunks, messages=messages)
        if not complete or not complete.choices:
            return CompletionTurn(content=content)
        return _turn_from_message(complete.choices[0].message, content_override=content)
