"""OpenAI-format message construction for one run."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from wallet_agent.completion import ToolCall

EMPTY_TURN_NUDGE = "Please provide a response to the user based on the information gathered."
INFRA_ERROR_NUDGE = (
    "There was an error. Please try a simpler approach or provide a direct response "
    "based on what you know."
)

_HISTORY_ROLES = frozenset({"user", "assistant"})


def build_messages(
    system_prompt: str,
    chat_history: Iterable[Mapping[str, Any]] | None,
    prompt: str,
    history_limit: int = 10,
) -> list[dict[str, Any]]:
    """System prompt, the last ``history_limit`` user/assistant turns, then the new prompt."""
    messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    history = [
        {"role": str(m["role"]), "content": str(m.get("content") or "")}
        for m in (chat_history or [])
        if m.get("role") in _HISTORY_ROLES
    ]
    if history_limit > 0:
        messages.extend(history[-history_limit:])
    messages.append({"role": "user", "content": prompt})
    return messages


def assistant_text_message(text: str) -> dict[str, Any]:
    return {"role": "assistant", "content": text}


def assistant_tool_call_message(call: ToolCall) -> dict[str, Any]:
    """Echo of a single tool call, so each tool message has a matching request."""
    return {"role": "assistant", "content": None, "tool_calls": [call.to_openai()]}


def tool_result_message(tool_call_id: str, content: str) -> dict[str, Any]:
    return {"role": "tool", "tool_call_id": tool_call_id, "content": content}


def user_message(text: str) -> dict[str, Any]:
    return {"role": "user", "content": text}
