"""Tests for OpenAI-format message construction."""

from __future__ import annotations

from wallet_agent.completion import ToolCall
from wallet_agent.conversation import (
    assistant_tool_call_message,
    build_messages,
    tool_result_message,
)


def test_build_messages_filters_roles_and_limits() -> None:
    history = [
        {"role": "user", "content": "a", "timestamp": 1},
        {"role": "system", "content": "ignored"},
        {"role": "assistant", "content": "b"},
        {"role": "user", "content": "c"},
    ]
    msgs = build_messages("SYS", history, "now", history_limit=2)
    assert msgs == [
        {"role": "system", "content": "SYS"},
        {"role": "assistant", "content": "b"},
        {"role": "user", "content": "c"},
        {"role": "user", "content": "now"},
    ]


def test_zero_history_limit() -> None:
    msgs = build_messages("SYS", [{"role": "user", "content": "old"}], "now", history_limit=0)
    assert [m["content"] for m in msgs] == ["SYS", "now"]


def test_tool_call_echo_and_result() -> None:
    echo = assistant_tool_call_message(ToolCall(id="c1", name="get_holdings", arguments={}))
    assert echo["content"] is None
    assert echo["tool_calls"][0]["id"] == "c1"
    assert tool_result_message("c1", "{}") == {"role": "tool", "tool_call_id": "c1", "content": "{}"}
