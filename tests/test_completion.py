"""Tests for the completion boundary and the litellm adapter (litellm mocked)."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from wallet_agent.completion import (
    CompletionTurn,
    LiteLLMCompletionClient,
    ToolCall,
    parse_tool_call,
    supports_streaming,
)
from wallet_agent.errors import CompletionError


def _tool_call(id_: str, name: str, arguments: str) -> MagicMock:
    tc = MagicMock()
    tc.id = id_
    tc.type = "function"
    tc.function.name = name
    tc.function.arguments = arguments
    return tc


def _mock_response(content: str | None = "Hello!", tool_calls: list | None = None) -> MagicMock:
    """Build a mock litellm response."""
    mock = MagicMock()
    mock.choices = [MagicMock()]
    mock.choices[0].message.content = content
    mock.choices[0].message.tool_calls = tool_calls
    mock.choices[0].message.reasoning_content = None
    return mock


def _chunk(text: str | None) -> MagicMock:
    chunk = MagicMock()
    chunk.choices = [MagicMock()]
    chunk.choices[0].delta.content = text
    return chunk


class _AsyncStream:
    def __init__(self, chunks: list, fail_after: int | None = None) -> None:
        self._chunks = chunks
        self._fail_after = fail_after

    def __aiter__(self):
        return self._gen()

    async def _gen(self):
        for i, chunk in enumerate(self._chunks):
            if self._fail_after is not None and i >= self._fail_after:
                raise ConnectionError("stream dropped")
            yield chunk


class TestParseToolCall:
    def test_json_string_arguments(self):
        call = parse_tool_call({"id": "c1", "function": {"name": "get_prices", "arguments": '{"symbols": ["ETH"]}'}})
        assert call == ToolCall(id="c1", name="get_prices", arguments={"symbols": ["ETH"]})

    def test_dict_arguments(self):
        call = parse_tool_call({"id": "c1", "name": "get_holdings", "arguments": {"chain": 1}})
        assert call.arguments == {"chain": 1}

    def test_bad_json_becomes_empty(self):
        call = parse_tool_call({"id": "c1", "function": {"name": "x", "arguments": "{not json"}})
        assert call.arguments == {}

    def test_non_object_becomes_empty(self):
        call = parse_tool_call({"id": "c1", "function": {"name": "x", "arguments": "[1, 2]"}})
        assert call.arguments == {}

    def test_to_openai_roundtrip_shape(self):
        echo = ToolCall(id="c1", name="x", arguments={"a": 1}).to_openai()
        assert echo == {"id": "c1", "type": "function", "function": {"name": "x", "arguments": '{"a": 1}'}}


class TestLiteLLMChat:
    @pytest.mark.asyncio
    @patch("wallet_agent.completion.litellm.acompletion", new_callable=AsyncMock)
    async def test_final_text(self, mock_acomp: AsyncMock) -> None:
        mock_acomp.return_value = _mock_response("All done")
        client = LiteLLMCompletionClient("gpt-4o-mini", timeout=30)
        turn = await client.chat(messages=[{"role": "user", "content": "hi"}], tools=[])
        assert turn == CompletionTurn(content="All done")
        kwargs = mock_acomp.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["timeout"] == 30
        assert "tools" not in kwargs and "tool_choice" not in kwargs

    @pytest.mark.asyncio
    @patch("wallet_agent.completion.litellm.acompletion", new_callable=AsyncMock)
    async def test_tool_calls(self, mock_acomp: AsyncMock) -> None:
        mock_acomp.return_value = _mock_response(
            None, [_tool_call("c1", "get_holdings", "{}"), _tool_call("c2", "get_prices", '{"symbols":["ETH"]}')],
        )
        tools = [{"type": "function", "function": {"name": "get_holdings"}}]
        turn = await LiteLLMCompletionClient("m").chat(messages=[], tools=tools)
        assert turn.content == ""
        assert [c.name for c in turn.tool_calls] == ["get_holdings", "get_prices"]
        assert turn.tool_calls[1].arguments == {"symbols": ["ETH"]}
        assert mock_acomp.call_args.kwargs["tool_choice"] == "auto"

    @pytest.mark.asyncio
    @patch("wallet_agent.completion.litellm.acompletion", new_callable=AsyncMock)
    async def test_failure_wrapped(self, mock_acomp: AsyncMock) -> None:
        mock_acomp.side_effect = RuntimeError("503 upstream")
        with pytest.raises(CompletionError, match="503 upstream"):
            await LiteLLMCompletionClient("m").chat(messages=[], tools=[])

    @pytest.mark.asyncio
    @patch("wallet_agent.completion.litellm.acompletion", new_callable=AsyncMock)
    async def test_no_choices(self, mock_acomp: AsyncMock) -> None:
        resp = MagicMock()
        resp.choices = []
        mock_acomp.return_value = resp
        with pytest.raises(CompletionError, match="no choices"):
            await LiteLLMCompletionClient("m").chat(messages=[], tools=[])


class TestLiteLLMStream:
    @pytest.mark.asyncio
    @patch("wallet_agent.completion.litellm.stream_chunk_builder")
    @patch("wallet_agent.completion.litellm.acompletion", new_callable=AsyncMock)
    async def test_chunks_forwarded_and_assembled(self, mock_acomp, mock_builder) -> None:
        mock_acomp.return_value = _AsyncStream([_chunk("Hel"), _chunk(None), _chunk("lo")])
        mock_builder.return_value = _mock_response("ignored")
        seen: list[str] = []
        turn = await LiteLLMCompletionClient("m").chat_stream(messages=[], tools=[], on_chunk=seen.append)
        assert seen == ["Hel", "lo"]
        assert turn.content == "Hello"
        assert mock_acomp.call_args.kwargs["stream"] is True

    @pytest.mark.asyncio
    @patch("wallet_agent.completion.litellm.stream_chunk_builder")
    @patch("wallet_agent.completion.litellm.acompletion", new_callable=AsyncMock)
    async def test_stream_with_tool_calls(self, mock_acomp, mock_builder) -> None:
        mock_acomp.return_value = _AsyncStream([_chunk("Let me check")])
        mock_builder.return_value = _mock_response(None, [_tool_call("c1", "get_holdings", "{}")])
        turn = await LiteLLMCompletionClient("m").chat_stream(messages=[], tools=[], on_chunk=lambda t: None)
        assert turn.content == "Let me check"
        assert turn.tool_calls[0].name == "get_holdings"

    @pytest.mark.asyncio
    @patch("wallet_agent.completion.litellm.acompletion", new_callable=AsyncMock)
    async def test_stream_failure_wrapped(self, mock_acomp) -> None:
        mock_acomp.return_value = _AsyncStream([_chunk("a"), _chunk("b")], fail_after=1)
        with pytest.raises(CompletionError, match="stream dropped"):
            await LiteLLMCompletionClient("m").chat_stream(messages=[], tools=[], on_chunk=lambda t: None)


def test_supports_streaming():
    assert supports_streaming(LiteLLMCompletionClient("m"))

    class BlockingOnly:
        async def chat(self, **kwargs):
            return CompletionTurn()

    assert not supports_streaming(BlockingOnly())
