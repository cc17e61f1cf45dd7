"""Tests for ``python -m wallet_agent``."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from wallet_agent.__main__ import main


def _mock_response(content: str) -> MagicMock:
    mock = MagicMock()
    mock.choices = [MagicMock()]
    mock.choices[0].message.content = content
    mock.choices[0].message.tool_calls = None
    mock.choices[0].message.reasoning_content = None
    return mock


@patch("wallet_agent.completion.litellm.acompletion", new_callable=AsyncMock)
def test_run_prints_events_and_answer(mock_acomp: AsyncMock, capsys) -> None:
    mock_acomp.return_value = _mock_response("Hello there")
    main(["run", "hi", "--model", "gpt-4o-mini", "--no-stream", "--wallet", "0xW"])

    lines = capsys.readouterr().out.strip().splitlines()
    events = [json.loads(line) for line in lines if line.startswith("{")]
    assert events[0] == {"type": "thinking", "iteration": 0}
    assert events[-1]["type"] == "done"
    assert lines[-1] == "Hello there"
    system_prompt = mock_acomp.call_args.kwargs["messages"][0]["content"]
    assert "Wallet: 0xW" in system_prompt


def test_no_command_prints_help() -> None:
    with pytest.raises(SystemExit) as exc_info:
        main([])
    assert exc_info.value.code == 1


def test_bad_max_iterations() -> None:
    with pytest.raises(SystemExit) as exc_info:
        main(["run", "hi", "--model", "m", "--max-iterations", "0"])
    assert exc_info.value.code == 2
