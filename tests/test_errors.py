"""Tests for wallet_agent.errors: hierarchy and transient detection."""

from __future__ import annotations

import pytest

from wallet_agent.errors import (
    CompletionError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolValidationError,
    WalletAgentError,
    error_text,
    is_transient_error,
)


class TestHierarchy:
    @pytest.mark.parametrize(
        "cls", [ToolNotFoundError, ToolValidationError, ToolExecutionError, CompletionError],
    )
    def test_subclasses_base(self, cls):
        assert issubclass(cls, WalletAgentError)

    def test_original_preserved(self):
        inner = ValueError("boom")
        err = ToolExecutionError("wrapped", original=inner)
        assert err.original is inner
        assert str(err) == "wrapped"


class TestIsTransient:
    @pytest.mark.parametrize(
        "text",
        [
            "Request timeout after 30s",
            "connect ETIMEDOUT 1.2.3.4",
            "read ECONNRESET",
            "ECONNREFUSED",
            "Rate limit exceeded",
            "HTTP 429",
            "502 Bad Gateway",
            "503 Service Unavailable",
            "504 Gateway Timeout",
            "Network unreachable",
            "temporary failure in name resolution",
        ],
    )
    def test_transient(self, text):
        assert is_transient_error(text)

    @pytest.mark.parametrize(
        "text",
        ["execution reverted: insufficient balance", "Unknown tool: foo", "invalid address"],
    )
    def test_not_transient(self, text):
        assert not is_transient_error(text)

    def test_accepts_exception(self):
        assert is_transient_error(RuntimeError("socket TIMEOUT"))


class TestErrorText:
    def test_unwraps_tool_execution_error(self):
        err = ToolExecutionError("outer", original=RuntimeError("inner message"))
        assert error_text(err) == "inner message"

    def test_falls_back_to_type_name(self):
        assert error_text(KeyError()) == "KeyError"
