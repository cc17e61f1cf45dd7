"""Tests for AgentConfig defaults and environment overrides."""

from __future__ import annotations

import pytest

from wallet_agent.config import (
    DEFAULT_WRITE_TOOLS,
    MAX_ITERATIONS_ENV,
    MAX_TOOL_RETRIES_ENV,
    RETRY_BASE_DELAY_ENV,
    AgentConfig,
)


class TestDefaults:
    def test_loop_bounds(self):
        cfg = AgentConfig()
        assert cfg.max_iterations == 10
        assert cfg.max_consecutive_infra_errors == 3
        assert cfg.max_tool_retries == 2
        assert cfg.retry_base_delay == 0.5
        assert cfg.max_same_error_attempts == 3
        assert cfg.max_identical_calls == 2
        assert cfg.read_call_window == 5
        assert cfg.pending_staleness_s == 30.0

    def test_write_tools(self):
        assert DEFAULT_WRITE_TOOLS == {"execute_swap", "transfer_funds", "pay_x402"}
        assert AgentConfig().write_tools == DEFAULT_WRITE_TOOLS

    def test_frozen(self):
        cfg = AgentConfig()
        with pytest.raises(Exception):
            cfg.max_iterations = 3  # type: ignore[misc]


class TestFromEnv:
    def test_unset_keeps_defaults(self, monkeypatch):
        monkeypatch.delenv(MAX_ITERATIONS_ENV, raising=False)
        assert AgentConfig.from_env() == AgentConfig()

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv(MAX_ITERATIONS_ENV, "4")
        monkeypatch.setenv(MAX_TOOL_RETRIES_ENV, "0")
        monkeypatch.setenv(RETRY_BASE_DELAY_ENV, "0.01")
        cfg = AgentConfig.from_env()
        assert cfg.max_iterations == 4
        assert cfg.max_tool_retries == 0
        assert cfg.retry_base_delay == 0.01

    def test_invalid_value_falls_back(self, monkeypatch, caplog):
        monkeypatch.setenv(MAX_ITERATIONS_ENV, "lots")
        with caplog.at_level("WARNING"):
            cfg = AgentConfig.from_env()
        assert cfg.max_iterations == 10
        assert MAX_ITERATIONS_ENV in caplog.text

    def test_below_minimum_falls_back(self, monkeypatch):
        monkeypatch.setenv(MAX_ITERATIONS_ENV, "0")
        assert AgentConfig.from_env().max_iterations == 10
