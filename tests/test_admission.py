"""Tests for per-run call admission: read dedup and exactly-once writes."""

from __future__ import annotations

import json

from wallet_agent.admission import (
    AdmissionDecision,
    AdmissionGuard,
    call_key,
    canonical_json,
    duplicate_write_guidance,
    duplicate_write_notice,
    redundant_call_notice,
)


class TestCallKey:
    def test_key_order_independent(self):
        assert call_key("q", {"b": 1, "a": 2}) == call_key("q", {"a": 2, "b": 1})

    def test_compact(self):
        assert canonical_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'

    def test_none_arguments(self):
        assert call_key("get_holdings", None) == "get_holdings:{}"


class TestReadDedup:
    def test_third_identical_call_skipped(self):
        guard = AdmissionGuard()
        args = {"symbols": ["ETH"]}
        assert guard.check("get_prices", args) is AdmissionDecision.ADMIT
        assert guard.check("get_prices", args) is AdmissionDecision.ADMIT
        assert guard.check("get_prices", args) is AdmissionDecision.SKIP_REDUNDANT

    def test_different_args_not_deduped(self):
        guard = AdmissionGuard(max_identical_calls=1)
        assert guard.check("get_prices", {"symbols": ["ETH"]}) is AdmissionDecision.ADMIT
        assert guard.check("get_prices", {"symbols": ["BTC"]}) is AdmissionDecision.ADMIT

    def test_window_slides(self):
        guard = AdmissionGuard(max_identical_calls=2, window=5)
        guard.check("get_prices", {})
        guard.check("get_prices", {})
        for i in range(5):
            guard.check("get_holdings", {"page": i})
        # Both earlier calls fell out of the trailing window.
        assert guard.check("get_prices", {}) is AdmissionDecision.ADMIT

    def test_skipped_call_not_recorded(self):
        guard = AdmissionGuard()
        for _ in range(2):
            guard.check("get_prices", {})
        guard.check("get_prices", {})
        assert guard.state.recent_read_calls.count("get_prices:{}") == 2


class TestWriteOnce:
    def test_identical_write_blocked(self):
        guard = AdmissionGuard()
        args = {"fromToken": "USDC", "toToken": "ETH", "amount": "100"}
        assert guard.check("execute_swap", args) is AdmissionDecision.ADMIT
        assert guard.check("execute_swap", dict(args)) is AdmissionDecision.BLOCK_DUPLICATE

    def test_recorded_before_execution(self):
        guard = AdmissionGuard()
        guard.check("pay_x402", {"serviceId": "image-generation"})
        assert call_key("pay_x402", {"serviceId": "image-generation"}) in guard.state.executed_write_ops

    def test_distinct_writes_both_admitted(self):
        guard = AdmissionGuard()
        assert guard.check("execute_swap", {"fromToken": "UNI", "toToken": "ETH"}) is AdmissionDecision.ADMIT
        assert guard.check("execute_swap", {"fromToken": "USDC", "toToken": "ETH"}) is AdmissionDecision.ADMIT

    def test_writes_never_read_deduped(self):
        guard = AdmissionGuard(write_tools={"mint"}, max_identical_calls=1)
        assert guard.check("mint", {"id": 1}) is AdmissionDecision.ADMIT
        assert guard.check("mint", {"id": 2}) is AdmissionDecision.ADMIT
        assert guard.state.recent_read_calls == []


class TestNotices:
    def test_redundant_notice(self):
        body = json.loads(redundant_call_notice("get_prices"))
        assert body["skipped"] is True
        assert body["reason"].startswith("Tool get_prices was already called")

    def test_duplicate_notice(self):
        body = json.loads(duplicate_write_notice("execute_swap", {}))
        assert body["BLOCKED"] is True
        assert body["alreadyExecuted"] is True
        assert "DUPLICATE BLOCKED: execute_swap" in body["message"]
        assert body["nextStep"].endswith("Tell the user the swap is done.")

    def test_x402_guidance_points_at_consumer(self):
        text = duplicate_write_guidance("pay_x402", {"serviceId": "image-generation"})
        assert "Call generate_image now" in text
        assert "Call web_research now" in duplicate_write_guidance("pay_x402", {})

    def test_transfer_and_default_guidance(self):
        assert duplicate_write_guidance("transfer_funds", {}).endswith("Tell the user the transfer is done.")
        assert duplicate_write_guidance("mint", {}).endswith("Proceed with the next step.")
