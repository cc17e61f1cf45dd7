"""Project successful tool outcomes into cross-turn session memory.

The projector only writes. It reads the memory snapshot taken at run start
(``context.memory_facts``) and never its own writes, so two quotes within one
run both see the same ``pendingSwaps`` baseline.

Timestamps are epoch milliseconds, matching what hosts already keep in their
session stores.
"""

from __future__ import annotations

import inspect
import logging
import time
from collections import deque
from typing import Any, Callable, Mapping

logger = logging.getLogger(__name__)

DEFAULT_PENDING_STALENESS_S: float = 30.0
MAX_CHAT_HISTORY: int = 50
FIRST_TIME_RECIPIENT = "No - first time sending to this address"


class MemoryProjector:
    """Best-effort writer of tool results into ``context.remember``."""

    def __init__(
        self,
        *,
        staleness_s: float = DEFAULT_PENDING_STALENESS_S,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
    ) -> None:
        self.staleness_s = staleness_s
        self._clock = clock
        self._log = logger or logging.getLogger(__name__)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def project(
        self,
        tool_name: str,
        result: Any,
        arguments: Mapping[str, Any] | None,
        context: Any,
    ) -> None:
        remember = getattr(context, "remember", None)
        if not callable(remember) or not isinstance(result, Mapping):
            return

        async def _remember(key: str, value: Any) -> None:
            ret = remember(key, value)
            if inspect.isawaitable(ret):
                await ret

        facts: Mapping[str, Any] = getattr(context, "memory_facts", None) or {}
        args = arguments or {}
        now = self._now_ms()

        try:
            if tool_name == "get_swap_quote" and not result.get("error"):
                entry = {
                    "fromToken": result.get("fromToken"),
                    "toToken": result.get("toToken"),
                    "amountIn": result.get("amountIn"),
                    "amountInWei": result.get("amountInWei"),
                    "amountOut": result.get("amountOut"),
                    "minOut": result.get("minOut"),
                    "minOutWei": result.get("minOutWei"),
                    "slippageBps": result.get("slippageBps"),
                    "feeTier": result.get("poolFeeTier"),
                    "timestamp": now,
                }
                existing = list(facts.get("pendingSwaps") or [])
                last_ts = (existing[-1].get("timestamp") or 0) if existing else 0
                new_batch = now - last_ts > self.staleness_s * 1000
                pending = [entry] if new_batch else [*existing, entry]
                await _remember("pendingSwaps", pending)
                await _remember("pendingSwapIntent", entry)
                self._log.info(
                    "SAVED_PENDING_SWAP %s->%s total_pending=%d",
                    entry["fromToken"], entry["toToken"], len(pending),
                )

            if tool_name == "get_holdings" and result.get("holdings"):
                await _remember("lastHoldings", result["holdings"])

            if tool_name == "get_prices" and result.get("prices"):
                await _remember("lastPriceLookup", {
                    "symbols": list(result["prices"]),
                    "convert": result.get("convert"),
                    "timestamp": now,
                })

            if tool_name == "get_market_sentiment" and result.get("value") is not None:
                await _remember("lastMarketSentiment", {
                    "value": result["value"],
                    "classification": result.get("classification"),
                    "timestamp": now,
                })

            if tool_name == "execute_swap" and result.get("success"):
                remaining = [
                    s for s in (facts.get("pendingSwaps") or [])
                    if s.get("fromToken") != result.get("fromToken")
                    or s.get("amountIn") != result.get("amountIn")
                ]
                await _remember("pendingSwaps", remaining or None)
                await _remember("pendingSwapIntent", remaining[0] if remaining else None)
                await _remember("lastExecutedSwap", {
                    "txHash": result.get("txHash"),
                    "fromToken": result.get("fromToken"),
                    "toToken": result.get("toToken"),
                    "amountIn": result.get("amountIn"),
                    "timestamp": now,
                })

            if tool_name == "pay_x402" and result.get("success"):
                await _remember("x402Payment", {
                    "status": "PAID",
                    "txHash": result.get("txHash"),
                    "service": result.get("service"),
                    "cost": result.get("cost"),
                    "timestamp": now,
                })
                await _remember("x402PaymentComplete", {
                    "txHash": result.get("txHash"),
                    "service": result.get("service"),
                    "timestamp": now,
                })
                self._log.info("X402_PAYMENT_REMEMBERED tx=%s", result.get("txHash"))

            if tool_name == "transfer_funds" and result.get("simulation") is True:
                gas = result.get("gas") or {}
                await _remember("pendingTransfer", {
                    "recipient": result.get("recipient"),
                    "token": result.get("token"),
                    "tokenAddress": result.get("tokenAddress"),
                    "amount": result.get("amount"),
                    "amountWei": result.get("amountWei"),
                    "chain": result.get("chain"),
                    "gasTier": gas.get("tier") or "standard",
                    "gasCostEth": gas.get("costEth"),
                    "gasCostUsd": gas.get("costUsd"),
                    "timestamp": now,
                })

            if tool_name == "transfer_funds" and result.get("success") is True:
                await _remember("pendingTransfer", None)
                await _remember("lastExecutedTransfer", {
                    "txHash": result.get("txHash"),
                    "recipient": result.get("recipient"),
                    "token": result.get("token"),
                    "amount": result.get("amount"),
                    "timestamp": now,
                })
                if result.get("token") == "USDC":
                    await _remember("lastPayoutBlock", result.get("blockNumber"))

            if tool_name == "check_recipient" and not result.get("error"):
                checks = result.get("checks") or {}
                await _remember("lastRecipientCheck", {
                    "recipient": result.get("recipient"),
                    "riskLevel": result.get("riskLevel"),
                    "previouslyInteracted": checks.get("previousInteractions") != FIRST_TIME_RECIPIENT,
                    "timestamp": now,
                })

            if tool_name == "web_research" and result.get("answer"):
                await _remember("x402PendingQuery", None)
                await _remember("lastResearch", {"query": args.get("query"), "timestamp": now})
        except Exception as exc:
            self._log.warning("MEMORY_SAVE_FAILED tool=%s: %s: %s", tool_name, type(exc).__name__, exc)


class InMemorySessionStore:
    """Process-local session store: facts per session plus bounded chat history."""

    def __init__(self, *, max_history: int = MAX_CHAT_HISTORY) -> None:
        self.max_history = max_history
        self._sessions: dict[str, dict[str, Any]] = {}

    def ensure(self, session_id: str) -> dict[str, Any]:
        session = self._sessions.get(session_id)
        if session is None:
            session = {
                "facts": {},
                "chat_history": deque(maxlen=self.max_history),
                "created_at": int(time.time() * 1000),
            }
            self._sessions[session_id] = session
        return session

    def get(self, session_id: str, key: str, default: Any = None) -> Any:
        return self.ensure(session_id)["facts"].get(key, default)

    def set(self, session_id: str, key: str, value: Any) -> None:
        self.ensure(session_id)["facts"][key] = value

    def get_facts(self, session_id: str) -> dict[str, Any]:
        """Snapshot copy of the session's facts."""
        return dict(self.ensure(session_id)["facts"])

    def append_message(self, session_id: str, role: str, content: str) -> None:
        self.ensure(session_id)["chat_history"].append({
            "role": role,
            "content": content,
            "timestamp": int(time.time() * 1000),
        })

    def get_chat_history(self, session_id: str, limit: int = 10) -> list[dict[str, Any]]:
        history = list(self.ensure(session_id)["chat_history"])
        return history[-limit:] if limit > 0 else []

    def remember_for(self, session_id: str) -> Callable[[str, Any], None]:
        """A ``remember(key, value)`` callable bound to one session."""

        def remember(key: str, value: Any) -> None:
            self.set(session_id, key, value)

        return remember
