"""Per-run admission control for tool calls.

Two rules, both keyed by ``CallKey = name + ":" + canonical JSON(arguments)``:

- Read tools: an identical call already seen ``max_identical_calls`` times in
  the trailing window is skipped; the model is told to reuse the earlier result.
- Write tools: an identical call executes at most once per run. The key is
  recorded *before* the tool runs, so a second identical call later in the
  same turn is blocked even though the first has not returned yet.

Distinct arguments are distinct keys: two swaps of different assets in one
turn both proceed.
"""

from __future__ import annotations

import json as _json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from wallet_agent.config import DEFAULT_WRITE_TOOLS

logger = logging.getLogger(__name__)

DEFAULT_MAX_IDENTICAL_CALLS: int = 2
DEFAULT_READ_CALL_WINDOW: int = 5

X402_NEXT_TOOL: dict[str, str] = {
    "perplexity-search": "web_research",
    "image-generation": "generate_image",
    "onchain-analytics": "onchain_analytics",
}
"""Tool that consumes a paid x402 service, by service id."""


class AdmissionDecision(str, Enum):
    ADMIT = "admit"
    SKIP_REDUNDANT = "skip_redundant"
    BLOCK_DUPLICATE = "block_duplicate"


def canonical_json(value: Any) -> str:
    """Deterministic serialization: sorted keys, compact separators."""
    return _json.dumps(
        value if value is not None else {},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def call_key(name: str, arguments: Mapping[str, Any] | None) -> str:
    return f"{name}:{canonical_json(dict(arguments or {}))}"


@dataclass
class AdmissionState:
    """Run-scoped bookkeeping. Create one per run; never share across runs."""

    recent_read_calls: list[str] = field(default_factory=list)
    executed_write_ops: set[str] = field(default_factory=set)


class AdmissionGuard:
    """Decides whether a tool call may execute within the current run."""

    def __init__(
        self,
        *,
        write_tools: frozenset[str] | set[str] = DEFAULT_WRITE_TOOLS,
        max_identical_calls: int = DEFAULT_MAX_IDENTICAL_CALLS,
        window: int = DEFAULT_READ_CALL_WINDOW,
        state: AdmissionState | None = None,
    ) -> None:
        self.write_tools = frozenset(write_tools)
        self.max_identical_calls = max_identical_calls
        self.window = window
        self.state = state or AdmissionState()

    def is_write(self, name: str) -> bool:
        return name in self.write_tools

    def check(self, name: str, arguments: Mapping[str, Any] | None) -> AdmissionDecision:
        key = call_key(name, arguments)

        if self.is_write(name):
            if key in self.state.executed_write_ops:
                logger.warning("DUPLICATE_WRITE_BLOCKED tool=%s key=%s", name, key)
                return AdmissionDecision.BLOCK_DUPLICATE
            self.state.executed_write_ops.add(key)
            logger.info("WRITE_OP_REGISTERED tool=%s", name)
            return AdmissionDecision.ADMIT

        trailing = self.state.recent_read_calls[-self.window:] if self.window > 0 else []
        identical = trailing.count(key)
        if identical >= self.max_identical_calls:
            logger.warning(
                "REDUNDANT_CALL_SKIPPED tool=%s identical=%d window=%d",
                name, identical, self.window,
            )
            return AdmissionDecision.SKIP_REDUNDANT
        self.state.recent_read_calls.append(key)
        return AdmissionDecision.ADMIT


def redundant_call_notice(name: str) -> str:
    """Tool-result content for a skipped redundant read call."""
    return _json.dumps({
        "skipped": True,
        "reason": (
            f"Tool {name} was already called with these exact arguments. "
            "Use the previous result and proceed."
        ),
    })


def duplicate_write_guidance(name: str, arguments: Mapping[str, Any] | None) -> str:
    """Next-step instruction after blocking a repeated write call."""
    args = arguments or {}
    if name == "pay_x402":
        service_id = args.get("serviceId") or "perplexity-search"
        next_tool = X402_NEXT_TOOL.get(str(service_id), "web_research")
        return (
            "Payment was already completed successfully. DO NOT pay again. "
            f"Call {next_tool} now to fulfill the user's request."
        )
    if name == "transfer_funds":
        return "Transfer was already completed successfully. Tell the user the transfer is done."
    if name == "execute_swap":
        return "Swap was already completed successfully. Tell the user the swap is done."
    return "This operation was already completed. Proceed with the next step."


def duplicate_write_notice(name: str, arguments: Mapping[str, Any] | None) -> str:
    """Tool-result content (JSON) for a blocked duplicate write call."""
    return _json.dumps({
        "BLOCKED": True,
        "alreadyExecuted": True,
        "message": (
            f"DUPLICATE BLOCKED: {name} was already executed with these exact "
            "parameters this turn."
        ),
        "nextStep": duplicate_write_guidance(name, arguments),
    })
