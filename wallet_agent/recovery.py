"""Failure taxonomy and conversation-level recovery guidance.

A tool failure that survived local retries is mapped to one category by an
ordered rule table (first match wins). The category carries a remediation
suggestion for the model and a machine-readable ``recovery_action`` tag.

Escalation is tracked per run in an :class:`ErrorAttemptTable`: each failure
bumps its category's count; reaching ``max_attempts`` switches the follow-up
instruction from "try the suggested fix" to "stop and ask the user". Any tool
success clears the whole table.
"""

from __future__ import annotations

import json as _json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class ErrorCategory(str, Enum):
    DELEGATION_ERROR = "DELEGATION_ERROR"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    ARITHMETIC_OVERFLOW = "ARITHMETIC_OVERFLOW"
    SLIPPAGE_ERROR = "SLIPPAGE_ERROR"
    EXECUTION_ERROR = "EXECUTION_ERROR"
    INVALID_TOKEN = "INVALID_TOKEN"
    NETWORK_ERROR = "NETWORK_ERROR"
    PERMISSION_ERROR = "PERMISSION_ERROR"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class RecoveryResult:
    """Classification of one failure. Pure function of the error text."""

    category: ErrorCategory
    suggestion: str
    recovery_action: str
    should_auto_diagnose: bool = False


@dataclass(frozen=True)
class _Rule:
    category: ErrorCategory
    patterns: tuple[str, ...]
    recovery_action: str
    suggestion: str


# Order matters: "delegation ... insufficient allowance" must land on DELEGATION_ERROR.
RECOVERY_RULES: tuple[_Rule, ...] = (
    _Rule(
        ErrorCategory.DELEGATION_ERROR,
        (
            "delegation",
            "enforcer:",
            "transfer-amount-exceeded",
            "allowance-exceeded",
            "delegation-expired",
            "delegationerror",
            "erc-7715",
        ),
        "diagnose_delegation",
        "Delegation limit or permission error. The diagnosis has been performed automatically - "
        "check the autoDiagnosis field for details. Explain the error to the user clearly: what "
        "limit was exceeded, what the current limit is, and what they can do (reduce amount, wait "
        "for reset, or grant new permissions).",
    ),
    _Rule(
        ErrorCategory.INSUFFICIENT_BALANCE,
        ("exceeds balance", "insufficient"),
        "reduce_amount",
        "The amount is too high. Try: 1) Call get_holdings to check actual balance, 2) Use a "
        "smaller amount (try 90% of balance to leave room for fees), 3) Ask user to confirm the "
        "exact amount they want to swap.",
    ),
    _Rule(
        ErrorCategory.ARITHMETIC_OVERFLOW,
        ("overflow", "panic", "0x11"),
        "fresh_quote",
        "Arithmetic overflow in contract. Try: 1) Get a fresh quote with get_swap_quote, 2) Use a "
        "slightly smaller amount, 3) Try different slippage (e.g., 50 bps instead of 100).",
    ),
    _Rule(
        ErrorCategory.SLIPPAGE_ERROR,
        ("slippage", "price", "too little received"),
        "increase_slippage",
        "Price moved or slippage too tight. Try: 1) Get a fresh quote, 2) Increase slippage "
        "tolerance (try 100 or 200 bps), 3) Try a smaller amount to reduce price impact.",
    ),
    _Rule(
        ErrorCategory.EXECUTION_ERROR,
        ("gas", "out of gas", "revert"),
        "simulate_first",
        "Transaction execution failed. Try: 1) Get a fresh quote to ensure current prices, "
        "2) Check holdings are still available, 3) Try with simulate=true first to verify.",
    ),
    _Rule(
        ErrorCategory.INVALID_TOKEN,
        ("unknown token", "token not found", "invalid address"),
        "clarify_token",
        "Token not recognized. Try: 1) Use standard symbols (ETH, USDC, WETH), 2) If user "
        "provided an address, verify it's correct, 3) Ask user to clarify which token they mean.",
    ),
    _Rule(
        ErrorCategory.NETWORK_ERROR,
        ("timeout", "network", "fetch", "rate limit"),
        "retry",
        "Network or API issue. This is temporary. Try: 1) Wait a moment and retry, 2) The tool "
        "will auto-retry for transient errors.",
    ),
    _Rule(
        ErrorCategory.PERMISSION_ERROR,
        ("unauthorized", "permission", "not allowed"),
        "ask_user",
        "Permission denied. This may require user action. Explain the error to the user and ask "
        "if they want to proceed differently.",
    ),
)


def classify_error_text(
    error: str,
    tool_name: str | None = None,
    arguments: Mapping[str, Any] | None = None,
) -> RecoveryResult:
    """Map a raw failure message to a :class:`RecoveryResult`.

    ``tool_name`` and ``arguments`` are accepted for callers that have them;
    classification itself depends only on the text.
    """
    err = str(error).lower()
    for rule in RECOVERY_RULES:
        if any(p in err for p in rule.patterns):
            return RecoveryResult(
                category=rule.category,
                suggestion=rule.suggestion,
                recovery_action=rule.recovery_action,
                should_auto_diagnose=rule.category is ErrorCategory.DELEGATION_ERROR,
            )
    return RecoveryResult(
        category=ErrorCategory.UNKNOWN,
        suggestion=(
            f'Tool failed with: "{error}". Try: 1) Use a different approach, 2) Check inputs are '
            "valid, 3) Get fresh data before retrying. If the error persists, explain to the user "
            "and ask for guidance."
        ),
        recovery_action="general_retry",
    )


@dataclass
class ErrorAttemptTable:
    """Per-run failure counts by category."""

    max_attempts: int = 3
    counts: dict[ErrorCategory, int] = field(default_factory=dict)

    def record(self, category: ErrorCategory) -> int:
        count = self.counts.get(category, 0) + 1
        self.counts[category] = count
        return count

    def attempts(self, category: ErrorCategory) -> int:
        return self.counts.get(category, 0)

    def is_exhausted(self, category: ErrorCategory) -> bool:
        return self.attempts(category) >= self.max_attempts

    def reset(self) -> None:
        self.counts.clear()


def build_recovery_message(
    error: str,
    recovery: RecoveryResult,
    attempt: int,
    max_attempts: int,
) -> str:
    """Follow-up instruction for the model after a classified failure."""
    category = recovery.category.value
    if attempt >= max_attempts:
        return (
            f"Error: {error}\n\n"
            f"You've tried {attempt} times to recover from this {category} error. "
            "Stop retrying and explain the issue to the user. Ask if they want to try a "
            "completely different approach or provide different inputs."
        )
    return (
        f"Error: {error}\n\n"
        f"Error type: {category}\n"
        f"Recovery attempt: {attempt}/{max_attempts}\n\n"
        f"{recovery.suggestion}\n\n"
        "IMPORTANT: Do NOT give up. Try the suggested recovery approach. "
        f"You have {max_attempts - attempt} more attempts before escalating to the user."
    )


def build_recovery_payload(
    error: str,
    recovery: RecoveryResult,
    attempt: int,
    max_attempts: int,
) -> str:
    """Tool-result content (JSON) carrying the error and recovery guidance."""
    return _json.dumps({
        "error": error,
        "errorCategory": recovery.category.value,
        "recoveryAction": recovery.recovery_action,
        "recoveryAttempt": attempt,
        "maxAttempts": max_attempts,
        "recoveryGuidance": build_recovery_message(error, recovery, attempt, max_attempts),
    })
