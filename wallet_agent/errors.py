"""Structured error types for wallet_agent.

Tool handlers may raise anything; the registry wraps failures so callers can
tell an unknown tool or bad arguments apart from a failing handler:

    from wallet_agent.errors import ToolValidationError

    try:
        await registry.execute("get_swap_quote", {"amount": "ten"}, ctx)
    except ToolValidationError as exc:
        # Model sent arguments that don't match the tool's schema
        ...
"""

from __future__ import annotations

import re


class WalletAgentError(Exception):
    """Base for all wallet_agent errors."""

    def __init__(self, message: str, original: Exception | None = None) -> None:
        super().__init__(message)
        self.original = original


class ToolNotFoundError(WalletAgentError):
    """The model asked for a tool that isn't registered."""


class ToolValidationError(WalletAgentError):
    """Tool arguments failed schema validation."""


class ToolExecutionError(WalletAgentError):
    """A tool handler raised while executing."""


class CompletionError(WalletAgentError):
    """The completion service failed to produce a turn."""


class EventValidationError(WalletAgentError):
    """An event payload did not match the event envelope."""


# Failures likely to succeed on retry with unchanged input.
_TRANSIENT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"timeout", re.IGNORECASE),
    re.compile(r"ETIMEDOUT", re.IGNORECASE),
    re.compile(r"ECONNRESET", re.IGNORECASE),
    re.compile(r"ECONNREFUSED", re.IGNORECASE),
    re.compile(r"rate limit", re.IGNORECASE),
    re.compile(r"429"),
    re.compile(r"503"),
    re.compile(r"502"),
    re.compile(r"504"),
    re.compile(r"network", re.IGNORECASE),
    re.compile(r"temporary", re.IGNORECASE),
)


def is_transient_error(error: Exception | str) -> bool:
    """Check if an error (or its message) is transient and worth retrying."""
    text = str(error)
    return any(p.search(text) for p in _TRANSIENT_PATTERNS)


def error_text(error: BaseException) -> str:
    """Message text for an exception, unwrapping ToolExecutionError to the handler's own error."""
    if isinstance(error, ToolExecutionError) and error.original is not None:
        error = error.original
    text = str(error)
    return text or type(error).__name__
