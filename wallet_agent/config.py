"""Typed runtime configuration for wallet_agent."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

MAX_ITERATIONS_ENV = "WALLET_AGENT_MAX_ITERATIONS"
MAX_INFRA_ERRORS_ENV = "WALLET_AGENT_MAX_INFRA_ERRORS"
MAX_TOOL_RETRIES_ENV = "WALLET_AGENT_MAX_TOOL_RETRIES"
RETRY_BASE_DELAY_ENV = "WALLET_AGENT_RETRY_BASE_DELAY"
MAX_SAME_ERROR_ATTEMPTS_ENV = "WALLET_AGENT_MAX_SAME_ERROR_ATTEMPTS"

DEFAULT_WRITE_TOOLS: frozenset[str] = frozenset({
    "execute_swap",
    "transfer_funds",
    "pay_x402",
})
"""Tools that move funds or settle payments. Identical calls execute at most once per run."""

DIAGNOSTIC_TOOL_NAME: str = "diagnose_delegation_error"
"""Tool invoked automatically when a delegation/permission check rejects a call."""

N = TypeVar("N", int, float)


@dataclass(frozen=True)
class AgentConfig:
    """Loop bounds and delays resolved once and passed explicitly into the agent."""

    max_iterations: int = 10
    max_consecutive_infra_errors: int = 3
    infra_retry_delay: float = 0.5
    max_tool_retries: int = 2
    retry_base_delay: float = 0.5
    max_same_error_attempts: int = 3
    max_identical_calls: int = 2
    read_call_window: int = 5
    pending_staleness_s: float = 30.0
    history_limit: int = 10
    write_tools: frozenset[str] = DEFAULT_WRITE_TOOLS
    diagnostic_tool: str = DIAGNOSTIC_TOOL_NAME

    @classmethod
    def from_env(cls) -> "AgentConfig":
        """Build typed config from environment variables, keeping defaults for anything unset."""
        defaults = cls()
        return cls(
            max_iterations=_env_number(MAX_ITERATIONS_ENV, int, defaults.max_iterations, minimum=1),
            max_consecutive_infra_errors=_env_number(
                MAX_INFRA_ERRORS_ENV, int, defaults.max_consecutive_infra_errors, minimum=1,
            ),
            max_tool_retries=_env_number(MAX_TOOL_RETRIES_ENV, int, defaults.max_tool_retries, minimum=0),
            retry_base_delay=_env_number(RETRY_BASE_DELAY_ENV, float, defaults.retry_base_delay, minimum=0),
            max_same_error_attempts=_env_number(
                MAX_SAME_ERROR_ATTEMPTS_ENV, int, defaults.max_same_error_attempts, minimum=1,
            ),
        )


def _env_number(name: str, cast: Callable[[str], N], default: N, *, minimum: N) -> N:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; expected a number. Defaulting to %s.", name, raw, default)
        return default
    if value < minimum:
        logger.warning("Invalid %s=%r; must be >= %s. Defaulting to %s.", name, raw, minimum, default)
        return default
    return value
