"""Tool execution with local retry of transient failures."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

from wallet_agent.errors import error_text, is_transient_error
from wallet_agent.events import EventEmitter
from wallet_agent.execution_kernel import exponential_delay, run_async_with_retry
from wallet_agent.tools import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_RETRIES: int = 2
DEFAULT_RETRY_BASE_DELAY: float = 0.5


@dataclass(frozen=True)
class ToolExecution:
    """Outcome of one logical tool invocation (all attempts included)."""

    result: Any = None
    error: str | None = None
    retries_used: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


class ToolExecutor:
    """Runs registry tools, retrying transient failures with exponential backoff.

    Adds no side effects of its own beyond what the tool performs.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        max_retries: int = DEFAULT_MAX_TOOL_RETRIES,
        base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        emitter: EventEmitter | None = None,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.emitter = emitter or EventEmitter()
        self._log = logger or logging.getLogger(__name__)
        self._sleep = sleep

    async def execute(
        self,
        name: str,
        arguments: Mapping[str, Any] | None,
        context: Any = None,
    ) -> ToolExecution:
        last_attempt = 0

        async def _invoke(attempt: int) -> Any:
            nonlocal last_attempt
            last_attempt = attempt
            return await self.registry.execute(name, arguments, context)

        def _on_retry(attempt: int, exc: Exception, delay: float) -> None:
            self._log.info("TOOL_RETRY tool=%s attempt=%d error=%s", name, attempt + 1, error_text(exc))
            self.emitter.emit("tool_retry", tool=name, attempt=attempt + 1)

        try:
            result = await run_async_with_retry(
                caller=f"tool:{name}",
                max_retries=self.max_retries,
                invoke=_invoke,
                should_retry=lambda exc: is_transient_error(error_text(exc)),
                compute_delay=lambda attempt, exc: exponential_delay(attempt, self.base_delay),
                logger=self._log,
                on_retry=_on_retry,
                sleep=self._sleep,
            )
        except Exception as exc:
            return ToolExecution(error=error_text(exc), retries_used=last_attempt)
        return ToolExecution(result=result, retries_used=last_attempt)
