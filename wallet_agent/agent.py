"""Run controller: one user turn from prompt to exactly one terminal answer.

Usage:
    from wallet_agent import Agent, LiteLLMCompletionClient, RunContext, ToolRegistry

    registry = ToolRegistry()
    registry.register("get_holdings", "List wallet token balances", get_holdings)

    agent = Agent(LiteLLMCompletionClient("gpt-4o-mini"), registry)
    result = await agent.run(
        "What do I hold?",
        RunContext(wallet_address="0xabc...", chain_id=8453),
        on_event=print,
    )
    result.final_response_text

The loop alternates completion turns and tool execution until the model
answers in plain text, the infrastructure error bound is hit, or
``max_iterations`` runs out. Every path ends with ``ask`` followed by a
single ``done`` event.
"""

from __future__ import annotations

import asyncio
import json as _json
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable

from wallet_agent.admission import (
    AdmissionDecision,
    AdmissionGuard,
    duplicate_write_notice,
    redundant_call_notice,
)
from wallet_agent.completion import CompletionClient, ToolCall
from wallet_agent.config import AgentConfig
from wallet_agent.conversation import (
    EMPTY_TURN_NUDGE,
    INFRA_ERROR_NUDGE,
    assistant_text_message,
    assistant_tool_call_message,
    build_messages,
    tool_result_message,
    user_message,
)
from wallet_agent.dispatcher import CompletionDispatcher, TurnKind
from wallet_agent.events import EventEmitter, EventSink, build_tx_message
from wallet_agent.executor import ToolExecutor
from wallet_agent.memory import MemoryProjector
from wallet_agent.prompts import build_system_prompt
from wallet_agent.recovery import (
    ErrorAttemptTable,
    build_recovery_payload,
    classify_error_text,
)
from wallet_agent.tools import ToolRegistry

logger = logging.getLogger(__name__)

APOLOGY_TEXT = "I'm having trouble processing that request. Could you try again in a moment?"
FALLBACK_TEXT = (
    "I've gathered some information but need more details to help you. "
    "What would you like to know?"
)
DIAGNOSIS_INSTRUCTIONS = (
    "DIAGNOSIS ALREADY DONE - Do NOT call diagnose_delegation_error again. The autoDiagnosis "
    "field above contains the full analysis. Simply explain the diagnosis results to the user "
    "in natural language."
)

SystemPromptBuilder = Callable[[list[dict[str, Any]], Any], str]


@dataclass
class RunContext:
    """Per-turn inputs from the host. ``emit`` is filled in by the agent."""

    wallet_address: str | None = None
    chain_id: int | None = None
    session_id: str | None = None
    memory_facts: dict[str, Any] = field(default_factory=dict)
    chat_history: list[dict[str, Any]] = field(default_factory=list)
    remember: Callable[[str, Any], Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)
    emit: Callable[..., None] | None = None


@dataclass(frozen=True)
class ToolResultRecord:
    tool: str
    ok: bool
    output: Any = None
    error: str | None = None
    recovery: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            return {"tool": self.tool, "ok": True, "output": self.output}
        return {"tool": self.tool, "ok": False, "error": self.error, "recovery": self.recovery}


@dataclass(frozen=True)
class RunResult:
    final_response_text: str
    tool_results: tuple[ToolResultRecord, ...] = ()
    transcript: tuple[dict[str, Any], ...] = ()


def _dump(value: Any) -> str:
    return _json.dumps(value, default=str)


class _Run:
    """Mutable state of a single ``Agent.run`` call."""

    def __init__(self, agent: "Agent", context: RunContext, emitter: EventEmitter) -> None:
        config = agent.config
        self.agent = agent
        self.context = context
        self.emitter = emitter
        self.log = agent._log
        self.guard = AdmissionGuard(
            write_tools=config.write_tools | agent.registry.write_tools(),
            max_identical_calls=config.max_identical_calls,
            window=config.read_call_window,
        )
        self.attempts = ErrorAttemptTable(max_attempts=config.max_same_error_attempts)
        self.executor = ToolExecutor(
            agent.registry,
            max_retries=config.max_tool_retries,
            base_delay=config.retry_base_delay,
            emitter=emitter,
            logger=agent._log,
            sleep=agent._sleep,
        )
        self.dispatcher = CompletionDispatcher(
            agent.client, emitter, streaming=agent.streaming, logger=agent._log,
        )
        self.messages: list[dict[str, Any]] = []
        self.tool_results: list[ToolResultRecord] = []

    async def handle_call(self, call: ToolCall) -> None:
        name, args = call.name, call.arguments
        decision = self.guard.check(name, args)

        if decision is AdmissionDecision.SKIP_REDUNDANT:
            self.messages.append(assistant_tool_call_message(call))
            self.messages.append(tool_result_message(call.id, redundant_call_notice(name)))
            return
        if decision is AdmissionDecision.BLOCK_DUPLICATE:
            self.messages.append(assistant_tool_call_message(call))
            self.messages.append(tool_result_message(call.id, duplicate_write_notice(name, args)))
            self.emitter.emit("tool_error", tool=name, error="Duplicate call blocked")
            return

        self.emitter.emit("tool_call", tool=name, input=args)
        self.log.info("TOOL_CALL tool=%s", name)
        execution = await self.executor.execute(name, args, self.context)

        if execution.ok:
            await self._on_success(call, execution.result)
        else:
            await self._on_failure(call, execution.error or "Unknown error", execution.retries_used)

    async def _on_success(self, call: ToolCall, result: Any) -> None:
        self.attempts.reset()
        self.emitter.emit("tool_result", tool=call.name, output=result)
        self.tool_results.append(ToolResultRecord(tool=call.name, ok=True, output=result))

        await self.agent.memory.project(call.name, result, call.arguments, self.context)

        if isinstance(result, dict) and result.get("txHash"):
            self.emitter.emit(
                "tx_message",
                tx_hash=result["txHash"],
                block_number=result.get("blockNumber"),
                message=build_tx_message(call.name, result, call.arguments),
            )

        self.messages.append(assistant_tool_call_message(call))
        self.messages.append(tool_result_message(call.id, _dump(result)))

    async def _on_failure(self, call: ToolCall, error: str, retries_used: int) -> None:
        config = self.agent.config
        recovery = classify_error_text(error, call.name, call.arguments)
        attempt = self.attempts.record(recovery.category)
        max_attempts = self.attempts.max_attempts
        exhausted = self.attempts.is_exhausted(recovery.category)

        self.emitter.emit(
            "tool_error",
            tool=call.name,
            error=error,
            retries_used=retries_used,
            recovery={
                "category": recovery.category.value,
                "attempt": attempt,
                "max_attempts": max_attempts,
                "will_retry": not exhausted,
            },
        )
        self.log.warning(
            "TOOL_ERROR tool=%s category=%s attempt=%d/%d retries=%d: %s",
            call.name, recovery.category.value, attempt, max_attempts, retries_used, error,
        )
        self.tool_results.append(
            ToolResultRecord(tool=call.name, ok=False, error=error, recovery=recovery.category.value)
        )

        if recovery.should_auto_diagnose and self.agent.registry.has(config.diagnostic_tool):
            if await self._auto_diagnose(call, error):
                return

        self.messages.append(assistant_tool_call_message(call))
        self.messages.append(
            tool_result_message(call.id, build_recovery_payload(error, recovery, attempt, max_attempts))
        )
        if not exhausted:
            self.emitter.emit("recovery_attempt", category=recovery.category.value, attempt=attempt)

    async def _auto_diagnose(self, call: ToolCall, error: str) -> bool:
        tool = self.agent.config.diagnostic_tool
        diagnosis_id = f"auto_diagnosis_{int(self.agent._clock() * 1000)}"
        diagnosis_args = {"errorMessage": error, "walletAddress": self.context.wallet_address}
        self.log.info("AUTO_DIAGNOSIS tool=%s for %s", tool, call.name)

        self.emitter.emit("tool_call", tool=tool, input=diagnosis_args, id=diagnosis_id)
        try:
            diagnosis = await self.agent.registry.execute(tool, diagnosis_args, self.context)
        except Exception as exc:
            self.log.error("AUTO_DIAGNOSIS_FAILED: %s: %s", type(exc).__name__, exc)
            return False

        self.messages.append(assistant_tool_call_message(call))
        self.messages.append(tool_result_message(call.id, _dump({
            "error": error,
            "autoRecovered": False,
            "autoDiagnosis": diagnosis,
            "instructions": DIAGNOSIS_INSTRUCTIONS,
        })))
        self.emitter.emit("tool_result", tool=tool, output=diagnosis, id=diagnosis_id)
        return True


class Agent:
    """Drives the model/tool loop for one user turn at a time.

    Args:
        client: Completion client (see :mod:`wallet_agent.completion`).
        registry: Tools the model may call.
        config: Loop bounds and delays. Defaults to :class:`AgentConfig` defaults.
        system_prompt_builder: ``(tool_schemas, context) -> str``.
        streaming: Try ``chat_stream`` before ``chat`` when the client has it.
        logger: Injected logger; defaults to this module's (silent unless configured).
        sleep: Awaitable sleep, injectable for tests.
        clock: Wall clock in seconds, used for memory timestamps and synthetic ids.
    """

    def __init__(
        self,
        client: CompletionClient,
        registry: ToolRegistry,
        *,
        config: AgentConfig | None = None,
        system_prompt_builder: SystemPromptBuilder = build_system_prompt,
        streaming: bool = True,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.registry = registry
        self.config = config or AgentConfig()
        self.system_prompt_builder = system_prompt_builder
        self.streaming = streaming
        self._log = logger or logging.getLogger(__name__)
        self._sleep = sleep
        self._clock = clock
        self.memory = MemoryProjector(
            staleness_s=self.config.pending_staleness_s, clock=clock, logger=self._log,
        )

    async def run(
        self,
        prompt: str,
        context: RunContext | None = None,
        on_event: EventSink | None = None,
    ) -> RunResult:
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("prompt must be non-empty text")

        config = self.config
        emitter = EventEmitter(on_event, logger=self._log)
        context = replace(context or RunContext(), emit=emitter.emit)
        run = _Run(self, context, emitter)

        tools = self.registry.schemas()
        system_prompt = self.system_prompt_builder(tools, context)
        run.messages = build_messages(
            system_prompt, context.chat_history, prompt, config.history_limit,
        )

        final_text: str | None = None
        consecutive_errors = 0

        for iteration in range(config.max_iterations):
            emitter.emit("thinking", iteration=iteration)
            self._log.debug("ITERATION %d messages=%d", iteration, len(run.messages))

            outcome = await run.dispatcher.dispatch(run.messages, tools)

            if outcome.kind is TurnKind.INFRA_ERROR:
                consecutive_errors += 1
                self._log.error(
                    "LLM_ERROR iteration=%d consecutive=%d: %s",
                    iteration, consecutive_errors, outcome.error,
                )
                emitter.emit("error", message=f"LLM error: {outcome.error}")
                if consecutive_errors >= config.max_consecutive_infra_errors:
                    self._log.error("MAX_CONSECUTIVE_ERRORS reached (%d)", consecutive_errors)
                    final_text = run.dispatcher.announce_fixed(APOLOGY_TEXT)
                    break
                run.messages.append(user_message(INFRA_ERROR_NUDGE))
                await self._sleep(config.infra_retry_delay)
                continue

            consecutive_errors = 0

            if outcome.kind is TurnKind.FINAL:
                final_text = run.dispatcher.announce_final(outcome)
                break

            if outcome.kind is TurnKind.EMPTY:
                self._log.warning("EMPTY_RESPONSE iteration=%d", iteration)
                run.messages.append(user_message(EMPTY_TURN_NUDGE))
                continue

            reasoning = outcome.turn.content.strip()
            if reasoning:
                run.messages.append(assistant_text_message(reasoning))
                emitter.emit("thinking_delta", text=reasoning)
            for call in outcome.turn.tool_calls:
                await run.handle_call(call)

        if not final_text:
            self._log.warning("MAX_ITERATIONS reached (%d) without a final answer", config.max_iterations)
            final_text = run.dispatcher.announce_fixed(FALLBACK_TEXT)

        emitter.emit(
            "done",
            result={
                "plan": "completed",
                "tool_results": [r.to_dict() for r in run.tool_results],
            },
        )
        await emitter.aclose()
        return RunResult(
            final_response_text=final_text,
            tool_results=tuple(run.tool_results),
            transcript=tuple(run.messages),
        )
