"""Wallet intent agent: drives a model through tool calls to one final answer.

Usage:
    from wallet_agent import Agent, LiteLLMCompletionClient, RunContext, ToolRegistry

    registry = ToolRegistry()
    registry.register("get_swap_quote", "Quote a token swap", get_swap_quote, args_model=QuoteArgs)
    registry.register("execute_swap", "Execute a quoted swap", execute_swap,
                      args_model=SwapArgs, tags={"write"})

    agent = Agent(LiteLLMCompletionClient("gpt-4o-mini"), registry)
    result = await agent.run("swap 100 USDC for ETH", RunContext(wallet_address="0x..."),
                             on_event=send_to_ui)
    print(result.final_response_text)

Safety invariants enforced per run:
    - an identical write call (same tool, same arguments) executes at most once
    - identical read calls are capped inside a trailing window
    - transient tool failures retry with exponential backoff
    - every run emits exactly one ``done`` event and a non-empty answer
"""

from wallet_agent.admission import AdmissionDecision, AdmissionGuard, AdmissionState, call_key, canonical_json
from wallet_agent.agent import Agent, RunContext, RunResult, ToolResultRecord
from wallet_agent.completion import (
    CompletionClient,
    CompletionTurn,
    LiteLLMCompletionClient,
    StreamingCompletionClient,
    ToolCall,
)
from wallet_agent.config import AgentConfig
from wallet_agent.errors import (
    CompletionError,
    EventValidationError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolValidationError,
    WalletAgentError,
    is_transient_error,
)
from wallet_agent.events import AgentEvent, EventEmitter
from wallet_agent.executor import ToolExecution, ToolExecutor
from wallet_agent.memory import InMemorySessionStore, MemoryProjector
from wallet_agent.prompts import build_system_prompt, memory_highlights, render_prompt
from wallet_agent.recovery import ErrorAttemptTable, ErrorCategory, RecoveryResult, classify_error_text
from wallet_agent.tools import ToolRegistry, ToolSpec

__all__ = [
    "Agent",
    "AgentConfig",
    "AgentEvent",
    "AdmissionDecision",
    "AdmissionGuard",
    "AdmissionState",
    "CompletionClient",
    "CompletionError",
    "CompletionTurn",
    "ErrorAttemptTable",
    "ErrorCategory",
    "EventEmitter",
    "EventValidationError",
    "InMemorySessionStore",
    "LiteLLMCompletionClient",
    "MemoryProjector",
    "RecoveryResult",
    "RunContext",
    "RunResult",
    "StreamingCompletionClient",
    "ToolCall",
    "ToolExecution",
    "ToolExecutionError",
    "ToolExecutor",
    "ToolNotFoundError",
    "ToolRegistry",
    "ToolResultRecord",
    "ToolSpec",
    "ToolValidationError",
    "WalletAgentError",
    "build_system_prompt",
    "call_key",
    "canonical_json",
    "classify_error_text",
    "is_transient_error",
    "memory_highlights",
    "render_prompt",
]
