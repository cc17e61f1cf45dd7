"""Ordered lifecycle events for one agent run.

Every event is validated against a small Pydantic envelope and handed to the
caller's sink as a plain dict, strictly in production order. The sink is
typically a live UI transport; anything it raises is logged and dropped so a
broken consumer can never abort the run.

Event kinds, in the order a run can produce them::

    thinking{iteration}         ask_start                ask_delta{text}
    ask_retract                 ask{message}             thinking_delta{text}
    tool_call{tool, input}      tool_retry{tool, attempt}
    tool_result{tool, output}   tool_error{tool, error, ...}
    recovery_attempt{category, attempt}
    tx_message{tx_hash, block_number, message}
    error{message}              done{result}
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Literal, Mapping

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from wallet_agent.errors import EventValidationError

logger = logging.getLogger(__name__)

EventType = Literal[
    "thinking",
    "ask_start",
    "ask_delta",
    "ask_retract",
    "ask",
    "thinking_delta",
    "tool_call",
    "tool_retry",
    "tool_result",
    "tool_error",
    "recovery_attempt",
    "tx_message",
    "error",
    "done",
]

EventSink = Callable[[dict[str, Any]], Any]

_REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "thinking": ("iteration",),
    "ask_delta": ("text",),
    "ask": ("message",),
    "thinking_delta": ("text",),
    "tool_call": ("tool", "input"),
    "tool_retry": ("tool", "attempt"),
    "tool_result": ("tool", "output"),
    "tool_error": ("tool", "error"),
    "recovery_attempt": ("category", "attempt"),
    "tx_message": ("tx_hash", "message"),
    "error": ("message",),
    "done": ("result",),
}


class AgentEvent(BaseModel):
    """Envelope for a single event. Payload fields ride along as extras."""

    model_config = ConfigDict(extra="allow", frozen=True)

    type: EventType

    @model_validator(mode="after")
    def _check_required_fields(self) -> "AgentEvent":
        payload = self.model_extra or {}
        missing = [k for k in _REQUIRED_FIELDS.get(self.type, ()) if k not in payload]
        if missing:
            raise ValueError(f"{self.type} event missing field(s): {', '.join(missing)}")
        return self

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **(self.model_extra or {})}


class EventEmitter:
    """Fire-and-forget, strictly ordered event channel for one run.

    Also enforces two stream invariants on the way out: an ``ask_delta`` that
    arrives after ``ask_retract`` (before a fresh ``ask_start``) is dropped,
    and only the first ``done`` is delivered.

    With ``strict=True`` a malformed event raises :class:`EventValidationError`
    instead of being logged and dropped.

    The sink may be sync or async. Awaitables it returns are queued and awaited
    one at a time by a single drain task, so async delivery keeps emit order;
    ``await emitter.aclose()`` waits for the queue to empty.
    """

    def __init__(
        self,
        sink: EventSink | None = None,
        *,
        logger: logging.Logger | None = None,
        strict: bool = False,
    ) -> None:
        self._sink = sink
        self.strict = strict
        self._log = logger or logging.getLogger(__name__)
        self._retracted = False
        self._done = False
        self._queue: asyncio.Queue | None = None
        self._drainer: asyncio.Task | None = None
        self.emitted = 0
        self.dropped = 0

    def emit(self, event_type: str, **payload: Any) -> None:
        try:
            event = AgentEvent.model_validate({"type": event_type, **payload})
        except ValidationError as exc:
            if self.strict:
                raise EventValidationError(f"Invalid {event_type} event: {exc}", original=exc) from exc
            self.dropped += 1
            self._log.warning("EVENT_INVALID type=%s: %s", event_type, exc)
            return

        if event.type == "ask_start":
            self._retracted = False
        elif event.type == "ask_retract":
            self._retracted = True
        elif event.type == "ask_delta" and self._retracted:
            self.dropped += 1
            self._log.warning("EVENT_DROPPED ask_delta after ask_retract")
            return
        elif event.type == "done":
            if self._done:
                self.dropped += 1
                self._log.warning("EVENT_DROPPED duplicate done")
                return
            self._done = True

        self.emitted += 1
        if self._sink is None:
            return
        try:
            delivery = self._sink(event.to_dict())
        except Exception as exc:
            self._sink_failed(event.type, exc)
            return
        if inspect.isawaitable(delivery):
            self._enqueue(event.type, delivery)

    __call__ = emit

    def _sink_failed(self, event_type: str, exc: Exception) -> None:
        self._log.warning("EVENT_SINK_FAILED type=%s: %s: %s", event_type, type(exc).__name__, exc)

    def _enqueue(self, event_type: str, delivery: Awaitable[Any]) -> None:
        if self._queue is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                self._log.warning("EVENT_SINK_FAILED type=%s: async sink used outside an event loop", event_type)
                if inspect.iscoroutine(delivery):
                    delivery.close()
                return
            self._queue = asyncio.Queue()
            self._drainer = loop.create_task(self._drain(self._queue))
        self._queue.put_nowait((event_type, delivery))

    async def _drain(self, queue: asyncio.Queue) -> None:
        while True:
            event_type, delivery = await queue.get()
            if delivery is None:
                return
            try:
                await delivery
            except Exception as exc:
                self._sink_failed(event_type, exc)

    async def aclose(self) -> None:
        """Wait until every queued async sink delivery has finished."""
        if self._queue is None or self._drainer is None:
            return
        queue, drainer = self._queue, self._drainer
        self._queue = self._drainer = None
        queue.put_nowait(("", None))
        await drainer


def _short_address(address: str) -> str:
    if len(address) <= 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


def build_tx_message(
    tool_name: str,
    result: Mapping[str, Any],
    arguments: Mapping[str, Any] | None = None,
) -> str:
    """Human-readable confirmation line for a tool output that carries a txHash."""
    args = arguments or {}
    amount = result.get("amount") or result.get("amountIn") or args.get("amount")
    token = (
        result.get("token")
        or result.get("fromToken")
        or args.get("token")
        or args.get("tokenSymbol")
    )
    to_token = result.get("toToken")
    recipient = result.get("recipient")

    if tool_name == "execute_swap" and amount and token and to_token:
        amount_out = result.get("amountOut")
        tail = f" for {amount_out} {to_token}" if amount_out else f" to {to_token}"
        return f"Swapped {amount} {token}{tail}"

    if tool_name == "transfer_funds" and amount and token:
        to = f" to {_short_address(str(recipient))}" if recipient else ""
        return f"Sent {amount} {token}{to}"

    x402 = result.get("x402Protocol")
    if tool_name == "web_research" and isinstance(x402, Mapping):
        return f"x402 payment: {x402.get('cost') or '0.01 USDC'}"

    if amount and token:
        return f"{tool_name}: {amount} {token}"

    return "Transaction completed"
