"""Obtain one assistant turn and classify it.

Streaming is attempted first when the client supports it. Text is forwarded
live as ``ask_delta`` on the optimistic assumption that the turn is the final
answer. If the finished turn asks for tools instead, ``ask_retract`` tells the
consumer to discard everything since ``ask_start``; the text is kept only as
reasoning context. A failing stream falls back to the blocking call, and only
a failing blocking call counts as an infrastructure error.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from wallet_agent.completion import CompletionClient, CompletionTurn, supports_streaming
from wallet_agent.errors import error_text
from wallet_agent.events import EventEmitter

logger = logging.getLogger(__name__)

_WORD_SPLIT = re.compile(r"(\s+)")


class TurnKind(str, Enum):
    FINAL = "final"
    TOOLS_REQUESTED = "tools_requested"
    EMPTY = "empty"
    INFRA_ERROR = "infra_error"


@dataclass(frozen=True)
class DispatchOutcome:
    kind: TurnKind
    turn: CompletionTurn = field(default_factory=CompletionTurn)
    streamed: bool = False
    """True when the final text already reached the consumer as ``ask_delta`` chunks."""
    error: str | None = None


def classify_turn(turn: CompletionTurn) -> TurnKind:
    if turn.tool_calls:
        return TurnKind.TOOLS_REQUESTED
    if turn.content and turn.content.strip():
        return TurnKind.FINAL
    return TurnKind.EMPTY


class CompletionDispatcher:
    """Wraps a completion client with the stream/retract/fallback protocol."""

    def __init__(
        self,
        client: CompletionClient,
        emitter: EventEmitter,
        *,
        streaming: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.emitter = emitter
        self.streaming = streaming and supports_streaming(client)
        self._log = logger or logging.getLogger(__name__)

    async def dispatch(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> DispatchOutcome:
        if self.streaming:
            outcome = await self._try_stream(messages, tools)
            if outcome is not None:
                return outcome

        try:
            turn = await self.client.chat(messages=messages, tools=tools, tool_choice="auto")
        except Exception as exc:
            return DispatchOutcome(kind=TurnKind.INFRA_ERROR, error=error_text(exc))
        return DispatchOutcome(kind=classify_turn(turn), turn=turn)

    async def _try_stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> DispatchOutcome | None:
        collected: list[str] = []
        started = False

        def _on_chunk(text: str) -> None:
            nonlocal started
            if not text:
                return
            collected.append(text)
            if not started:
                self.emitter.emit("ask_start")
                started = True
            self.emitter.emit("ask_delta", text=text)

        try:
            turn = await self.client.chat_stream(  # type: ignore[attr-defined]
                messages=messages, tools=tools, on_chunk=_on_chunk,
            )
        except Exception as exc:
            self._log.warning("STREAM_FALLBACK to blocking completion: %s", error_text(exc))
            if started:
                self.emitter.emit("ask_retract")
            return None

        streamed_text = "".join(collected)
        if not turn.content and streamed_text:
            turn = replace(turn, content=streamed_text)
        kind = classify_turn(turn)

        if kind is not TurnKind.FINAL:
            if started:
                self.emitter.emit("ask_retract")
                self._log.info("Retracted premature stream (%d chars)", len(streamed_text))
            return DispatchOutcome(kind=kind, turn=turn)
        return DispatchOutcome(kind=kind, turn=turn, streamed=started)

    def announce_final(self, outcome: DispatchOutcome) -> str:
        """Emit the final answer events and return the answer text."""
        text = outcome.turn.content
        if not outcome.streamed:
            self.emitter.emit("ask_start")
            for chunk in _WORD_SPLIT.split(text):
                if chunk:
                    self.emitter.emit("ask_delta", text=chunk)
        self.emitter.emit("ask", message=text)
        return text

    def announce_fixed(self, text: str) -> str:
        """Emit a synthesized terminal answer (apology or fallback)."""
        self.emitter.emit("ask_start")
        self.emitter.emit("ask", message=text)
        return text
