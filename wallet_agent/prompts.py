"""System prompt rendering from YAML/Jinja2 templates.

Prompt templates are YAML files under ``wallet_agent/templates/`` holding a
list of chat messages whose ``content`` is a Jinja2 template.
:func:`build_system_prompt` renders the wallet assistant prompt (tool list,
wallet identity, memory highlights) from ``system.yaml``.

YAML format::

    name: wallet_system
    version: "1.0"
    messages:
      - role: system
        content: |
          You operate wallet {{ wallet_address }}.
          {% for t in tools %}- {{ t.name }}: {{ t.description }}
          {% endfor %}
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Mapping

import yaml  # type: ignore[import-untyped]
from jinja2 import Environment, StrictUndefined

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"
SYSTEM_TEMPLATE = "system.yaml"

# StrictUndefined: a context key missing from build_system_prompt fails the render.
_env = Environment(undefined=StrictUndefined, autoescape=False)


def _load_messages(path: Path) -> list[dict[str, Any]]:
    if not path.is_file():
        raise FileNotFoundError(f"Prompt template not found: {path}")
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    messages = raw.get("messages") if isinstance(raw, dict) else None
    if not messages:
        raise ValueError(f"Prompt YAML missing 'messages' list: {path}")
    if not isinstance(messages, list) or not all(
        isinstance(m, dict) and "role" in m and "content" in m for m in messages
    ):
        raise ValueError(f"Every prompt message needs 'role' and 'content' keys: {path}")
    return messages


def render_prompt(template: str | Path, **context: Any) -> list[dict[str, str]]:
    """Render a YAML prompt template into chat messages.

    ``template`` is a path; relative names are looked up in ``TEMPLATES_DIR``.
    Raises FileNotFoundError, ValueError for a malformed template, and
    ``jinja2.UndefinedError`` when the template uses a name not in ``context``.
    """
    path = Path(template)
    if not path.is_absolute():
        path = TEMPLATES_DIR / path

    rendered = [
        {"role": str(m["role"]), "content": _env.from_string(str(m["content"])).render(**context).strip()}
        for m in _load_messages(path)
    ]
    logger.debug("Rendered prompt %s (%d messages)", path.name, len(rendered))
    return rendered


# ---------------------------------------------------------------------------
# Memory highlights
# ---------------------------------------------------------------------------


def format_amount(value: Any) -> str:
    """Compact amount preview: 2 decimals above 1, 4 above 0.01, else 3 significant digits."""
    try:
        num = float(value)
    except (TypeError, ValueError):
        return str(value)
    if num != num or num in (float("inf"), float("-inf")):
        return str(value)
    if abs(num) >= 1:
        text = f"{num:.2f}"
    elif abs(num) >= 0.01:
        text = f"{num:.4f}"
    else:
        return f"{num:.3g}"
    return text.rstrip("0").rstrip(".") if "." in text else text


def memory_highlights(memory_facts: Mapping[str, Any] | None) -> list[str]:
    """Summarize durable session facts into short lines for the system prompt."""
    facts = memory_facts or {}
    lines: list[str] = []

    holdings = facts.get("lastHoldings")
    if isinstance(holdings, list) and holdings:
        preview = ", ".join(
            f"{h.get('symbol') or h.get('address')}: {format_amount(h.get('balanceFormatted'))}"
            for h in holdings[:3]
            if isinstance(h, Mapping)
        )
        suffix = ", ..." if len(holdings) > 3 else ""
        lines.append(f"Recent holdings snapshot: {preview}{suffix}")

    price_lookup = facts.get("lastPriceLookup")
    if isinstance(price_lookup, Mapping) and price_lookup.get("symbols"):
        convert = price_lookup.get("convert") or "USD"
        lines.append(f"Last price lookup ({convert}): {', '.join(price_lookup['symbols'])}")

    sentiment = facts.get("lastMarketSentiment")
    if isinstance(sentiment, Mapping) and sentiment.get("classification"):
        lines.append(f"Latest sentiment: {sentiment['classification']} ({sentiment.get('value')})")

    pending_swaps = facts.get("pendingSwaps")
    pending_intent = facts.get("pendingSwapIntent")
    if isinstance(pending_swaps, list) and pending_swaps:
        lines.append(f"CRITICAL: {len(pending_swaps)} PENDING SWAP(S) AWAITING USER CONFIRMATION")
        for i, swap in enumerate(pending_swaps, start=1):
            min_out = f" (min {format_amount(swap['minOut'])})" if swap.get("minOut") else ""
            lines.append(
                f"  SWAP {i}: {format_amount(swap.get('amountIn'))} {swap.get('fromToken')} -> "
                f"{format_amount(swap.get('amountOut'))} {swap.get('toToken')}{min_out}"
            )
        lines.append('IF USER SAYS "yes", "do it", "proceed": IMMEDIATELY execute ALL swaps using execute_swap!')
    elif isinstance(pending_intent, Mapping) and pending_intent.get("amountIn") and pending_intent.get("fromToken"):
        to_token = pending_intent.get("toToken")
        amount_out = (
            f" -> {format_amount(pending_intent['amountOut'])} {to_token}"
            if pending_intent.get("amountOut") else ""
        )
        min_out = (
            f" (min {format_amount(pending_intent['minOut'])} {to_token})"
            if pending_intent.get("minOut") else ""
        )
        lines.append(
            f"PENDING SWAP: {format_amount(pending_intent['amountIn'])} "
            f"{pending_intent['fromToken']}{amount_out}{min_out}"
        )
        lines.append(
            f'EXACT VALUES TO USE: fromToken="{pending_intent["fromToken"]}", '
            f'toToken="{to_token}", amount="{pending_intent["amountIn"]}"'
        )
        lines.append(
            f'If user confirms ("yes", "do it"): call execute_swap with EXACT amount="{pending_intent["amountIn"]}"'
        )

    transfer = facts.get("pendingTransfer")
    if isinstance(transfer, Mapping) and transfer.get("recipient") and transfer.get("amount"):
        gas = (
            f" (gas: ~${transfer['gasCostUsd']}, {transfer.get('gasTier') or 'standard'})"
            if transfer.get("gasCostUsd") else ""
        )
        lines.append(
            f"PENDING TRANSFER: {format_amount(transfer['amount'])} {transfer.get('token')} "
            f"to {str(transfer['recipient'])[:10]}...{gas}"
        )
        lines.append(
            f'EXACT VALUES: recipient="{transfer["recipient"]}", token="{transfer.get("token")}", '
            f'amount="{transfer["amount"]}", gasTier="{transfer.get("gasTier") or "standard"}"'
        )
        lines.append('If user confirms ("yes", "do it"): call transfer_funds(simulate=false) with EXACT values above')

    last_ask = facts.get("lastAsk")
    if isinstance(last_ask, str) and last_ask.strip():
        cleaned = re.sub(r"\s+", " ", last_ask).strip()
        preview = f"{cleaned[:200]}…" if len(cleaned) > 200 else cleaned
        lines.append(f'YOUR LAST MESSAGE TO USER: "{preview}"')
        lines.append('If user says "yes"/"please"/"do it": execute EXACTLY what you offered!')

    return lines


def build_system_prompt(
    tool_schemas: list[dict[str, Any]],
    context: Any,
    *,
    template_path: str | Path = SYSTEM_TEMPLATE,
) -> str:
    """Render the system prompt for one run from the wallet template."""
    facts = getattr(context, "memory_facts", None) or {}
    tools = [
        {
            "name": s.get("function", {}).get("name", ""),
            "description": s.get("function", {}).get("description", ""),
        }
        for s in tool_schemas
    ]
    messages = render_prompt(
        template_path,
        tools=tools,
        wallet_address=getattr(context, "wallet_address", None),
        chain_id=getattr(context, "chain_id", None),
        auto_tx_mode=facts.get("autoTxMode") or "ask",
        highlights=memory_highlights(facts),
    )
    return "\n\n".join(m["content"] for m in messages if m["role"] == "system")
