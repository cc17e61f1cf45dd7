"""Run one wallet_agent turn from the command line.

Usage:
    python -m wallet_agent run "What can you do?" --model gpt-4o-mini
    python -m wallet_agent run "hi" --model gemini/gemini-2.5-flash --max-iterations 4
    python -m wallet_agent run "hi" --model gpt-4o-mini --wallet 0xabc... --chain-id 8453
    python -m wallet_agent run "hi" --model gpt-4o-mini --no-stream -v

Each event is printed as one JSON line; the final answer follows on stdout.
No tools are registered, so this exercises the completion path only.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from typing import Any

from wallet_agent.agent import Agent, RunContext, RunResult
from wallet_agent.completion import LiteLLMCompletionClient
from wallet_agent.config import AgentConfig
from wallet_agent.tools import ToolRegistry


def _print_event(event: dict[str, Any]) -> None:
    print(json.dumps(event, default=str), flush=True)


async def _run(args: argparse.Namespace) -> RunResult:
    config = AgentConfig.from_env()
    if args.max_iterations is not None:
        config = replace(config, max_iterations=args.max_iterations)
    client = LiteLLMCompletionClient(args.model, timeout=args.timeout)
    agent = Agent(client, ToolRegistry(), config=config, streaming=not args.no_stream)
    context = RunContext(wallet_address=args.wallet, chain_id=args.chain_id)
    return await agent.run(args.prompt, context, on_event=_print_event)


def cmd_run(args: argparse.Namespace) -> None:
    if args.max_iterations is not None and args.max_iterations < 1:
        print("--max-iterations must be >= 1", file=sys.stderr)
        sys.exit(2)
    result = asyncio.run(_run(args))
    print()
    print(result.final_response_text)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="wallet_agent",
        description="Wallet intent agent: model/tool orchestration loop",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log loop internals to stderr")
    sub = parser.add_subparsers(dest="command", help="Available commands")

    run_p = sub.add_parser("run", help="Run one prompt and print events as JSON lines")
    run_p.add_argument("prompt", help="User prompt")
    run_p.add_argument("--model", required=True, help="Any litellm model string")
    run_p.add_argument("--max-iterations", type=int, help="Override WALLET_AGENT_MAX_ITERATIONS")
    run_p.add_argument("--wallet", help="Wallet address placed in the run context")
    run_p.add_argument("--chain-id", type=int, help="Chain id placed in the run context")
    run_p.add_argument("--timeout", type=int, default=60, help="Per-request timeout in seconds")
    run_p.add_argument("--no-stream", action="store_true", help="Use blocking completions only")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.command == "run":
        cmd_run(args)


if __name__ == "__main__":
    main()
