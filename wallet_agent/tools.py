"""Tool registry: registration, OpenAI-compatible schemas, validated execution.

Tools are self-describing. Arguments are declared as a Pydantic model, which
both validates what the model sends and produces the JSON Schema shown to it.

Usage:
    from pydantic import BaseModel, Field
    from wallet_agent.tools import ToolRegistry

    class QuoteArgs(BaseModel):
        fromToken: str
        toToken: str
        amount: str = Field(description="Human-readable amount of fromToken")

    async def get_swap_quote(args: dict, context: RunContext) -> dict:
        ...

    registry = ToolRegistry()
    registry.register("get_swap_quote", "Quote a token swap", get_swap_quote, args_model=QuoteArgs)
    registry.register("execute_swap", "Execute a quoted swap", execute_swap,
                      args_model=SwapArgs, tags={"write"})
"""

from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from pydantic import BaseModel, ValidationError

from wallet_agent.errors import ToolExecutionError, ToolNotFoundError, ToolValidationError

logger = logging.getLogger(__name__)

WRITE_TAG: str = "write"
"""Tag marking tools whose successful execution changes external state."""

ToolHandler = Callable[[dict[str, Any], Any], Any]


@dataclass(frozen=True)
class ToolSpec:
    """A registered tool."""

    name: str
    description: str
    handler: ToolHandler
    args_model: type[BaseModel] | None = None
    tags: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_write(self) -> bool:
        return WRITE_TAG in self.tags

    def parameters_schema(self) -> dict[str, Any]:
        """JSON Schema for the tool's arguments (always an object schema)."""
        if self.args_model is None:
            return {"type": "object", "properties": {}}
        schema = self.args_model.model_json_schema()
        schema.pop("title", None)
        schema.setdefault("type", "object")
        schema.setdefault("properties", {})
        return schema

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema(),
            },
        }

    def validate(self, arguments: Mapping[str, Any] | None) -> dict[str, Any]:
        if self.args_model is None:
            return dict(arguments or {})
        try:
            parsed = self.args_model.model_validate(dict(arguments or {}))
        except ValidationError as exc:
            raise ToolValidationError(f"Invalid arguments for {self.name}: {exc}", original=exc) from exc
        return parsed.model_dump()


class ToolRegistry:
    """Name-keyed tool collection with a uniform ``execute(name, args, context)`` entry point."""

    def __init__(self, tools: Iterable[ToolSpec] = ()) -> None:
        self._tools: dict[str, ToolSpec] = {}
        for spec in tools:
            self.add(spec)

    def add(self, spec: ToolSpec) -> ToolSpec:
        if not spec.name or not spec.description:
            raise ValueError("Tool registration requires name, description, and handler")
        if spec.name in self._tools:
            raise ValueError(f"Duplicate tool name {spec.name!r}")
        self._tools[spec.name] = spec
        logger.debug("Registered tool %s tags=%s", spec.name, sorted(spec.tags))
        return spec

    def register(
        self,
        name: str,
        description: str,
        handler: ToolHandler,
        *,
        args_model: type[BaseModel] | None = None,
        tags: Iterable[str] = (),
    ) -> ToolSpec:
        return self.add(
            ToolSpec(
                name=name,
                description=description,
                handler=handler,
                args_model=args_model,
                tags=frozenset(tags),
            )
        )

    def has(self, name: str) -> bool:
        return name in self._tools

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def write_tools(self) -> frozenset[str]:
        """Names of tools carrying the write tag."""
        return frozenset(name for name, spec in self._tools.items() if spec.is_write)

    def schemas(self) -> list[dict[str, Any]]:
        """OpenAI function-calling schemas for every registered tool."""
        return [spec.to_openai() for spec in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    async def execute(
        self,
        name: str,
        arguments: Mapping[str, Any] | None,
        context: Any = None,
    ) -> Any:
        """Validate arguments and run the handler (sync or async).

        Raises:
            ToolNotFoundError: No tool registered under ``name``.
            ToolValidationError: Arguments don't match the tool's model.
            ToolExecutionError: The handler raised; the original is in ``.original``.
        """
        spec = self._tools.get(name)
        if spec is None:
            raise ToolNotFoundError(f"Unknown tool: {name}")

        validated = spec.validate(arguments)

        t0 = time.monotonic()
        try:
            result = spec.handler(validated, context)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            logger.warning(
                "Tool %s failed after %.3fs: %s: %s",
                name, time.monotonic() - t0, type(exc).__name__, exc,
            )
            raise ToolExecutionError(str(exc) or type(exc).__name__, original=exc) from exc

        logger.info("Tool %s executed in %.3fs", name, time.monotonic() - t0)
        return result
