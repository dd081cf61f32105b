# registry.py
# Tool registry and the dangerous-call confirmation protocol.
#
# The registry is the only thing that invokes tools. It guarantees that
# execute() and execute_batch() never raise: unknown tools and tool
# exceptions come back as failed ToolExecutionResults.
#
# Batch protocol:
#   partition calls → one ConfirmationRequest for every dangerous call
#   → approve-all | deny-all | partial(i) → run the resolved set concurrently
#   → results in input order

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Union

from tiny_agent.confirmation import ConfirmationSession
from tiny_agent.models import (
    ConfirmationAction,
    ConfirmationRequest,
    DenyAll,
    Partial,
    ToolCall,
    ToolDefinition,
    ToolExecutionResult,
)

logger = logging.getLogger(__name__)

DECLINED = "User declined confirmation"


class ToolRegistrationError(Exception):
    """Raised when a tool name is registered twice."""


# ---------------------------------------------------------------------------
# Danger variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Safe:
    """Never requires confirmation."""


@dataclass(frozen=True)
class Always:
    """Always requires confirmation. `label` defaults to "Execute {name}"."""

    label: str | None = None


@dataclass(frozen=True)
class Predicate:
    """Requires confirmation when `check(args)` returns True or a label."""

    check: Callable[[dict[str, Any]], Union[bool, str, None]]


Danger = Union[Safe, Always, Predicate]


def as_danger(value: Any) -> Danger:
    """Accept the loose shapes (None | bool | str | callable) tools declare."""
    if isinstance(value, (Safe, Always, Predicate)):
        return value
    if value is None or value is False:
        return Safe()
    if value is True:
        return Always()
    if isinstance(value, str):
        return Always(value)
    if callable(value):
        return Predicate(value)
    raise TypeError(f"Unsupported dangerous value: {value!r}")


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class Tool(ABC):
    """Anything the model can call. Local and remote tools look the same."""

    name: str
    description: str
    parameters: dict[str, Any]
    dangerous: Danger = Safe()

    @abstractmethod
    async def execute(self, args: dict[str, Any]) -> ToolExecutionResult: ...

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name, description=self.description, parameters=self.parameters
        )


class FunctionTool(Tool):
    """
    Wraps a plain or async function as a Tool.

    The function receives the argument dict and returns either a string
    (treated as successful output) or a ToolExecutionResult. Blocking
    functions run in a worker thread so batches stay concurrent.
    """

    def __init__(
        self,
        name: str,
        description: str,
        fn: Callable[[dict[str, Any]], Any],
        parameters: dict[str, Any] | None = None,
        dangerous: Any = None,
    ) -> None:
        self.name = name
        self.description = description
        self.parameters = parameters or {"type": "object", "properties": {}}
        self.dangerous = as_danger(dangerous)
        self._fn = fn

    async def execute(self, args: dict[str, Any]) -> ToolExecutionResult:
        if inspect.iscoroutinefunction(self._fn):
            value = await self._fn(args)
        else:
            value = await asyncio.to_thread(self._fn, args)

        if isinstance(value, ToolExecutionResult):
            return value
        return ToolExecutionResult(success=True, output="" if value is None else str(value))


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ToolRegistry:
    """
    Owns the callable tool set for one session.

    Pass a ConfirmationSession to gate dangerous calls. Without one the
    registry is in non-interactive mode and every call runs.
    """

    def __init__(self, confirmation: ConfirmationSession | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        self._confirmation = confirmation

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ToolRegistrationError(f'Tool "{tool.name}" is already registered')
        self._tools[tool.name] = tool

    def register_many(self, tools: list[Tool]) -> None:
        for tool in tools:
            self.register(tool)

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools)

    def clear(self) -> None:
        self._tools.clear()

    @property
    def confirmation(self) -> ConfirmationSession | None:
        return self._confirmation

    # ------------------------------------------------------------------
    # Provider formats
    # ------------------------------------------------------------------

    def definitions(self) -> list[ToolDefinition]:
        return [tool.definition() for tool in self._tools.values()]

    def to_openai_format(self) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in self._tools.values()
        ]

    def to_anthropic_format(self) -> list[dict[str, Any]]:
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.parameters,
            }
            for tool in self._tools.values()
        ]

    # ------------------------------------------------------------------
    # Danger evaluation
    # ------------------------------------------------------------------

    def get_danger_level(self, name: str, args: dict[str, Any]) -> str | None:
        """
        Confirmation label for this call, or None when it is safe.

        A predicate that raises marks the call dangerous, so it is still
        put to the user rather than crashing the batch.
        """
        tool = self._tools.get(name)
        if tool is None:
            return None

        danger = tool.dangerous
        if isinstance(danger, Always):
            return danger.label or f"Execute {name}"
        if isinstance(danger, Predicate):
            try:
                verdict = danger.check(args)
            except Exception as exc:
                logger.warning("Danger check for %s raised: %r", name, exc)
                return f"Execute {name}"
            if isinstance(verdict, str) and verdict:
                return verdict
            if verdict:
                return f"Execute {name}"
        return None

    def is_dangerous(self, name: str, args: dict[str, Any]) -> bool:
        return self.get_danger_level(name, args) is not None

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, name: str, args: dict[str, Any]) -> ToolExecutionResult:
        tool = self._tools.get(name)
        if tool is None:
            return ToolExecutionResult(success=False, error=f'Tool "{name}" not found')

        try:
            return await tool.execute(args)
        except Exception as exc:
            logger.debug("Tool %s raised: %s", name, exc, exc_info=True)
            return ToolExecutionResult(success=False, error=str(exc) or type(exc).__name__)

    async def execute_batch(self, calls: list[ToolCall]) -> list[ToolExecutionResult]:
        """
        Execute one model turn's tool calls.

        Dangerous calls are put to the confirmation session in a single
        request. Approved and safe calls run concurrently; the returned
        list lines up with `calls` regardless of completion order.
        """
        labels = [self.get_danger_level(c.name, c.arguments) for c in calls]
        dangerous_positions = [i for i, label in enumerate(labels) if label is not None]
        allowed = [True] * len(calls)

        if dangerous_positions and self._confirmation is not None:
            request = ConfirmationRequest(
                actions=[
                    ConfirmationAction(
                        tool=calls[i].name,
                        description=labels[i] or "Execute",
                        args=calls[i].arguments,
                    )
                    for i in dangerous_positions
                ]
            )
            try:
                decision = await self._confirmation.confirm(request)
            except Exception as exc:
                # A broken prompt must not let dangerous calls through.
                logger.warning("Confirmation failed, declining dangerous calls: %s", exc)
                decision = DenyAll()
            logger.debug("Confirmation for %d action(s): %s", len(request.actions), decision.kind)

            if isinstance(decision, DenyAll):
                for i in dangerous_positions:
                    allowed[i] = False
            elif isinstance(decision, Partial):
                for rank, i in enumerate(dangerous_positions):
                    allowed[i] = rank == decision.selected_index

        async def _resolve(index: int) -> ToolExecutionResult:
            if not allowed[index]:
                return ToolExecutionResult(success=False, error=DECLINED)
            call = calls[index]
            return await self.execute(call.name, call.arguments)

        return list(await asyncio.gather(*(_resolve(i) for i in range(len(calls)))))
