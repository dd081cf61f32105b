# harness.py
# Iterative tool-calling execution loop.
#
# The Harness is the kernel. The model is a passive responder — this class
# owns all control flow, history, context budgeting and tool dispatch.
#
# Control flow, per iteration:
#   system prompt + (truncated) history → streamed completion
#   → content fragments yielded as they arrive, tool-call fragments accumulated
#   → one assistant message appended
#   → no tool calls: flush conversation, Done
#   → tool calls: registry.execute_batch → one tool message per result → repeat
#
# Running out of iterations is a failure (MaxIterationsExceeded), never a
# silent truncation. All terminal output belongs to display.py.

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from tiny_agent import tokens
from tiny_agent.conversation import ConversationStore
from tiny_agent.models import (
    AgentChunk,
    AgentResponse,
    ChatRequest,
    Message,
    StreamChunk,
    ToolCall,
    ToolCallDelta,
    ToolDefinition,
    ToolExecution,
    ToolExecutionResult,
)
from tiny_agent.providers import ModelClient
from tiny_agent.registry import DECLINED, ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 20

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant with access to tools. Use available tools to "
    "help the user. When you have enough information to answer, provide your "
    "final response."
)

LOOP_THRESHOLD = 3
MAX_DISPLAY_LINES = 10
MAX_DISPLAY_CHARS = 500


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class MaxIterationsExceeded(Exception):
    """Raised when the model keeps requesting tools past the iteration limit."""

    def __init__(self, iterations: int) -> None:
        super().__init__(f"Agent reached max iterations ({iterations}) without a final answer")
        self.iterations = iterations


class ModelStreamError(Exception):
    """Raised when the model collaborator fails while streaming."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_END_OF_STREAM = object()


class ToolCallAccumulator:
    """
    Reassembles streamed tool calls from indexed fragments.

    `name` and `arguments` pieces for the same index are concatenated in
    arrival order; `id` is taken from whichever fragment carries it.
    """

    def __init__(self) -> None:
        self._parts: dict[int, dict[str, str]] = {}

    def __len__(self) -> int:
        return len(self._parts)

    def add(self, delta: ToolCallDelta) -> None:
        part = self._parts.setdefault(delta.index, {"id": "", "name": "", "arguments": ""})
        if delta.id:
            part["id"] = delta.id
        if delta.name:
            part["name"] += delta.name
        if delta.arguments:
            part["arguments"] += delta.arguments

    def build(self) -> list[ToolCall]:
        calls: list[ToolCall] = []
        for index in sorted(self._parts):
            part = self._parts[index]
            calls.append(
                ToolCall(
                    id=part["id"] or f"call_{index}",
                    name=part["name"],
                    arguments=_parse_arguments(part["name"], part["arguments"]),
                )
            )
        return calls


def _parse_arguments(name: str, raw: str) -> dict[str, Any]:
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Malformed arguments for tool %s: %s", name, exc)
        return {"_raw": raw}
    if not isinstance(parsed, dict):
        return {"_raw": raw}
    return parsed


def _truncate_output(text: str | None) -> str | None:
    """Shorten tool output for display. History always keeps the full text."""
    if not text:
        return text
    lines = text.split("\n")
    if len(lines) > MAX_DISPLAY_LINES:
        hidden = len(lines) - MAX_DISPLAY_LINES
        return "\n".join(lines[:MAX_DISPLAY_LINES]) + f"\n... ({hidden} more lines)"
    if len(text) > MAX_DISPLAY_CHARS:
        hidden = len(text) - MAX_DISPLAY_CHARS
        return text[:MAX_DISPLAY_CHARS] + f"\n... ({hidden} more chars)"
    return text


def _signature(call: ToolCall) -> str:
    return f"{call.name}:{json.dumps(call.arguments, sort_keys=True)}"


# ---------------------------------------------------------------------------
# Harness
# ---------------------------------------------------------------------------


class Harness:
    """
    Drives one model/tool conversation to a final answer.

    Example:
        harness = Harness(OpenAIClient(), default_registry(), max_iterations=10)
        async for chunk in harness.run_streaming("List the repo files", model):
            display.stream_content(chunk.content)
    """

    def __init__(
        self,
        client: ModelClient,
        registry: ToolRegistry,
        *,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        max_context_tokens: int | None = None,
        conversation: ConversationStore | None = None,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self._client = client
        self._registry = registry
        self.max_iterations = max_iterations
        self.system_prompt = system_prompt
        self.max_context_tokens = max_context_tokens
        self._conversation = conversation or ConversationStore()
        self._allowed_tools: set[str] | None = None

    @property
    def conversation(self) -> ConversationStore:
        return self._conversation

    def start_session(self) -> None:
        self._conversation.start_session()

    def restrict_tools(self, names: list[str] | None) -> None:
        """Offer only `names` to the model. None or [] lifts the restriction."""
        self._allowed_tools = set(names) if names else None

    # ------------------------------------------------------------------
    # Request assembly
    # ------------------------------------------------------------------

    def _tool_definitions(self) -> list[ToolDefinition]:
        definitions = self._registry.definitions()
        if self._allowed_tools is None:
            return definitions
        return [d for d in definitions if d.name in self._allowed_tools]

    def _outbound(self, history: list[Message]) -> tuple[list[Message], bool]:
        """System message + history, trimmed to the context budget."""
        budget = tokens.context_budget(self.max_context_tokens, self.system_prompt)
        messages = history
        truncated = False
        if budget is not None:
            messages = tokens.truncate_messages(history, budget)
            truncated = len(messages) < len(history) or any(
                kept.content != original.content
                for kept, original in zip(messages, history[len(history) - len(messages):])
            )
            if truncated:
                logger.debug("Truncated history to %d of %d messages", len(messages), len(history))
        system = Message(role="system", content=self.system_prompt)
        return [system, *messages], truncated

    # ------------------------------------------------------------------
    # Streaming channel
    # ------------------------------------------------------------------

    async def _pump(self, request: ChatRequest, queue: asyncio.Queue) -> None:
        """Producer: push model fragments into the channel, then the sentinel."""
        stream = self._client.stream(request)
        try:
            async for chunk in stream:
                queue.put_nowait(chunk)
                if chunk.done:
                    break
        except Exception as exc:
            queue.put_nowait(exc)
        finally:
            queue.put_nowait(_END_OF_STREAM)
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _stream(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        """Consumer: yield fragments until the terminal chunk or the sentinel."""
        queue: asyncio.Queue = asyncio.Queue()
        producer = asyncio.create_task(self._pump(request, queue))
        try:
            while True:
                item = await queue.get()
                if item is _END_OF_STREAM:
                    return
                if isinstance(item, Exception):
                    raise ModelStreamError(str(item) or type(item).__name__) from item
                yield item
                if item.done:
                    return
        finally:
            if not producer.done():
                producer.cancel()
            await asyncio.gather(producer, return_exceptions=True)

    # ------------------------------------------------------------------
    # Tool-result steering
    # ------------------------------------------------------------------

    def _steering_note(
        self,
        calls: list[ToolCall],
        results: list[ToolExecutionResult],
        recent: list[str],
    ) -> str | None:
        """System note that ends tool use for this run, or None to keep going."""
        missing = [c.name for c in calls if not self._registry.has(c.name)]
        if missing:
            logger.warning("Tool(s) not found: %s", ", ".join(missing))
            return (
                f"ERROR: The following tool(s) are not available: {', '.join(missing)}. "
                "Please stop and provide your final answer based on the information you "
                "have gathered, or ask the user for alternative approaches."
            )

        declined = [c.name for c, r in zip(calls, results) if r.error == DECLINED]
        if declined and len(declined) == len(calls):
            logger.info("All tool calls declined: %s", ", ".join(declined))
            return (
                f"All tool calls ({', '.join(declined)}) were declined by the user. "
                "Provide your final answer now without making any more tool calls."
            )
        if declined:
            return None

        if len(recent) >= LOOP_THRESHOLD and len(set(recent[-LOOP_THRESHOLD:])) == 1:
            name = calls[0].name
            logger.warning("Detected tool call loop for %s", name)
            return (
                f"STOP: You have called {name} repeatedly with the same arguments. "
                "Please stop and use the results you already have, or try a different "
                "approach. Provide your final answer now based on the information you "
                "have gathered."
            )
        return None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self, history: list[Message]) -> None:
        try:
            self._conversation.save(history)
        except Exception as exc:
            logger.warning("Failed to persist conversation: %s", exc)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run_streaming(self, task: str, model: str) -> AsyncIterator[AgentChunk]:
        """
        Run the loop, yielding content fragments and tool progress.

        The final chunk has done=True. A model failure ends the run with a
        done chunk carrying `error`. Raises MaxIterationsExceeded when the
        iteration budget runs out. Abandoning the iterator discards any
        partial tool-call state and unflushed history.
        """
        if self._conversation.path:
            history = self._conversation.load()
        else:
            history = self._conversation.history
        history.append(Message(role="user", content=task))

        tools_enabled = True
        recent: list[str] = []

        for iteration in range(1, self.max_iterations + 1):
            outbound, truncated = self._outbound(history)
            stats = tokens.context_stats(
                self.system_prompt, outbound[1:], self.max_context_tokens, truncated
            )
            definitions = self._tool_definitions() if tools_enabled else []
            request = ChatRequest(model=model, messages=outbound, tools=definitions or None)
            logger.debug(
                "Iteration %d: %d message(s), %d tool(s)", iteration, len(outbound), len(definitions)
            )

            content: list[str] = []
            accumulator = ToolCallAccumulator()
            try:
                async for fragment in self._stream(request):
                    if fragment.content:
                        content.append(fragment.content)
                        yield AgentChunk(
                            content=fragment.content, iteration=iteration, context_stats=stats
                        )
                    for delta in fragment.tool_calls or []:
                        accumulator.add(delta)
            except ModelStreamError as exc:
                logger.error("Model stream failed on iteration %d: %s", iteration, exc)
                yield AgentChunk(iteration=iteration, done=True, error=str(exc), context_stats=stats)
                return

            calls = accumulator.build()
            history.append(
                Message(role="assistant", content="".join(content), tool_calls=calls or None)
            )

            if not calls:
                logger.debug("Finished after %d iteration(s)", iteration)
                self._persist(history)
                yield AgentChunk(iteration=iteration, done=True, context_stats=stats)
                return

            yield AgentChunk(
                iteration=iteration,
                tool_calls=[c.name for c in calls],
                tool_results=[
                    ToolExecution(name=c.name, status="running", args=c.arguments) for c in calls
                ],
                context_stats=stats,
            )

            results = await self._registry.execute_batch(calls)

            yield AgentChunk(
                iteration=iteration,
                tool_results=[
                    ToolExecution(
                        name=c.name,
                        status="complete" if r.success else "error",
                        args=c.arguments,
                        output=_truncate_output(r.output) if r.success else None,
                        error=_truncate_output(r.error),
                    )
                    for c, r in zip(calls, results)
                ],
                context_stats=stats,
            )

            for call, result in zip(calls, results):
                recent.append(_signature(call))
                history.append(
                    Message(
                        role="tool",
                        content=result.error or result.output or "(no output)",
                        tool_call_id=call.id,
                    )
                )

            note = self._steering_note(calls, results, recent)
            if note is not None:
                history.append(Message(role="system", content=note))
                tools_enabled = False

        self._persist(history)
        raise MaxIterationsExceeded(self.max_iterations)

    async def run(self, task: str, model: str) -> AgentResponse:
        """Run to completion and return the concatenated streamed content."""
        parts: list[str] = []
        iterations = 0
        error: str | None = None

        async for chunk in self.run_streaming(task, model):
            parts.append(chunk.content)
            iterations = chunk.iteration
            if chunk.error:
                error = chunk.error

        return AgentResponse(
            content="".join(parts),
            iterations=iterations,
            messages=self._conversation.history,
            error=error,
        )
