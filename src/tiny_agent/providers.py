# providers.py
# Model collaborator boundary.
#
# The harness only depends on the ModelClient protocol: fragments arrive in
# order, tool-call fragments carry an index, and exactly one terminal chunk
# (done=True) ends every stream. OpenAIClient speaks the chat completions API
# (OpenRouter by default) and passes tool-call deltas through untouched.

import json
import logging
import os
from collections.abc import AsyncIterator
from typing import Any, Protocol

from openai import AsyncOpenAI

from tiny_agent.models import (
    ChatRequest,
    ChatResponse,
    Message,
    StreamChunk,
    ToolCall,
    ToolCallDelta,
    ToolDefinition,
)
from tiny_agent.retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class ModelClient(Protocol):
    async def chat(self, request: ChatRequest) -> ChatResponse: ...

    def stream(self, request: ChatRequest) -> AsyncIterator[StreamChunk]: ...


# ---------------------------------------------------------------------------
# Wire conversion
# ---------------------------------------------------------------------------


def to_openai_messages(messages: list[Message]) -> list[dict[str, Any]]:
    converted: list[dict[str, Any]] = []
    for msg in messages:
        if msg.role == "tool":
            converted.append(
                {"role": "tool", "content": msg.content, "tool_call_id": msg.tool_call_id or ""}
            )
        elif msg.role == "assistant" and msg.tool_calls:
            converted.append(
                {
                    "role": "assistant",
                    "content": msg.content or None,
                    "tool_calls": [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
                        }
                        for tc in msg.tool_calls
                    ],
                }
            )
        else:
            converted.append({"role": msg.role, "content": msg.content})
    return converted


def to_openai_tools(tools: list[ToolDefinition]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters,
            },
        }
        for tool in tools
    ]


def _finish_reason(reason: str | None) -> str:
    return reason if reason in ("stop", "tool_calls", "length") else "stop"


# ---------------------------------------------------------------------------
# OpenAI-compatible client
# ---------------------------------------------------------------------------


class OpenAIClient:
    """
    Chat completions client for any OpenAI-compatible endpoint.

    Example:
        client = OpenAIClient(api_key=os.getenv("OPENROUTER_API_KEY"))
        async for chunk in client.stream(ChatRequest(model=..., messages=...)):
            ...
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = OPENROUTER_BASE_URL,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._client = AsyncOpenAI(
            base_url=base_url,
            api_key=api_key or os.getenv("OPENROUTER_API_KEY"),
        )
        self._retry = retry or RetryPolicy()

    def _params(self, request: ChatRequest) -> dict[str, Any]:
        params: dict[str, Any] = {
            "model": request.model,
            "messages": to_openai_messages(request.messages),
        }
        if request.tools:
            params["tools"] = to_openai_tools(request.tools)
        if request.temperature is not None:
            params["temperature"] = request.temperature
        if request.max_tokens is not None:
            params["max_tokens"] = request.max_tokens
        return params

    async def chat(self, request: ChatRequest) -> ChatResponse:
        params = self._params(request)
        response = await retry_async(
            lambda: self._client.chat.completions.create(**params), self._retry
        )
        choice = response.choices[0]
        message = choice.message

        tool_calls = None
        if message.tool_calls:
            tool_calls = [
                ToolCall(
                    id=tc.id,
                    name=tc.function.name,
                    arguments=json.loads(tc.function.arguments or "{}"),
                )
                for tc in message.tool_calls
                if tc.type == "function"
            ]

        return ChatResponse(
            content=message.content or "",
            tool_calls=tool_calls,
            finish_reason=_finish_reason(choice.finish_reason),
        )

    async def stream(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        params = self._params(request)
        # Only opening the stream is retried; a stream that fails midway is
        # surfaced to the caller.
        stream = await retry_async(
            lambda: self._client.chat.completions.create(stream=True, **params), self._retry
        )

        # The response is closed on every exit, including an early finish.
        async with stream:
            async for event in stream:
                if not event.choices:
                    continue
                choice = event.choices[0]
                delta = choice.delta

                deltas = None
                if delta is not None and delta.tool_calls:
                    deltas = [
                        ToolCallDelta(
                            index=tc.index,
                            id=tc.id,
                            name=tc.function.name if tc.function else None,
                            arguments=tc.function.arguments if tc.function else None,
                        )
                        for tc in delta.tool_calls
                    ]

                content = delta.content if delta is not None else None
                if content or deltas:
                    yield StreamChunk(content=content, tool_calls=deltas)

                if choice.finish_reason:
                    yield StreamChunk(done=True)
                    return

        yield StreamChunk(done=True)
