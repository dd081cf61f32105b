from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from tiny_agent.models import ChatRequest, Message, ToolCall, ToolDefinition
from tiny_agent.providers import OpenAIClient, to_openai_messages, to_openai_tools
from tiny_agent.retry import RetryPolicy


def _event(content=None, tool_calls=None, finish_reason=None):
    delta = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)])


def _tool_delta(index, id=None, name=None, arguments=None):
    return SimpleNamespace(
        index=index, id=id, function=SimpleNamespace(name=name, arguments=arguments)
    )


class FakeStream:
    def __init__(self, events):
        self._events = list(events)
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.closed = True

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._events:
            raise StopAsyncIteration
        return self._events.pop(0)


def _client(create) -> OpenAIClient:
    client = OpenAIClient(api_key="test-key", retry=RetryPolicy(max_retries=0))
    client._client = MagicMock()
    client._client.chat.completions.create = create
    return client


REQUEST = ChatRequest(
    model="test-model",
    messages=[Message(role="user", content="hi")],
    tools=[ToolDefinition(name="echo", description="Echo.", parameters={"type": "object"})],
)

# ---------------------------------------------------------------------------
# Wire conversion
# ---------------------------------------------------------------------------

def test_to_openai_messages():
    converted = to_openai_messages(
        [
            Message(role="system", content="sys"),
            Message(
                role="assistant",
                content="",
                tool_calls=[ToolCall(id="c1", name="echo", arguments={"text": "x"})],
            ),
            Message(role="tool", content="x", tool_call_id="c1"),
        ]
    )
    assert converted[0] == {"role": "system", "content": "sys"}
    assert converted[1]["content"] is None
    assert converted[1]["tool_calls"][0]["function"] == {
        "name": "echo",
        "arguments": '{"text": "x"}',
    }
    assert converted[2] == {"role": "tool", "content": "x", "tool_call_id": "c1"}

def test_to_openai_tools():
    tools = to_openai_tools(REQUEST.tools)
    assert tools == [
        {
            "type": "function",
            "function": {"name": "echo", "description": "Echo.", "parameters": {"type": "object"}},
        }
    ]


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_stream_passes_fragments_through_and_ends_once():
    events = [
        _event(content="Hel"),
        _event(content="lo"),
        _event(tool_calls=[_tool_delta(0, id="c1", name="echo", arguments='{"te')]),
        _event(tool_calls=[_tool_delta(0, arguments='xt": "x"}')]),
        _event(finish_reason="tool_calls"),
    ]
    stream = FakeStream(events + [_event(content="after finish")])
    create = AsyncMock(return_value=stream)
    chunks = [c async for c in _client(create).stream(REQUEST)]

    assert [c.content for c in chunks[:2]] == ["Hel", "lo"]
    assert chunks[2].tool_calls[0].id == "c1"
    assert chunks[3].tool_calls[0].arguments == 'xt": "x"}'
    assert [c.done for c in chunks] == [False, False, False, False, True]
    assert stream.closed

    kwargs = create.await_args.kwargs
    assert kwargs["stream"] is True
    assert kwargs["model"] == "test-model"
    assert kwargs["tools"][0]["function"]["name"] == "echo"

@pytest.mark.asyncio
async def test_stream_without_finish_reason_still_terminates():
    stream = FakeStream([_event(content="x")])
    chunks = [c async for c in _client(AsyncMock(return_value=stream)).stream(REQUEST)]
    assert [c.done for c in chunks] == [False, True]
    assert stream.closed

@pytest.mark.asyncio
async def test_stream_open_is_retried():
    create = AsyncMock(side_effect=[ConnectionError("reset"), FakeStream([_event(content="ok")])])
    client = _client(create)
    client._retry = RetryPolicy(max_retries=1, initial_delay=0.0, jitter=False)

    chunks = [c async for c in client.stream(REQUEST)]
    assert chunks[0].content == "ok"
    assert create.await_count == 2


# ---------------------------------------------------------------------------
# Non-streaming
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_chat_parses_tool_calls():
    message = SimpleNamespace(
        content=None,
        tool_calls=[
            SimpleNamespace(
                id="c1",
                type="function",
                function=SimpleNamespace(name="echo", arguments='{"text": "x"}'),
            )
        ],
    )
    response = SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason="tool_calls")]
    )
    result = await _client(AsyncMock(return_value=response)).chat(REQUEST)

    assert result.content == ""
    assert result.finish_reason == "tool_calls"
    assert result.tool_calls == [ToolCall(id="c1", name="echo", arguments={"text": "x"})]
