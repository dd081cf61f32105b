import json

from tiny_agent.conversation import ConversationStore
from tiny_agent.models import Message, ToolCall


def _history():
    return [
        Message(role="user", content="list files"),
        Message(
            role="assistant",
            content="",
            tool_calls=[ToolCall(id="c1", name="run_command", arguments={"command": "ls"})],
        ),
        Message(role="tool", content="a.txt", tool_call_id="c1"),
        Message(role="assistant", content="One file: a.txt"),
    ]


def test_in_memory_store_round_trips():
    store = ConversationStore()
    assert store.save(_history()) is True
    assert store.load() == _history()

def test_history_is_a_copy():
    store = ConversationStore()
    store.save(_history())
    store.history.append(Message(role="user", content="sneaky"))
    assert len(store.history) == 4

def test_file_store_round_trips(tmp_path):
    path = tmp_path / "conversation.json"
    assert ConversationStore(str(path)).save(_history())

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert "timestamp" in raw
    assert raw["messages"][2] == {"role": "tool", "content": "a.txt", "tool_call_id": "c1"}

    assert ConversationStore(str(path)).load() == _history()

def test_load_missing_file_is_empty(tmp_path):
    assert ConversationStore(str(tmp_path / "nope.json")).load() == []

def test_load_malformed_file_is_empty(tmp_path):
    path = tmp_path / "conversation.json"
    path.write_text("{oops", encoding="utf-8")
    assert ConversationStore(str(path)).load() == []

    path.write_text(json.dumps({"messages": "not a list"}), encoding="utf-8")
    assert ConversationStore(str(path)).load() == []

    path.write_text(json.dumps({"messages": [{"role": "robot"}]}), encoding="utf-8")
    assert ConversationStore(str(path)).load() == []

def test_save_failure_returns_false(tmp_path):
    store = ConversationStore(str(tmp_path))
    assert store.save(_history()) is False
    assert store.history == _history()

def test_start_session_clears_history():
    store = ConversationStore()
    store.save(_history())
    store.start_session()
    assert store.history == []
