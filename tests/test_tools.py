import os
from unittest.mock import MagicMock, patch

import pytest

from tiny_agent.tools import (
    _tool_http_post,
    _tool_read_file,
    _tool_run_command,
    _tool_search,
    _tool_write_file,
    builtin_tools,
    default_registry,
    is_destructive_command,
)

# ---------------------------------------------------------------------------
# Search (ddgs)
# ---------------------------------------------------------------------------

@patch("ddgs.DDGS")
def test_tool_search_success(mock_ddgs_cls):
    mock_instance = mock_ddgs_cls.return_value
    mock_instance.text.return_value = [
        {"title": "Result 1", "body": "Body 1", "href": "http://1.com"}
    ]

    result = _tool_search({"query": "test"})
    assert result.success
    assert "Result 1" in result.output
    assert "Body 1" in result.output
    assert "http://1.com" in result.output

@patch("ddgs.DDGS")
def test_tool_search_empty_query(mock_ddgs_cls):
    result = _tool_search({"query": "   "})
    assert "Error: no query provided" in result.error
    mock_ddgs_cls.assert_not_called()

@patch("ddgs.DDGS")
def test_tool_search_no_results(mock_ddgs_cls):
    mock_ddgs_cls.return_value.text.return_value = []
    result = _tool_search({"query": "ghost"})
    assert result.output == "No results found."

@patch("ddgs.DDGS")
def test_tool_search_exception(mock_ddgs_cls):
    mock_ddgs_cls.return_value.text.side_effect = Exception("Network timeout")
    result = _tool_search({"query": "crash"})
    assert not result.success
    assert "Search failed: Network timeout" in result.error


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

def test_write_then_read_file(tmp_path):
    path = str(tmp_path / "notes" / "a.txt")
    written = _tool_write_file({"path": path, "content": "hello"})
    assert written.success
    assert os.path.exists(path)

    read = _tool_read_file({"path": path})
    assert read.output == "hello"

def test_read_missing_file(tmp_path):
    result = _tool_read_file({"path": str(tmp_path / "missing.txt")})
    assert not result.success
    assert result.error.startswith("File not found")

def test_write_file_rejects_non_string_content(tmp_path):
    result = _tool_write_file({"path": str(tmp_path / "a.txt"), "content": {"x": 1}})
    assert not result.success
    assert not (tmp_path / "a.txt").exists()


# ---------------------------------------------------------------------------
# Shell
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "command",
    ["rm -rf build", "git reset --hard HEAD", "echo hi > out.txt", "mv a b", "git push origin --force"],
)
def test_destructive_commands_detected(command):
    assert is_destructive_command(command)

@pytest.mark.parametrize("command", ["ls -la", "git status", "python -m pytest", "grep -r foo ."])
def test_safe_commands_pass(command):
    assert not is_destructive_command(command)

def test_run_command_captures_output(tmp_path):
    result = _tool_run_command({"command": "echo hello", "cwd": str(tmp_path)})
    assert result.success
    assert result.output == "hello"

def test_run_command_reports_exit_code():
    result = _tool_run_command({"command": "exit 3"})
    assert not result.success
    assert result.error.startswith("Exit code 3")


# ---------------------------------------------------------------------------
# HTTP (httpx)
# ---------------------------------------------------------------------------

@patch("httpx.post")
def test_http_post_success(mock_post):
    mock_post.return_value = MagicMock(is_success=True, status_code=201, content=b"{}")
    result = _tool_http_post({"url": "https://example.com/hook", "payload": {"a": 1}})

    assert result.success
    assert "201" in result.output
    mock_post.assert_called_once_with("https://example.com/hook", json={"a": 1}, timeout=10)

@patch("httpx.post")
def test_http_post_failure_status(mock_post):
    mock_post.return_value = MagicMock(is_success=False, status_code=500, content=b"")
    result = _tool_http_post({"url": "https://example.com/hook"})
    assert not result.success
    assert "500" in result.error


# ---------------------------------------------------------------------------
# Registry wiring
# ---------------------------------------------------------------------------

def test_default_registry_danger_levels():
    registry = default_registry()
    assert registry.names() == [t.name for t in builtin_tools()]

    assert registry.get_danger_level("read_file", {"path": "a"}) is None
    assert registry.get_danger_level("write_file", {"path": "a"}) == "Will create or overwrite file"
    assert registry.get_danger_level("run_command", {"command": "ls"}) is None
    assert registry.get_danger_level("run_command", {"command": "rm x"}) == "Destructive command: rm x"
    assert registry.get_danger_level("http_post", {"url": "u"}) == "Execute http_post"
    assert registry.get_danger_level("search", {"query": "q"}) is None
