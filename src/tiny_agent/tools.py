# tools.py
# Built-in tools. The harness never calls these directly — it goes through
# the ToolRegistry built by default_registry().

import os
import re
import shlex
import subprocess
from typing import Any

from tiny_agent.confirmation import ConfirmationSession
from tiny_agent.models import ToolExecutionResult
from tiny_agent.registry import Always, FunctionTool, Predicate, ToolRegistry

MAX_READ_CHARS = 100_000
COMMAND_TIMEOUT = 120

_DESTRUCTIVE_PATTERNS = [
    r"\brm\b",
    r"\brmdir\b",
    r"\bmv\b",
    r"\bdd\b",
    r"\bmkfs(\.\w+)?\b",
    r"\bchmod\b",
    r"\bchown\b",
    r"\bshred\b",
    r"\btruncate\b",
    r"\bgit\s+push\b.*--force",
    r"\bgit\s+reset\s+--hard\b",
    r"\bgit\s+clean\b",
    r">\s*[^&|]",
]


def _failure(message: str) -> ToolExecutionResult:
    return ToolExecutionResult(success=False, error=message)


# ---------------------------------------------------------------------------
# File tools
# ---------------------------------------------------------------------------


def _tool_read_file(args: dict) -> ToolExecutionResult:
    path = str(args.get("path", "")).strip()
    if not path:
        return _failure("Error: no path provided.")
    if not os.path.isfile(path):
        return _failure(f"File not found: {path}")

    with open(path, encoding="utf-8", errors="replace") as fh:
        content = fh.read(MAX_READ_CHARS + 1)
    if len(content) > MAX_READ_CHARS:
        content = content[:MAX_READ_CHARS] + "\n... (truncated)"
    return ToolExecutionResult(success=True, output=content)


def _tool_write_file(args: dict) -> ToolExecutionResult:
    path = str(args.get("path", "")).strip()
    content = args.get("content", "")
    if not path:
        return _failure("Error: no path provided.")
    if not isinstance(content, str):
        return _failure("Error: content must be a string.")

    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(content)
    return ToolExecutionResult(success=True, output=f"Wrote {len(content)} bytes to {path}.")


# ---------------------------------------------------------------------------
# Shell
# ---------------------------------------------------------------------------


def is_destructive_command(command: str) -> bool:
    return any(re.search(pattern, command) for pattern in _DESTRUCTIVE_PATTERNS)


def _command_danger(args: dict[str, Any]) -> str | None:
    command = str(args.get("command", ""))
    if is_destructive_command(command):
        return f"Destructive command: {command}"
    return None


def _tool_run_command(args: dict) -> ToolExecutionResult:
    command = str(args.get("command", "")).strip()
    if not command:
        return _failure("Error: no command provided.")
    cwd = args.get("cwd") or None

    try:
        completed = subprocess.run(
            command,
            shell=True,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=COMMAND_TIMEOUT,
        )
    except subprocess.TimeoutExpired:
        return _failure(f"Command timed out after {COMMAND_TIMEOUT}s: {shlex.quote(command)}")

    output = (completed.stdout + completed.stderr).strip()
    if completed.returncode != 0:
        return _failure(f"Exit code {completed.returncode}\n{output}".strip())
    return ToolExecutionResult(success=True, output=output)


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------


def _tool_search(args: dict) -> ToolExecutionResult:
    from ddgs import DDGS

    query = str(args.get("query", "")).strip()
    if not query:
        return _failure("Error: no query provided.")

    try:
        # Coerce the generator to a list to ensure actual execution
        results = list(DDGS().text(query, max_results=4))
    except Exception as e:
        return _failure(f"Search failed: {e}")

    if not results:
        return ToolExecutionResult(success=True, output="No results found.")

    lines = []
    for r in results:
        lines.append(f"[{r.get('title', 'No Title')}]\n{r.get('body', '')}\nSource: {r.get('href', '')}")
    return ToolExecutionResult(success=True, output="\n\n".join(lines))


def _tool_http_post(args: dict) -> ToolExecutionResult:
    import httpx

    url = str(args.get("url", "")).strip()
    payload = args.get("payload", {})
    if not url:
        return _failure("Error: no URL provided.")
    response = httpx.post(url, json=payload, timeout=10)
    return ToolExecutionResult(
        success=response.is_success,
        output=f"POST {url} → {response.status_code} ({len(response.content)} bytes)",
        error=None if response.is_success else f"POST {url} failed with {response.status_code}",
    )


# ---------------------------------------------------------------------------
# Registry wiring
# ---------------------------------------------------------------------------


def _schema(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


def builtin_tools() -> list[FunctionTool]:
    return [
        FunctionTool(
            "read_file",
            "Read a UTF-8 text file and return its contents.",
            _tool_read_file,
            _schema({"path": {"type": "string", "description": "File to read."}}, ["path"]),
        ),
        FunctionTool(
            "write_file",
            "Create or overwrite a text file with the given content.",
            _tool_write_file,
            _schema(
                {
                    "path": {"type": "string", "description": "File to write."},
                    "content": {"type": "string", "description": "Full new file content."},
                },
                ["path", "content"],
            ),
            dangerous=Always("Will create or overwrite file"),
        ),
        FunctionTool(
            "run_command",
            "Run a shell command and return its combined output.",
            _tool_run_command,
            _schema(
                {
                    "command": {"type": "string", "description": "Shell command line."},
                    "cwd": {"type": "string", "description": "Working directory."},
                },
                ["command"],
            ),
            dangerous=Predicate(_command_danger),
        ),
        FunctionTool(
            "search",
            "Search the web and return the top results.",
            _tool_search,
            _schema({"query": {"type": "string", "description": "Search query."}}, ["query"]),
        ),
        FunctionTool(
            "http_post",
            "POST a JSON payload to a URL.",
            _tool_http_post,
            _schema(
                {
                    "url": {"type": "string"},
                    "payload": {"type": "object"},
                },
                ["url"],
            ),
            dangerous=True,
        ),
    ]


def default_registry(confirmation: ConfirmationSession | None = None) -> ToolRegistry:
    registry = ToolRegistry(confirmation=confirmation)
    registry.register_many(builtin_tools())
    return registry
