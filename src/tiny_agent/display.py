# display.py
# All terminal output for the agent CLI.
#
# This module owns presentation entirely. harness.py never formats strings —
# run.py calls named functions here. Swap this file to change the entire UI.
#
# Colour language:
#   cyan    — session / routing events
#   blue    — streamed model output
#   yellow  — confirmation prompts
#   green   — success / confirmed
#   red     — failures, halts, declined actions
#   magenta — tool calls and their results

import json

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from tiny_agent.models import (
    ApproveAll,
    ConfirmationRequest,
    ConfirmationResult,
    DenyAll,
    Partial,
    ToolExecution,
)

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


# ---------------------------------------------------------------------------
# Session entry
# ---------------------------------------------------------------------------


def banner(model: str, tools: list[str], interactive: bool) -> None:
    mode = "confirm dangerous tools" if interactive else "non-interactive (all tools allowed)"
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]tiny-agent[/bold cyan]\n"
            "[dim]Iterative tool-calling coding assistant[/dim]\n\n"
            f"[dim]Model :[/dim] [white]{model}[/white]\n"
            f"[dim]Tools :[/dim] [white]{', '.join(tools) or '(none)'}[/white]\n"
            f"[dim]Mode  :[/dim] [white]{mode}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def prompt_received(prompt: str) -> None:
    console.print()
    console.print(Rule("[cyan]NEW TASK[/cyan]", style="cyan"))
    console.print(
        Panel(
            f"[white]{prompt}[/white]",
            title=_label("USER PROMPT", "cyan"),
            border_style="cyan",
            padding=(0, 2),
        )
    )
    console.print()


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


def stream_content(fragment: str) -> None:
    console.print(fragment, end="", style="blue", markup=False, highlight=False, soft_wrap=True)


def tools_running(executions: list[ToolExecution]) -> None:
    console.print()
    for execution in executions:
        console.print(
            f"  [magenta]↳ {execution.name}[/magenta]"
            f"  [dim]{_mono(json.dumps(execution.args), 100)}[/dim]"
        )


def tool_results(executions: list[ToolExecution]) -> None:
    for execution in executions:
        if execution.status == "complete":
            console.print(f"  [bold green]✓ {execution.name}[/bold green]")
            if execution.output:
                console.print(Text(execution.output, style="dim white"))
        else:
            console.print(f"  [bold red]✗ {execution.name}[/bold red]")
            if execution.error:
                console.print(Text(execution.error, style="red"))
    console.print()


# ---------------------------------------------------------------------------
# Confirmation
# ---------------------------------------------------------------------------


def prompt_confirmation(request: ConfirmationRequest) -> ConfirmationResult:
    """
    Ask the user about every dangerous call in a batch.

    y — approve all, n — deny all, a — approve for the rest of the session,
    d — deny for the rest of the session, 1..N — approve only that action.
    """
    table = Table(box=box.SIMPLE_HEAVY, header_style="bold yellow", padding=(0, 1))
    table.add_column("#", justify="center", width=4)
    table.add_column("Tool", style="bold white", width=14)
    table.add_column("Action", style="white")
    table.add_column("Args", style="dim white", width=40)
    for i, action in enumerate(request.actions, start=1):
        table.add_row(str(i), action.tool, action.description, _mono(json.dumps(action.args), 38))

    console.print()
    console.print(
        Panel(
            table,
            title=_label("CONFIRM DANGEROUS ACTIONS", "yellow"),
            border_style="yellow",
            padding=(0, 1),
        )
    )

    choices = ["y", "n", "a", "d"]
    if len(request.actions) > 1:
        choices += [str(i) for i in range(1, len(request.actions) + 1)]
    answer = Prompt.ask("[yellow]Proceed?[/yellow]", choices=choices, default="n")

    if answer == "y":
        return ApproveAll()
    if answer == "a":
        return ApproveAll(remember=True)
    if answer == "d":
        return DenyAll(remember=True)
    if answer.isdigit():
        return Partial(selected_index=int(answer) - 1)
    return DenyAll()


# ---------------------------------------------------------------------------
# Terminal states
# ---------------------------------------------------------------------------


def run_finished(iterations: int) -> None:
    console.print()
    console.print(
        Rule(f"[green]DONE — {iterations} iteration(s)[/green]", style="green")
    )
    console.print()


def max_iterations_reached(iterations: int) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold red]Stopped after {iterations} iteration(s) without a final answer.[/bold red]\n"
            "[dim]Raise --max-iterations or narrow the task.[/dim]",
            title=_label("MAX ITERATIONS ✗", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


def model_error(message: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[white]{message}[/white]",
            title=_label("MODEL ERROR ✗", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


def state_write_failed(path: str, error: str) -> None:
    console.print(f"[dim red]  State not saved to {path}: {error}[/dim red]")


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{reason}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()
