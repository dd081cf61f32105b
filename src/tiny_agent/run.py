# run.py
# Entry point. Config and wiring only, no agent logic lives here.
#
# Swap model strings for any OpenRouter-supported model.
# https://openrouter.ai/models

import argparse
import asyncio
import logging
import sys

from pydantic import ValidationError
from rich.logging import RichHandler

from tiny_agent import display
from tiny_agent.config import AgentConfig, load_config
from tiny_agent.confirmation import ConfirmationSession
from tiny_agent.conversation import ConversationStore
from tiny_agent.harness import Harness, MaxIterationsExceeded
from tiny_agent.models import ConfirmationRequest, ConfirmationResult, StateError
from tiny_agent.providers import OpenAIClient
from tiny_agent.state import StateStore, new_state, utc_now
from tiny_agent.tools import default_registry

AGENT_NAME = "tiny-agent"
AGENT_VERSION = "0.1.0"


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog=AGENT_NAME, description="Run one agent task.")
    parser.add_argument("prompt", help="Task for the agent.")
    parser.add_argument("--model", help="Model identifier.")
    parser.add_argument("--max-iterations", type=int)
    parser.add_argument("--max-context-tokens", type=int)
    parser.add_argument("--conversation-file", help="Continue and persist history here.")
    parser.add_argument("--state-file", help="Record task status in this state file.")
    parser.add_argument(
        "--allow-all", action="store_true", default=None, help="Skip confirmation prompts."
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    return parser.parse_args(argv)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=display.console, rich_tracebacks=True)],
    )


async def _confirm(request: ConfirmationRequest) -> ConfirmationResult:
    return await asyncio.to_thread(display.prompt_confirmation, request)


async def _run(config: AgentConfig, prompt: str) -> int:
    confirmation = None if config.allow_all else ConfirmationSession(_confirm)
    registry = default_registry(confirmation)
    harness = Harness(
        OpenAIClient(api_key=config.api_key, base_url=config.base_url),
        registry,
        max_iterations=config.max_iterations,
        system_prompt=config.system_prompt,
        max_context_tokens=config.max_context_tokens,
        conversation=ConversationStore(config.conversation_file),
    )

    store = StateStore()
    state = None
    if config.state_file:
        state = new_state(
            AGENT_NAME,
            AGENT_VERSION,
            "build",
            prompt,
            {"model": config.model, "maxIterations": config.max_iterations},
        )
        state.transition("in_progress")
        result = await store.write_async(config.state_file, state)
        if not result.success:
            display.state_write_failed(config.state_file, result.error or "")

    display.banner(config.model, registry.names(), interactive=confirmation is not None)
    display.prompt_received(prompt)

    failure: str | None = None
    try:
        async for chunk in harness.run_streaming(prompt, config.model):
            if chunk.content:
                display.stream_content(chunk.content)
            if chunk.tool_results and all(t.status == "running" for t in chunk.tool_results):
                display.tools_running(chunk.tool_results)
            elif chunk.tool_results:
                display.tool_results(chunk.tool_results)
            if chunk.error:
                failure = chunk.error
                display.model_error(chunk.error)
            elif chunk.done:
                display.run_finished(chunk.iteration)
    except MaxIterationsExceeded as exc:
        failure = str(exc)
        display.max_iterations_reached(exc.iterations)

    if state is not None and config.state_file:
        if failure:
            state.errors.append(StateError(timestamp=utc_now(), phase=state.phase, message=failure))
            state.transition("failed")
        else:
            state.transition("completed")
        result = await store.write_async(config.state_file, state)
        if not result.success:
            display.state_write_failed(config.state_file, result.error or "")

    return 1 if failure else 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    try:
        config = load_config(
            model=args.model,
            max_iterations=args.max_iterations,
            max_context_tokens=args.max_context_tokens,
            conversation_file=args.conversation_file,
            state_file=args.state_file,
            allow_all=args.allow_all,
            log_level="DEBUG" if args.verbose else None,
        )
    except ValidationError as exc:
        display.halt(f"Invalid configuration:\n{exc}")
        return 2

    _configure_logging(config.log_level)
    try:
        return asyncio.run(_run(config, args.prompt))
    except KeyboardInterrupt:
        display.halt("Interrupted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
