# config.py
# Runtime configuration. Values come from the environment (and a .env file
# when present), then command-line overrides are applied on top in run.py.

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from tiny_agent.harness import DEFAULT_MAX_ITERATIONS, DEFAULT_SYSTEM_PROMPT
from tiny_agent.providers import OPENROUTER_BASE_URL

ENV_PREFIX = "TINY_AGENT_"

DEFAULT_MODEL = "anthropic/claude-3.5-haiku"


class AgentConfig(BaseModel):
    model: str = DEFAULT_MODEL
    base_url: str = OPENROUTER_BASE_URL
    api_key: str | None = None
    max_iterations: int = Field(default=DEFAULT_MAX_ITERATIONS, ge=1)
    max_context_tokens: int | None = Field(default=None, gt=0)
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    conversation_file: str | None = None
    state_file: str | None = None
    log_level: str = "WARNING"
    allow_all: bool = Field(default=False, description="Skip confirmation of dangerous tools.")


def _env(name: str) -> str | None:
    value = os.getenv(ENV_PREFIX + name.upper())
    return value if value not in (None, "") else None


def load_config(**overrides) -> AgentConfig:
    """
    Build the config from TINY_AGENT_* variables plus explicit overrides.

    Overrides that are None are ignored so argparse defaults don't mask the
    environment. Raises pydantic.ValidationError on bad values.
    """
    load_dotenv()

    values: dict = {}
    for name in AgentConfig.model_fields:
        raw = _env(name)
        if raw is not None:
            values[name] = raw
    if "api_key" not in values and os.getenv("OPENROUTER_API_KEY"):
        values["api_key"] = os.getenv("OPENROUTER_API_KEY")

    values.update({k: v for k, v in overrides.items() if v is not None})
    return AgentConfig.model_validate(values)
