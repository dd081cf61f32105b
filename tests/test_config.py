from unittest.mock import patch

import pytest
from pydantic import ValidationError

from tiny_agent.config import DEFAULT_MODEL, load_config
from tiny_agent.harness import DEFAULT_MAX_ITERATIONS


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("OPENROUTER_API_KEY", "TINY_AGENT_MODEL", "TINY_AGENT_MAX_ITERATIONS", "TINY_AGENT_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    with patch("tiny_agent.config.load_dotenv"):
        yield


def test_defaults():
    config = load_config()
    assert config.model == DEFAULT_MODEL
    assert config.max_iterations == DEFAULT_MAX_ITERATIONS
    assert config.max_context_tokens is None
    assert config.allow_all is False

def test_environment_values_are_parsed(monkeypatch):
    monkeypatch.setenv("TINY_AGENT_MODEL", "openai/gpt-4o-mini")
    monkeypatch.setenv("TINY_AGENT_MAX_ITERATIONS", "7")
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-or")

    config = load_config()
    assert config.model == "openai/gpt-4o-mini"
    assert config.max_iterations == 7
    assert config.api_key == "sk-or"

def test_overrides_win_and_none_is_ignored(monkeypatch):
    monkeypatch.setenv("TINY_AGENT_MODEL", "from-env")
    assert load_config(model="from-cli").model == "from-cli"
    assert load_config(model=None).model == "from-env"

def test_invalid_values_raise():
    with pytest.raises(ValidationError):
        load_config(max_iterations=0)
