from unittest.mock import patch

import pytest

from tiny_agent import run
from tiny_agent.config import AgentConfig
from tiny_agent.harness import MaxIterationsExceeded
from tiny_agent.models import AgentChunk
from tiny_agent.state import read_state_file


class FakeHarness:
    """Stands in for Harness; replays chunks and optionally raises at the end."""

    chunks: list[AgentChunk] = []
    raise_at_end: Exception | None = None

    def __init__(self, *args, **kwargs):
        pass

    async def run_streaming(self, task, model):
        for chunk in self.chunks:
            yield chunk
        if self.raise_at_end is not None:
            raise self.raise_at_end


@pytest.fixture
def fake_harness():
    with patch.object(run, "Harness", FakeHarness), patch.object(run, "OpenAIClient"):
        FakeHarness.chunks = []
        FakeHarness.raise_at_end = None
        yield FakeHarness


@pytest.mark.asyncio
async def test_successful_run_records_completed_state(tmp_path, fake_harness):
    fake_harness.chunks = [AgentChunk(content="hi", iteration=1), AgentChunk(iteration=1, done=True)]
    path = str(tmp_path / "state.json")

    code = await run._run(AgentConfig(state_file=path, allow_all=True), "say hi")

    assert code == 0
    state = read_state_file(path).data
    assert state.status == "completed"
    assert state.task_description == "say hi"
    assert state.errors == []

@pytest.mark.asyncio
async def test_max_iterations_records_failed_state(tmp_path, fake_harness):
    fake_harness.raise_at_end = MaxIterationsExceeded(3)
    path = str(tmp_path / "state.json")

    code = await run._run(AgentConfig(state_file=path, allow_all=True), "loop forever")

    assert code == 1
    state = read_state_file(path).data
    assert state.status == "failed"
    assert "max iterations (3)" in state.errors[0].message

@pytest.mark.asyncio
async def test_model_error_chunk_fails_run(fake_harness):
    fake_harness.chunks = [AgentChunk(iteration=1, done=True, error="upstream 500")]
    assert await run._run(AgentConfig(allow_all=True), "hi") == 1

def test_main_rejects_invalid_config():
    with patch("tiny_agent.config.load_dotenv"):
        assert run.main(["hi", "--max-iterations", "0"]) == 2
