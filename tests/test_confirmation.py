import pytest

from tiny_agent.confirmation import ConfirmationSession, normalize_result
from tiny_agent.models import (
    ApproveAll,
    ConfirmationAction,
    ConfirmationRequest,
    DenyAll,
    Partial,
)

REQUEST = ConfirmationRequest(
    actions=[ConfirmationAction(tool="write_file", description="Write", args={"path": "x"})]
)


def test_normalize_result_maps_booleans():
    assert normalize_result(True) == ApproveAll()
    assert normalize_result(False) == DenyAll()
    assert normalize_result(Partial(selected_index=0)) == Partial(selected_index=0)
    with pytest.raises(TypeError):
        normalize_result("yes")

@pytest.mark.asyncio
async def test_confirm_calls_handler_each_time():
    calls = []

    def handler(request):
        calls.append(request)
        return ApproveAll()

    session = ConfirmationSession(handler)
    await session.confirm(REQUEST)
    await session.confirm(REQUEST)
    assert len(calls) == 2
    assert not session.approved_all

@pytest.mark.asyncio
async def test_remembered_approval_short_circuits():
    calls = []

    async def handler(request):
        calls.append(request)
        return ApproveAll(remember=True)

    session = ConfirmationSession(handler)
    assert await session.confirm(REQUEST) == ApproveAll(remember=True)
    assert session.approved_all
    assert await session.confirm(REQUEST) == ApproveAll()
    assert len(calls) == 1

@pytest.mark.asyncio
async def test_remembered_denial_short_circuits():
    session = ConfirmationSession(lambda request: DenyAll(remember=True))
    await session.confirm(REQUEST)
    assert session.denied_all
    assert not session.approved_all
    assert isinstance(await session.confirm(REQUEST), DenyAll)

@pytest.mark.asyncio
async def test_clear_resets_session_flags():
    answers = iter([DenyAll(remember=True), ApproveAll()])
    session = ConfirmationSession(lambda request: next(answers))

    await session.confirm(REQUEST)
    session.clear()
    assert not session.denied_all
    assert isinstance(await session.confirm(REQUEST), ApproveAll)

def test_sessions_do_not_share_state():
    first = ConfirmationSession(lambda request: True)
    second = ConfirmationSession(lambda request: True)
    first.approve_all_for_session()
    assert first.approved_all
    assert not second.approved_all

    first.deny_all_for_session()
    assert first.denied_all and not first.approved_all
