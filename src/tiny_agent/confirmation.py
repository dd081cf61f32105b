# confirmation.py
# Session-scoped confirmation for dangerous tool calls.
#
# A ConfirmationSession is handed to the ToolRegistry at construction. It owns
# the human-facing handler and any "for the rest of this session" decision,
# so no approval state leaks between sessions or registries.

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Union

from tiny_agent.models import (
    ApproveAll,
    ConfirmationRequest,
    ConfirmationResult,
    DenyAll,
    Partial,
)

logger = logging.getLogger(__name__)

HandlerResult = Union[ConfirmationResult, bool]
ConfirmationHandler = Callable[
    [ConfirmationRequest], Union[HandlerResult, Awaitable[HandlerResult]]
]


def normalize_result(result: HandlerResult) -> ConfirmationResult:
    """Map the legacy boolean answers onto the tagged variants."""
    if result is True:
        return ApproveAll()
    if result is False:
        return DenyAll()
    if isinstance(result, (ApproveAll, DenyAll, Partial)):
        return result
    raise TypeError(f"Unsupported confirmation result: {result!r}")


class ConfirmationSession:
    """
    Confirmation state for one interactive session.

    Example:
        session = ConfirmationSession(display.prompt_confirmation)
        registry = ToolRegistry(confirmation=session)
    """

    def __init__(self, handler: ConfirmationHandler) -> None:
        self._handler = handler
        self._approved_all = False
        self._denied_all = False

    @property
    def approved_all(self) -> bool:
        return self._approved_all

    @property
    def denied_all(self) -> bool:
        return self._denied_all

    def approve_all_for_session(self) -> None:
        self._approved_all = True
        self._denied_all = False

    def deny_all_for_session(self) -> None:
        self._approved_all = False
        self._denied_all = True

    def clear(self) -> None:
        self._approved_all = False
        self._denied_all = False

    async def confirm(self, request: ConfirmationRequest) -> ConfirmationResult:
        if self._approved_all:
            logger.debug("Session pre-approved %d action(s)", len(request.actions))
            return ApproveAll()
        if self._denied_all:
            logger.debug("Session pre-denied %d action(s)", len(request.actions))
            return DenyAll()

        result = self._handler(request)
        if inspect.isawaitable(result):
            result = await result

        decision = normalize_result(result)
        if isinstance(decision, ApproveAll) and decision.remember:
            self.approve_all_for_session()
        elif isinstance(decision, DenyAll) and decision.remember:
            self.deny_all_for_session()
        return decision
