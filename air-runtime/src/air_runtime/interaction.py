"""
Routes ``ask_user`` questions from the agent to whoever consumes run events.

Each question gets a generated request id and a pending future. The consumer
sees an ``AskUserEvent`` and replies through :meth:`InteractionBroker.answer`.
Several questions may be outstanding at once; every one is resolved exactly
once, either by an answer or by :meth:`InteractionBroker.reject_all` when the
run ends.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Callable, Dict

from air_contracts import AskUserEvent, InteractionCancelledError

LOGGER = logging.getLogger(__name__)

EventSink = Callable[[AskUserEvent], None]


class InteractionBroker:
    def __init__(self, emit: EventSink) -> None:
        self._emit = emit
        self._pending: Dict[str, asyncio.Future[str]] = {}

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def ask(self, question: str, context: str = "") -> str:
        """
        Emit a question and wait for its answer.

        Raises:
            InteractionCancelledError: When the question is rejected before an
                answer arrives.
        """
        request_id = uuid.uuid4().hex
        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        LOGGER.debug("Question %s pending", request_id)
        try:
            self._emit(AskUserEvent(request_id=request_id, question=question, context=context))
            return await future
        finally:
            self._pending.pop(request_id, None)

    def answer(self, request_id: str, text: str) -> bool:
        """Resolve a pending question. Returns False for unknown or already-resolved ids."""
        future = self._pending.pop(request_id, None)
        if future is None or future.done():
            LOGGER.debug("Ignoring answer for unknown question %s", request_id)
            return False
        future.set_result(text)
        return True

    def reject_all(self, reason: str = "Question cancelled") -> int:
        rejected = 0
        for request_id, future in list(self._pending.items()):
            self._pending.pop(request_id, None)
            if not future.done():
                future.set_exception(InteractionCancelledError(reason))
                rejected += 1
        if rejected:
            LOGGER.info("Rejected %d pending question(s): %s", rejected, reason)
        return rejected


__all__ = ["InteractionBroker", "EventSink"]
