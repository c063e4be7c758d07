"""
Events emitted by an agent run.

The set is closed: consumers dispatch on ``event.type`` and should call
:func:`assert_never_event` in their fallback branch so a new variant cannot be
silently ignored.

``thinking`` and ``message`` events with ``partial=True`` are token fragments
streamed while a turn is generated (interactive runs only). The complete block
follows as a non-partial event once the turn finishes.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, NoReturn, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .agent import AgentPhase, AgentReport


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=_now)


class PhaseChangeEvent(_Event):
    type: Literal["phase_change"] = "phase_change"
    phase: AgentPhase
    message: str


class TurnCompleteEvent(_Event):
    type: Literal["turn_complete"] = "turn_complete"
    turn: int
    max_turns: Optional[int] = None


class ToolCallEvent(_Event):
    type: Literal["tool_call"] = "tool_call"
    tool: str
    input: Any = None
    call_id: Optional[str] = None


class ToolResultEvent(_Event):
    type: Literal["tool_result"] = "tool_result"
    tool: str
    success: bool
    call_id: Optional[str] = None


class ThinkingEvent(_Event):
    type: Literal["thinking"] = "thinking"
    content: str
    partial: bool = False


class MessageEvent(_Event):
    type: Literal["message"] = "message"
    content: str
    partial: bool = False


class AskUserEvent(_Event):
    """A question for the human; answer it with ``runner.answer(request_id, text)``."""

    type: Literal["ask_user"] = "ask_user"
    request_id: str
    question: str
    context: str = ""


class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    error: str


class CompleteEvent(_Event):
    type: Literal["complete"] = "complete"
    report: AgentReport


AgentEvent = Annotated[
    Union[
        PhaseChangeEvent,
        TurnCompleteEvent,
        ToolCallEvent,
        ToolResultEvent,
        ThinkingEvent,
        MessageEvent,
        AskUserEvent,
        ErrorEvent,
        CompleteEvent,
    ],
    Field(discriminator="type"),
]

AGENT_EVENT_ADAPTER: TypeAdapter[AgentEvent] = TypeAdapter(AgentEvent)


def assert_never_event(event: object) -> NoReturn:
    raise ValueError(f"Unhandled agent event: {getattr(event, 'type', event)!r}")


__all__ = [
    "AgentEvent",
    "AGENT_EVENT_ADAPTER",
    "PhaseChangeEvent",
    "TurnCompleteEvent",
    "ToolCallEvent",
    "ToolResultEvent",
    "ThinkingEvent",
    "MessageEvent",
    "AskUserEvent",
    "ErrorEvent",
    "CompleteEvent",
    "assert_never_event",
]
