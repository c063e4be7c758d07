"""
Agent contracts: run configuration, lifecycle phases, the terminal status of a
run, and the final report handed to consumers.
"""
from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from .constants import AGENT_DEFAULTS, DEFAULT_MODEL
from .github import GitHubIssue, GitHubRepo


class AgentConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    model: str = DEFAULT_MODEL
    max_turns: Optional[int] = Field(default=AGENT_DEFAULTS.MAX_TURNS, ge=1)
    max_thinking_tokens: int = Field(default=AGENT_DEFAULTS.MAX_THINKING_TOKENS, ge=0)
    interactive: bool = Field(
        default=AGENT_DEFAULTS.INTERACTIVE,
        description="Surface partial thinking/message fragments while a turn streams.",
    )


class AgentPhase(str, Enum):
    INITIALIZING = "initializing"
    CLONING = "cloning"
    EXPLORING = "exploring"
    REPRODUCING = "reproducing"
    INVESTIGATING = "investigating"
    FIXING = "fixing"
    VALIDATING = "validating"
    REPORTING = "reporting"
    COMPLETED = "completed"
    FAILED = "failed"


class _Status(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary: str


class SolvedStatus(_Status):
    type: Literal["solved"] = "solved"
    fix_description: str


class AlreadyFixedStatus(_Status):
    type: Literal["already_fixed"] = "already_fixed"
    fixing_commit: str


class PartialStatus(_Status):
    type: Literal["partial"] = "partial"
    remaining_work: str


class NeedsHumanStatus(_Status):
    type: Literal["needs_human"] = "needs_human"
    blockers: Tuple[str, ...]


class FailedStatus(_Status):
    type: Literal["failed"] = "failed"
    error: str


AgentStatus = Annotated[
    Union[SolvedStatus, AlreadyFixedStatus, PartialStatus, NeedsHumanStatus, FailedStatus],
    Field(discriminator="type"),
]


class FileChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    diff: str = ""


class AgentReport(BaseModel):
    """
    The single, immutable outcome of an agent run.

    Attributes:
        status: Terminal status variant; ``status.type`` drives consumer exit codes.
        reproduced: Whether the agent confirmed the bug before fixing it.
        root_cause: Short root-cause statement, when one was identified.
        analysis: Free-form analysis text.
        changes: Files the agent reported as modified.
        sandbox_url: Preview URL captured before the sandbox was torn down.
        turns_used: Assistant turns consumed by the run.
        duration_ms: Wall-clock duration of the run.
        cost_usd: Cost reported by the agent runtime.
    """

    model_config = ConfigDict(frozen=True)

    issue: GitHubIssue
    repo: GitHubRepo
    status: AgentStatus
    reproduced: bool = False
    root_cause: Optional[str] = None
    analysis: str = ""
    changes: Tuple[FileChange, ...] = ()
    sandbox_url: Optional[str] = None
    turns_used: int = 0
    duration_ms: int = 0
    cost_usd: float = 0.0


__all__ = [
    "AgentConfig",
    "AgentPhase",
    "AgentStatus",
    "SolvedStatus",
    "AlreadyFixedStatus",
    "PartialStatus",
    "NeedsHumanStatus",
    "FailedStatus",
    "FileChange",
    "AgentReport",
]
