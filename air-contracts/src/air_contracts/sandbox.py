"""
Sandbox contracts: configuration, session snapshots, command output, git
history records, and the browser automation action vocabulary.
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from .constants import SANDBOX_TEMPLATE, TIMEOUTS


class SandboxConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_key: str
    timeout_seconds: int = TIMEOUTS.SANDBOX
    github_token: Optional[str] = None
    enable_browser_gateway: bool = False
    template: str = SANDBOX_TEMPLATE


class SandboxInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    repo_path: Optional[str] = None
    started_at: datetime
    gateway_url: Optional[str] = None


class CommandResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class GitCommit(BaseModel):
    model_config = ConfigDict(frozen=True)

    hash: str
    date: datetime
    message: str

    @property
    def short_hash(self) -> str:
        return self.hash[:8]


class BisectMarkResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    done: bool
    next_commit: Optional[str] = None
    found_commit: Optional[GitCommit] = None


class BisectResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    found: bool
    commit: Optional[GitCommit] = None
    steps_count: int = 0
    log: Tuple[str, ...] = ()


# -- browser actions ---------------------------------------------------------


class _Action(BaseModel):
    model_config = ConfigDict(frozen=True)


class NavigateAction(_Action):
    type: Literal["navigate"] = "navigate"
    url: str


class ClickAction(_Action):
    type: Literal["click"] = "click"
    selector: str


class FillAction(_Action):
    type: Literal["fill"] = "fill"
    selector: str
    value: str


class TypeAction(_Action):
    type: Literal["type"] = "type"
    selector: str
    text: str


class ScreenshotAction(_Action):
    type: Literal["screenshot"] = "screenshot"
    full_page: bool = False


class WaitAction(_Action):
    type: Literal["wait"] = "wait"
    selector: str
    timeout: int = Field(default=5000, description="Milliseconds to wait for the selector.")


class WaitTimeAction(_Action):
    type: Literal["wait_time"] = "wait_time"
    ms: int


class EvaluateAction(_Action):
    type: Literal["evaluate"] = "evaluate"
    script: str


class GetTextAction(_Action):
    type: Literal["get_text"] = "get_text"
    selector: str


class GetHtmlAction(_Action):
    type: Literal["get_html"] = "get_html"


class PressAction(_Action):
    type: Literal["press"] = "press"
    key: str


class SelectAction(_Action):
    type: Literal["select"] = "select"
    selector: str
    value: str


class HoverAction(_Action):
    type: Literal["hover"] = "hover"
    selector: str


class ScrollAction(_Action):
    type: Literal["scroll"] = "scroll"
    y: int = 500


BrowserAction = Annotated[
    Union[
        NavigateAction,
        ClickAction,
        FillAction,
        TypeAction,
        ScreenshotAction,
        WaitAction,
        WaitTimeAction,
        EvaluateAction,
        GetTextAction,
        GetHtmlAction,
        PressAction,
        SelectAction,
        HoverAction,
        ScrollAction,
    ],
    Field(discriminator="type"),
]


class BrowserResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    screenshot: Optional[str] = Field(default=None, description="Base64-encoded PNG.")
    html: Optional[str] = None
    text: Optional[str] = None
    error: Optional[str] = None
    logs: Tuple[str, ...] = ()
    evaluations: Tuple[Any, ...] = Field(default=(), description="Return values of evaluate actions, in order.")


__all__ = [
    "SandboxConfig",
    "SandboxInfo",
    "CommandResult",
    "GitCommit",
    "BisectMarkResult",
    "BisectResult",
    "BrowserAction",
    "NavigateAction",
    "ClickAction",
    "FillAction",
    "TypeAction",
    "ScreenshotAction",
    "WaitAction",
    "WaitTimeAction",
    "EvaluateAction",
    "GetTextAction",
    "GetHtmlAction",
    "PressAction",
    "SelectAction",
    "HoverAction",
    "ScrollAction",
    "BrowserResult",
]
