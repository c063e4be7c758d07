"""
The sandbox tool catalogue: the agent's only I/O surface.

Every sandbox operation is exposed as a named unit with a pydantic request
schema and a description. :meth:`SandboxToolCatalogue.call` validates input
before dispatch, runs the operation, and folds its ``Result`` into a
:class:`ToolEnvelope`. Internal error types never cross this boundary; only
their human-readable messages do.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Sequence, Type, Union

from langchain_core.tools import BaseTool, StructuredTool
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_core import to_jsonable_python

from air_contracts import (
    BISECT_MAX_STEPS,
    TIMEOUTS,
    AppError,
    BrowserAction,
    BrowserResult,
    GitCommit,
    InteractionCancelledError,
    get_error_message,
)

from .browser import execute_browser_actions
from .commands import run_command
from .files import edit_file, list_directory, read_file, search_files, write_file
from .manager import SandboxManager
from .repo import (
    clone_repo,
    get_commits_since,
    git_bisect_mark,
    git_bisect_reset,
    git_bisect_run,
    git_bisect_start,
    git_checkout,
)

LOGGER = logging.getLogger(__name__)

UserInteraction = Callable[[str, str], Awaitable[str]]

MAX_BROWSER_TEXT_CHARS = 8000


# -- envelope ----------------------------------------------------------------


class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageContent(BaseModel):
    type: Literal["image"] = "image"
    data: str = Field(..., description="Base64-encoded image bytes.")
    mime_type: str = "image/png"


class ToolEnvelope(BaseModel):
    """Boundary response: text and/or inline image content plus an error flag."""

    model_config = ConfigDict(frozen=True)

    content: List[Union[TextContent, ImageContent]] = Field(default_factory=list)
    is_error: bool = False

    @classmethod
    def text(cls, text: str, *, is_error: bool = False) -> "ToolEnvelope":
        return cls(content=[TextContent(text=text)], is_error=is_error)

    @classmethod
    def error(cls, text: str) -> "ToolEnvelope":
        return cls.text(text, is_error=True)

    def text_content(self) -> str:
        return "\n".join(block.text for block in self.content if isinstance(block, TextContent))

    def to_message_content(self) -> List[Dict[str, Any]]:
        """Anthropic-style content blocks for a tool result message."""
        blocks: List[Dict[str, Any]] = []
        for block in self.content:
            if isinstance(block, TextContent):
                blocks.append({"type": "text", "text": block.text})
            else:
                blocks.append(
                    {
                        "type": "image",
                        "source": {"type": "base64", "media_type": block.mime_type, "data": block.data},
                    }
                )
        return blocks


# -- request schemas ---------------------------------------------------------


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CloneRequest(_Request):
    url: str = Field(..., description="Git clone URL (https://github.com/owner/repo.git)")
    branch: Optional[str] = Field(default=None, description="Branch to checkout (optional)")

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("url must be a non-empty string")
        return value.strip()


class ExecRequest(_Request):
    command: str = Field(..., description="Shell command to execute")
    timeout: float = Field(
        default=TIMEOUTS.COMMAND,
        gt=0,
        le=TIMEOUTS.SANDBOX,
        description=f"Timeout in seconds (default: {TIMEOUTS.COMMAND})",
    )

    @field_validator("command")
    @classmethod
    def _validate_command(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("command must be a non-empty string")
        return value


class ReadRequest(_Request):
    path: str = Field(..., description="File path (relative to repo or absolute)")


class WriteRequest(_Request):
    path: str = Field(..., description="File path (relative to repo or absolute)")
    content: str = Field(..., description="Full new file content")


class EditRequest(_Request):
    path: str = Field(..., description="File path (relative to repo or absolute)")
    old_string: str = Field(..., min_length=1, description="Exact text to replace")
    new_string: str = Field(..., description="Replacement text")
    replace_all: bool = Field(default=False, description="Replace every occurrence instead of exactly one")


class ListRequest(_Request):
    path: Optional[str] = Field(default=None, description="Directory path (default: repo root)")


class GrepRequest(_Request):
    pattern: str = Field(..., min_length=1, description="Search pattern (regex supported)")
    path: Optional[str] = Field(default=None, description="Directory to search (default: repo root)")
    glob: Optional[str] = Field(default=None, description="File pattern like '*.ts' or '*.py'")


class UrlRequest(_Request):
    port: int = Field(..., ge=1, le=65535, description="Port number")


class GitLogRequest(_Request):
    since: str = Field(..., description="ISO date (e.g. '2024-01-15'); typically the issue creation date")
    search_terms: Optional[List[str]] = Field(
        default=None,
        description="Filter commits by keywords (e.g. ['fix', 'bug', 'issue'])",
    )
    max_count: Optional[int] = Field(default=None, ge=1, description="Maximum number of commits (default: 50)")


class CheckoutRequest(_Request):
    ref: str = Field(..., min_length=1, description="Git ref to checkout (commit hash, branch name, or tag)")


class BisectRequest(_Request):
    action: Literal["start", "good", "bad", "skip", "reset", "run"] = Field(
        ..., description="start/run need bad+good refs; run also needs test_command"
    )
    bad: Optional[str] = Field(default=None, description="Known bad ref (e.g. HEAD)")
    good: Optional[str] = Field(default=None, description="Known good ref")
    test_command: Optional[str] = Field(
        default=None,
        description="For run: shell command that exits 0 when the bug is absent",
    )
    max_steps: int = Field(default=BISECT_MAX_STEPS, ge=1, le=100)

    @model_validator(mode="after")
    def _check_action_arguments(self) -> "BisectRequest":
        if self.action in {"start", "run"} and not (self.bad and self.good):
            raise ValueError(f"action '{self.action}' requires both 'bad' and 'good'")
        if self.action == "run" and not (self.test_command and self.test_command.strip()):
            raise ValueError("action 'run' requires 'test_command'")
        return self


class BrowserRequest(_Request):
    actions: List[BrowserAction] = Field(..., min_length=1, description="Browser actions, executed in order")


class AskUserRequest(_Request):
    question: str = Field(..., min_length=1, description="The question for the user")
    context: str = Field(default="", description="Why you are asking and what you found so far")


# -- catalogue -----------------------------------------------------------------


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    args_schema: Type[BaseModel]
    handler: Callable[[Any], Awaitable[ToolEnvelope]]


def _describe_validation(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "input"
        problems.append(f"{location}: {error.get('msg')}")
    return "; ".join(problems)


def _parse_since(value: str) -> Optional[date]:
    text = value.strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def _format_commit(commit: GitCommit) -> str:
    return f"{commit.short_hash} ({commit.date.date().isoformat()}) {commit.message}"


def _truncate(text: str, limit: int = MAX_BROWSER_TEXT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}\n... ({len(text) - limit} more chars)"


class SandboxToolCatalogue:
    """
    Named sandbox tools bound to one :class:`SandboxManager`.

    Args:
        manager: Session owner shared by every tool in the catalogue.
        ask_user: Optional coroutine used by ``ask_user``; without it the tool
            fails immediately instead of waiting.
    """

    def __init__(self, manager: SandboxManager, *, ask_user: Optional[UserInteraction] = None) -> None:
        self._manager = manager
        self._ask_user = ask_user
        self._specs: Dict[str, ToolSpec] = {spec.name: spec for spec in self._build_specs()}

    @property
    def manager(self) -> SandboxManager:
        return self._manager

    @property
    def names(self) -> List[str]:
        return list(self._specs)

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._specs.get(name)

    def _build_specs(self) -> Sequence[ToolSpec]:
        return (
            ToolSpec(
                "sandbox_clone",
                "Clone a GitHub repository into the sandbox. Must be called first before other operations.",
                CloneRequest,
                self._clone,
            ),
            ToolSpec(
                "sandbox_exec",
                "Execute a shell command in the sandbox. Runs in the cloned repository directory.",
                ExecRequest,
                self._exec,
            ),
            ToolSpec("sandbox_read", "Read contents of a file from the sandbox.", ReadRequest, self._read),
            ToolSpec(
                "sandbox_write",
                "Write content to a file in the sandbox, replacing the whole file.",
                WriteRequest,
                self._write,
            ),
            ToolSpec(
                "sandbox_edit",
                "Replace an exact string in a file. The string must be unique unless replace_all is set.",
                EditRequest,
                self._edit,
            ),
            ToolSpec("sandbox_ls", "List files in a directory.", ListRequest, self._ls),
            ToolSpec("sandbox_grep", "Search for a pattern in files.", GrepRequest, self._grep),
            ToolSpec(
                "sandbox_url",
                "Get public URL for a port exposed in the sandbox (for testing web servers).",
                UrlRequest,
                self._url,
            ),
            ToolSpec(
                "sandbox_git_log",
                "Get git commits since a specific date. Useful for checking if an issue might have been "
                "fixed by recent commits.",
                GitLogRequest,
                self._git_log,
            ),
            ToolSpec(
                "sandbox_git_checkout",
                "Checkout a specific commit or branch. Use this to test if an issue existed at a "
                "particular point in history.",
                CheckoutRequest,
                self._git_checkout,
            ),
            ToolSpec(
                "sandbox_bisect",
                "Find the commit that introduced a regression with git bisect. Use action 'run' with a "
                "test command for an automated search, or start/good/bad/skip/reset to drive it manually.",
                BisectRequest,
                self._bisect,
            ),
            ToolSpec(
                "sandbox_browser",
                "Drive a headless Chromium browser in the sandbox: navigate, click, fill, type, wait, "
                "screenshot, evaluate JavaScript, read text or HTML, press keys, select, hover, scroll.",
                BrowserRequest,
                self._browser,
            ),
            ToolSpec(
                "ask_user",
                "Ask the user a question when you are blocked or need a decision. Use sparingly.",
                AskUserRequest,
                self._ask,
            ),
        )

    async def call(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolEnvelope:
        spec = self._specs.get(name)
        if spec is None:
            return ToolEnvelope.error(f"Unknown tool: {name}")
        try:
            request = spec.args_schema.model_validate(arguments or {})
        except ValidationError as exc:
            return ToolEnvelope.error(f"Invalid input for {name}: {_describe_validation(exc)}")
        try:
            return await spec.handler(request)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - tool failures are reported to the agent
            LOGGER.exception("Tool %s raised", name)
            return ToolEnvelope.error(f"{name} failed: {get_error_message(exc)}")

    def as_langchain_tools(self) -> List[BaseTool]:
        return [self._to_langchain(spec) for spec in self._specs.values()]

    def _to_langchain(self, spec: ToolSpec) -> BaseTool:
        async def _invoke(**kwargs: Any) -> tuple[List[Dict[str, Any]], Dict[str, Any]]:
            envelope = await self.call(spec.name, to_jsonable_python(kwargs))
            return envelope.to_message_content(), envelope.model_dump()

        return StructuredTool.from_function(
            coroutine=_invoke,
            name=spec.name,
            description=spec.description,
            args_schema=spec.args_schema,
            response_format="content_and_artifact",
        )

    # -- handlers ----------------------------------------------------------

    async def _clone(self, request: CloneRequest) -> ToolEnvelope:
        if not self._manager.is_initialized():
            initialized = await self._manager.initialize()
            if initialized.is_err():
                return ToolEnvelope.error(f"Failed to initialize sandbox: {initialized.error.user_message}")
        result = await clone_repo(self._manager, request.url, request.branch)
        if result.is_err():
            return ToolEnvelope.error(f"Clone failed: {result.error.user_message}")
        return ToolEnvelope.text(
            f"Repository cloned to {result.value}. Use other sandbox tools to explore and modify."
        )

    async def _exec(self, request: ExecRequest) -> ToolEnvelope:
        result = await run_command(self._manager, request.command, timeout=request.timeout)
        if result.is_err():
            return ToolEnvelope.error(f"Command failed: {result.error.user_message}")
        output = result.value
        sections = [
            f"stdout:\n{output.stdout}" if output.stdout else "",
            f"stderr:\n{output.stderr}" if output.stderr else "",
            f"exit code: {output.exit_code}",
        ]
        return ToolEnvelope.text("\n\n".join(s for s in sections if s), is_error=output.exit_code != 0)

    async def _read(self, request: ReadRequest) -> ToolEnvelope:
        result = await read_file(self._manager, request.path)
        if result.is_err():
            return ToolEnvelope.error(f"Read failed: {result.error.user_message}")
        return ToolEnvelope.text(result.value)

    async def _write(self, request: WriteRequest) -> ToolEnvelope:
        result = await write_file(self._manager, request.path, request.content)
        if result.is_err():
            return ToolEnvelope.error(f"Write failed: {result.error.user_message}")
        return ToolEnvelope.text(f"File written: {request.path}")

    async def _edit(self, request: EditRequest) -> ToolEnvelope:
        result = await edit_file(
            self._manager,
            request.path,
            request.old_string,
            request.new_string,
            replace_all=request.replace_all,
        )
        if result.is_err():
            return ToolEnvelope.error(f"Edit failed: {result.error.user_message}")
        noun = "replacement" if result.value == 1 else "replacements"
        return ToolEnvelope.text(f"Edited {request.path} ({result.value} {noun})")

    async def _ls(self, request: ListRequest) -> ToolEnvelope:
        result = await list_directory(self._manager, request.path)
        if result.is_err():
            return ToolEnvelope.error(f"List failed: {result.error.user_message}")
        return ToolEnvelope.text("\n".join(result.value) or "(empty)")

    async def _grep(self, request: GrepRequest) -> ToolEnvelope:
        result = await search_files(self._manager, request.pattern, path=request.path, file_pattern=request.glob)
        if result.is_err():
            return ToolEnvelope.error(f"Search failed: {result.error.user_message}")
        return ToolEnvelope.text(result.value)

    async def _url(self, request: UrlRequest) -> ToolEnvelope:
        url = self._manager.get_host_url(request.port)
        if url is None:
            return ToolEnvelope.error("Sandbox not initialized")
        return ToolEnvelope.text(f"Public URL: {url}")

    async def _git_log(self, request: GitLogRequest) -> ToolEnvelope:
        since = _parse_since(request.since)
        if since is None:
            return ToolEnvelope.error(f"Invalid date: {request.since}")
        options: Dict[str, Any] = {"search_terms": request.search_terms}
        if request.max_count is not None:
            options["max_count"] = request.max_count
        result = await get_commits_since(self._manager, since, **options)
        if result.is_err():
            return ToolEnvelope.error(f"Git log failed: {result.error.user_message}")
        if not result.value:
            return ToolEnvelope.text("No commits found since the specified date")
        formatted = "\n".join(_format_commit(commit) for commit in result.value)
        return ToolEnvelope.text(f"Commits since {request.since}:\n\n{formatted}")

    async def _git_checkout(self, request: CheckoutRequest) -> ToolEnvelope:
        result = await git_checkout(self._manager, request.ref)
        if result.is_err():
            return ToolEnvelope.error(f"Checkout failed: {result.error.user_message}")
        return ToolEnvelope.text(f"Checked out: {request.ref}")

    async def _bisect(self, request: BisectRequest) -> ToolEnvelope:
        if request.action == "run":
            run = await git_bisect_run(
                self._manager,
                request.bad or "",
                request.good or "",
                request.test_command or "",
                max_steps=request.max_steps,
            )
            if run.is_err():
                return ToolEnvelope.error(f"Bisect failed: {run.error.user_message}")
            outcome = run.value
            lines = list(outcome.log)
            if outcome.found and outcome.commit is not None:
                lines.append(f"First bad commit: {_format_commit(outcome.commit)}")
            elif outcome.found:
                lines.append("First bad commit found but its details could not be read")
            else:
                lines.append(f"No first bad commit identified after {outcome.steps_count} steps")
            return ToolEnvelope.text("\n".join(lines))

        if request.action == "start":
            started = await git_bisect_start(self._manager, request.bad or "", request.good or "")
            if started.is_err():
                return ToolEnvelope.error(f"Bisect failed: {started.error.user_message}")
            return ToolEnvelope.text(
                f"Bisect started. Commit to test: {started.value}. "
                "Test it, then call sandbox_bisect with action good, bad or skip."
            )

        if request.action == "reset":
            reset = await git_bisect_reset(self._manager)
            if reset.is_err():
                return ToolEnvelope.error(f"Bisect failed: {reset.error.user_message}")
            return ToolEnvelope.text("Bisect reset")

        marked = await git_bisect_mark(self._manager, request.action)
        if marked.is_err():
            return ToolEnvelope.error(f"Bisect failed: {marked.error.user_message}")
        mark = marked.value
        if mark.done:
            detail = _format_commit(mark.found_commit) if mark.found_commit else "details unavailable"
            return ToolEnvelope.text(
                f"First bad commit: {detail}\nCall sandbox_bisect with action reset when done."
            )
        return ToolEnvelope.text(f"Next commit to test: {mark.next_commit or 'unknown'}")

    async def _browser(self, request: BrowserRequest) -> ToolEnvelope:
        result = await execute_browser_actions(self._manager, request.actions)
        if result.is_err():
            return ToolEnvelope.error(f"Browser failed: {result.error.user_message}")
        return _browser_envelope(result.value)

    async def _ask(self, request: AskUserRequest) -> ToolEnvelope:
        if self._ask_user is None:
            return ToolEnvelope.error("User interaction not available")
        try:
            answer = await self._ask_user(request.question, request.context)
        except InteractionCancelledError as exc:
            return ToolEnvelope.error(f"Question was not answered: {exc.user_message}")
        except AppError as exc:
            return ToolEnvelope.error(f"Question failed: {exc.user_message}")
        return ToolEnvelope.text(f"User response: {answer}")


def _browser_envelope(result: BrowserResult) -> ToolEnvelope:
    lines = [f"success: {str(result.success).lower()}"]
    if result.error:
        lines.append(f"error: {result.error}")
    if result.text is not None:
        lines.append(f"text:\n{_truncate(result.text)}")
    if result.html is not None:
        lines.append(f"html:\n{_truncate(result.html)}")
    if result.evaluations:
        lines.append(f"evaluate:\n{_truncate(json.dumps(list(result.evaluations), default=str))}")
    if result.logs:
        lines.append("console:\n" + "\n".join(result.logs))

    content: List[Union[TextContent, ImageContent]] = [TextContent(text="\n\n".join(lines))]
    if result.screenshot:
        content.append(ImageContent(data=result.screenshot))
    return ToolEnvelope(content=content, is_error=not result.success)


__all__ = [
    "SandboxToolCatalogue",
    "ToolEnvelope",
    "ToolSpec",
    "TextContent",
    "ImageContent",
    "UserInteraction",
    "CloneRequest",
    "ExecRequest",
    "ReadRequest",
    "WriteRequest",
    "EditRequest",
    "ListRequest",
    "GrepRequest",
    "UrlRequest",
    "GitLogRequest",
    "CheckoutRequest",
    "BisectRequest",
    "BrowserRequest",
    "AskUserRequest",
]
