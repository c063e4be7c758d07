"""
Command-line entry point: ``air <issue-url>``.

Loads configuration (including a local ``.env``), fetches the issue and its
repository, runs the agent and prints its events as they arrive. Questions
from the agent are answered on stdin. Ctrl-C requests a graceful stop; a
second Ctrl-C interrupts immediately.

Exit codes: 0 when the issue is solved or already fixed, 1 for any other
report status, 2 when the run could not produce a report.

``air-build-template`` builds the E2B template the sandboxes start from.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
import threading
from typing import Any, Callable, List, Mapping, Optional, Sequence, Set, TextIO, Union

from dotenv import load_dotenv

from air_contracts import (
    MODEL_OPTIONS,
    SANDBOX_TEMPLATE,
    AgentEvent,
    AgentReport,
    AppError,
    AskUserEvent,
    CompleteEvent,
    ErrorEvent,
    MessageEvent,
    PhaseChangeEvent,
    ThinkingEvent,
    ToolCallEvent,
    ToolResultEvent,
    TurnCompleteEvent,
    assert_never_event,
    get_error_message,
    parse_issue_url,
)
from air_sandbox.template import build_template

from .config import AppConfig
from .github import GitHubClient
from .logging_utils import configure_logging
from .report import report_to_dict
from .runner import AgentRunner

LOGGER = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_UNRESOLVED = 1
EXIT_ERROR = 2

THINKING_PREVIEW_CHARS = 200
INPUT_SUMMARY_CHARS = 80
_SUMMARY_KEYS = ("command", "path", "pattern", "url", "ref", "action", "question", "since")
_RESOLVED_STATUSES = {"solved", "already_fixed"}

InputFn = Callable[[str], str]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="air", description="Fix a GitHub issue with an agent in an E2B sandbox.")
    parser.add_argument("issue_url", help="GitHub issue URL, e.g. https://github.com/owner/repo/issues/123")
    parser.add_argument(
        "--model",
        choices=[model_id for model_id, _, _ in MODEL_OPTIONS],
        help="Model to run (defaults to AGENT_DEFAULT_MODEL).",
    )
    parser.add_argument("--max-turns", type=int, help="Stop after this many assistant turns.")
    parser.add_argument(
        "--non-interactive",
        action="store_true",
        help="Never ask questions and hide partial output; the agent must decide on its own.",
    )
    parser.add_argument("--browser", action="store_true", help="Enable the Playwright browser gateway.")
    parser.add_argument("--json", action="store_true", help="Print the final report as JSON.")
    return parser


def summarize_input(value: Any) -> str:
    """One-line summary of a tool call's input."""
    if isinstance(value, Mapping):
        for key in _SUMMARY_KEYS:
            if value.get(key):
                return _clip(str(value[key]), INPUT_SUMMARY_CHARS)
        if "actions" in value and isinstance(value["actions"], list):
            kinds = [str(action.get("type", "?")) for action in value["actions"] if isinstance(action, Mapping)]
            return _clip(" > ".join(kinds), INPUT_SUMMARY_CHARS)
    if value in (None, {}, []):
        return ""
    return _clip(json.dumps(value, default=str), INPUT_SUMMARY_CHARS)


def _clip(text: str, limit: int) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 3] + "..."


def format_event(event: AgentEvent, *, dim: bool = False) -> Optional[str]:
    """Render an event as a single display line, or None for events not shown line by line."""
    if isinstance(event, PhaseChangeEvent):
        return f"==> [{event.phase.value}] {event.message}"
    if isinstance(event, TurnCompleteEvent):
        ceiling = f"/{event.max_turns}" if event.max_turns else ""
        return f"--- turn {event.turn}{ceiling}"
    if isinstance(event, (ThinkingEvent, MessageEvent)) and event.partial:
        return None
    if isinstance(event, ThinkingEvent):
        line = f"  (thinking) {_clip(event.content, THINKING_PREVIEW_CHARS)}"
        return f"\x1b[2m{line}\x1b[0m" if dim else line
    if isinstance(event, MessageEvent):
        return event.content
    if isinstance(event, ToolCallEvent):
        summary = summarize_input(event.input)
        return f"  -> {event.tool}" + (f" {summary}" if summary else "")
    if isinstance(event, ToolResultEvent):
        return f"  <- {event.tool} {'ok' if event.success else 'failed'}"
    if isinstance(event, AskUserEvent):
        context = f"\n   {event.context}" if event.context else ""
        return f"?? {event.question}{context}"
    if isinstance(event, ErrorEvent):
        return f"!! {event.error}"
    if isinstance(event, CompleteEvent):
        return None
    assert_never_event(event)


def render_report(report: AgentReport) -> str:
    status = report.status
    lines = [
        f"Issue #{report.issue.number}: {report.issue.title}",
        f"Status: {status.type}",
        f"Summary: {status.summary}",
    ]
    detail = getattr(status, "fix_description", None) or getattr(status, "fixing_commit", None)
    detail = detail or getattr(status, "remaining_work", None) or getattr(status, "error", None)
    if detail:
        lines.append(f"Details: {detail}")
    blockers = getattr(status, "blockers", None)
    if blockers:
        lines.append("Blockers:")
        lines.extend(f"  - {blocker}" for blocker in blockers)
    lines.append(f"Reproduced: {'yes' if report.reproduced else 'no'}")
    if report.root_cause:
        lines.append(f"Root cause: {report.root_cause}")
    if report.changes:
        lines.append("Files changed:")
        lines.extend(f"  - {change.path}" for change in report.changes)
    lines.append(
        f"Turns: {report.turns_used}  Duration: {report.duration_ms / 1000:.1f}s  Cost: ${report.cost_usd:.4f}"
    )
    return "\n".join(lines)


def exit_code_for(report: AgentReport) -> int:
    return EXIT_SUCCESS if report.status.type in _RESOLVED_STATUSES else EXIT_UNRESOLVED


class EventConsole:
    """
    Prints events and relays ``ask_user`` questions to stdin.

    Partial fragments are written inline as they arrive; the complete block
    that follows is then not printed a second time.
    """

    def __init__(
        self,
        out: TextIO,
        *,
        input_fn: InputFn = input,
        echo_events: bool = True,
    ) -> None:
        self._out = out
        self._input_fn = input_fn
        self._echo = echo_events
        self._dim = bool(getattr(out, "isatty", lambda: False)())
        self._prompts: Set[asyncio.Task[None]] = set()
        self._streaming: Optional[str] = None
        self._streamed: Set[str] = set()
        self.runner: Optional[AgentRunner] = None

    def __call__(self, event: AgentEvent) -> None:
        if isinstance(event, (ThinkingEvent, MessageEvent)) and event.partial:
            if self._echo:
                self._write_fragment(event)
            return
        self._end_stream()
        if isinstance(event, (ThinkingEvent, MessageEvent)) and event.type in self._streamed:
            return
        if not isinstance(event, TurnCompleteEvent):
            self._streamed.clear()
        if isinstance(event, AskUserEvent):
            self._print(format_event(event))
            task = asyncio.get_running_loop().create_task(self._prompt(event))
            self._prompts.add(task)
            task.add_done_callback(self._prompts.discard)
            return
        if self._echo:
            line = format_event(event, dim=self._dim)
            if line is not None:
                self._print(line)

    def _write_fragment(self, event: Union[ThinkingEvent, MessageEvent]) -> None:
        if self._streaming != event.type:
            self._end_stream()
            self._streaming = event.type
            self._streamed.add(event.type)
            if isinstance(event, ThinkingEvent):
                self._out.write("  (thinking) ")
        text = event.content
        if isinstance(event, ThinkingEvent) and self._dim:
            text = f"\x1b[2m{text}\x1b[0m"
        self._out.write(text)
        self._out.flush()

    def _end_stream(self) -> None:
        if self._streaming is not None:
            self._out.write("\n")
            self._out.flush()
            self._streaming = None

    def _print(self, line: Optional[str]) -> None:
        if line is not None:
            print(line, file=self._out, flush=True)

    async def _prompt(self, event: AskUserEvent) -> None:
        try:
            answer = await self._read_line("answer> ")
        except EOFError:
            LOGGER.info("stdin closed; question %s left unanswered", event.request_id)
            return
        if self.runner is None or not self.runner.answer(event.request_id, answer.strip()):
            LOGGER.info("Answer for %s arrived after the question was withdrawn", event.request_id)

    async def _read_line(self, prompt: str) -> str:
        """Read one line on a daemon thread; ``asyncio.run`` never joins it on shutdown."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()

        def _settle(line: Optional[str], error: Optional[BaseException]) -> None:
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(line or "")

        def _worker() -> None:
            try:
                line, error = self._input_fn(prompt), None
            except Exception as exc:  # noqa: BLE001 - handed to the awaiting task
                line, error = None, exc
            try:
                loop.call_soon_threadsafe(_settle, line, error)
            except RuntimeError:
                LOGGER.debug("Input arrived after the event loop closed")

        threading.Thread(target=_worker, name="air-stdin", daemon=True).start()
        return await future

    def close(self) -> None:
        for task in list(self._prompts):
            task.cancel()


def _install_interrupt_handler(cancel_event: asyncio.Event, out: TextIO) -> Callable[[], None]:
    loop = asyncio.get_running_loop()

    def _on_interrupt() -> None:
        print("\nCancelling... (press Ctrl-C again to abort)", file=out, flush=True)
        cancel_event.set()
        loop.remove_signal_handler(signal.SIGINT)

    try:
        loop.add_signal_handler(signal.SIGINT, _on_interrupt)
    except (NotImplementedError, RuntimeError, ValueError):
        LOGGER.debug("Signal handlers unsupported; Ctrl-C will abort immediately")
        return lambda: None
    return lambda: loop.remove_signal_handler(signal.SIGINT)


async def run_cli(
    args: argparse.Namespace,
    *,
    env: Optional[Mapping[str, str]] = None,
    out: TextIO = sys.stdout,
    input_fn: InputFn = input,
    runner_factory: Callable[..., AgentRunner] = AgentRunner,
    github_factory: Callable[[str], GitHubClient] = GitHubClient,
) -> int:
    try:
        config = AppConfig.from_environment(env).with_overrides(
            model=args.model,
            max_turns=args.max_turns,
            interactive=False if args.non_interactive else None,
            enable_browser=True if args.browser else None,
        )
    except AppError as exc:
        print(f"Error: {exc.user_message}", file=out)
        return EXIT_ERROR

    parsed = parse_issue_url(args.issue_url)
    if parsed.is_err():
        print(f"Error: {parsed.error.user_message}", file=out)
        return EXIT_ERROR

    async with github_factory(config.github.token) as github:
        fetched = await github.fetch(parsed.value)
    if fetched.is_err():
        print(f"Error: {fetched.error.user_message}", file=out)
        return EXIT_ERROR
    issue, repo = fetched.value

    console = EventConsole(out, input_fn=input_fn, echo_events=not args.json)
    runner = runner_factory(
        issue,
        repo,
        config.agent_config(),
        config.sandbox_config(),
        on_event=console,
        api_key=config.anthropic.api_key,
        user_interaction=not args.non_interactive,
    )
    console.runner = runner

    cancel_event = asyncio.Event()
    restore = _install_interrupt_handler(cancel_event, out)
    try:
        result = await runner.run(cancel_event)
    finally:
        restore()
        console.close()

    if result.is_err():
        if args.json:
            print(json.dumps({"error": get_error_message(result.error)}), file=out)
        else:
            print(f"Error: {get_error_message(result.error)}", file=out)
        return EXIT_ERROR

    report = result.value
    if args.json:
        print(json.dumps(report_to_dict(report), indent=2), file=out)
    else:
        print("", file=out)
        print(render_report(report), file=out)
    return exit_code_for(report)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    load_dotenv(override=False)
    configure_logging()
    try:
        code = asyncio.run(run_cli(args))
    except KeyboardInterrupt:
        code = EXIT_ERROR
    sys.exit(code)


def build_template_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="air-build-template",
        description="Build the E2B sandbox template AIR runs in (needs E2B_API_KEY).",
    )
    parser.add_argument("--alias", default=SANDBOX_TEMPLATE, help="Template name sandboxes are created from.")
    return parser


def run_build_template(
    args: argparse.Namespace,
    *,
    env: Optional[Mapping[str, str]] = None,
    out: TextIO = sys.stdout,
    builder: Optional[Any] = None,
) -> int:
    api_key = (env if env is not None else os.environ).get("E2B_API_KEY")
    if not api_key:
        print("Error: Missing required environment variable: E2B_API_KEY", file=out)
        return EXIT_ERROR
    print(f"Building E2B template: {args.alias}", file=out, flush=True)
    try:
        built = build_template(api_key, alias=args.alias, builder=builder)
    except Exception as exc:  # noqa: BLE001 - reported through the exit code
        LOGGER.debug("Template build failed", exc_info=True)
        print(f"Build failed: {exc}", file=out)
        return EXIT_ERROR
    template_id = getattr(built, "template_id", None) or built
    print(f"Template built: {args.alias} ({template_id})", file=out)
    return EXIT_SUCCESS


def build_template_main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_template_parser().parse_args(list(argv) if argv is not None else None)
    load_dotenv(override=False)
    configure_logging()
    sys.exit(run_build_template(args))


__all__: List[str] = [
    "build_parser",
    "format_event",
    "summarize_input",
    "render_report",
    "exit_code_for",
    "EventConsole",
    "run_cli",
    "main",
    "build_template_parser",
    "run_build_template",
    "build_template_main",
]
