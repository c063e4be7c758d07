"""
Drives one agent run from sandbox start-up to the final report.

``AgentRunner.run`` owns the whole lifecycle: it starts a fresh sandbox, hands
the tool catalogue (plus any browser-gateway tools) to the agent runtime,
translates runtime messages into ``AgentEvent`` values in arrival order, and
always tears the sandbox down before returning. Failures come back as
``Err``; only a raw task cancellation propagates.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from langchain_core.tools import BaseTool

from air_contracts import (
    PREVIEW_PORT,
    AgentCancelledError,
    AgentConfig,
    AgentEvent,
    AgentPhase,
    AgentReport,
    CompleteEvent,
    Err,
    ErrorEvent,
    GitHubIssue,
    GitHubRepo,
    MessageEvent,
    Ok,
    PhaseChangeEvent,
    Result,
    SandboxConfig,
    ThinkingEvent,
    ToolCallEvent,
    ToolResultEvent,
    TurnCompleteEvent,
    get_error_message,
)
from air_sandbox import SandboxManager, SandboxToolCatalogue, gateway_tools_for
from air_sandbox.manager import SandboxFactory

from .agent_stream import (
    AgentRuntime,
    AssistantTurn,
    FinalResult,
    LangGraphAgentRuntime,
    PartialDelta,
    RuntimeMessage,
    RuntimeOptions,
    SystemInit,
    TextBlock,
    ThinkingBlock,
    ToolResult,
    ToolUseBlock,
    is_tool_result_success,
)
from .interaction import InteractionBroker
from .prompts import format_issue_prompt, get_system_prompt
from .report import build_report

LOGGER = logging.getLogger(__name__)

EventHandler = Callable[[AgentEvent], None]
GatewayLoader = Callable[[SandboxManager], Awaitable[List[BaseTool]]]

TERMINATION_REASON = "Agent terminated"


class AgentRunner:
    """
    One agent run against one issue.

    Args:
        issue: The issue to fix.
        repo: The repository the issue belongs to.
        config: Model, thinking budget, turn ceiling and interactivity. Interactive
            runs also emit partial ``thinking``/``message`` fragments.
        sandbox_config: Credentials and options for the sandbox.
        on_event: Receives every event in emission order.
        agent_runtime: Stream source; defaults to :class:`LangGraphAgentRuntime`.
        sandbox_factory: Overrides sandbox creation (used by tests).
        gateway_loader: Overrides browser-gateway tool loading.
        api_key: Anthropic key passed to the default model factory.
        user_interaction: Route ``ask_user`` questions to ``on_event``. Without an
            event sink, or with this off, the tool fails immediately.
    """

    def __init__(
        self,
        issue: GitHubIssue,
        repo: GitHubRepo,
        config: AgentConfig,
        sandbox_config: SandboxConfig,
        on_event: Optional[EventHandler] = None,
        agent_runtime: Optional[AgentRuntime] = None,
        sandbox_factory: Optional[SandboxFactory] = None,
        *,
        gateway_loader: Optional[GatewayLoader] = None,
        api_key: Optional[str] = None,
        user_interaction: bool = True,
    ) -> None:
        self._issue = issue
        self._repo = repo
        self._config = config
        self._sandbox_config = sandbox_config
        self._on_event = on_event
        self._runtime: AgentRuntime = agent_runtime or LangGraphAgentRuntime()
        self._sandbox_factory = sandbox_factory
        self._gateway_loader = gateway_loader or gateway_tools_for
        self._api_key = api_key
        self._broker: Optional[InteractionBroker] = (
            InteractionBroker(self._emit) if user_interaction and on_event is not None else None
        )
        self.manager: Optional[SandboxManager] = None
        self._turns = 0
        self._final: Optional[FinalResult] = None
        self._tool_names: Dict[str, str] = {}

    def answer(self, request_id: str, text: str) -> bool:
        """Answer a pending ``ask_user`` question. Returns False if the id is unknown."""
        if self._broker is None:
            return False
        return self._broker.answer(request_id, text)

    def _emit(self, event: AgentEvent) -> None:
        if self._on_event is not None:
            self._on_event(event)

    def _reject_pending(self) -> None:
        if self._broker is not None:
            self._broker.reject_all(TERMINATION_REASON)

    async def run(self, cancel_event: Optional[asyncio.Event] = None) -> Result[AgentReport, Exception]:
        started = time.monotonic()
        self._turns = 0
        self._final = None
        self._tool_names = {}

        manager = SandboxManager(self._sandbox_config, sandbox_factory=self._sandbox_factory)
        self.manager = manager
        catalogue = SandboxToolCatalogue(manager, ask_user=self._broker.ask if self._broker else None)

        self._emit(PhaseChangeEvent(phase=AgentPhase.INITIALIZING, message="Starting sandbox..."))
        try:
            init_result = await manager.initialize()
            if init_result.is_err():
                error = init_result.error
                self._emit(ErrorEvent(error=f"Sandbox init failed: {error.user_message}"))
                return Err(error)

            tools: List[BaseTool] = catalogue.as_langchain_tools()
            if self._sandbox_config.enable_browser_gateway and manager.has_gateway():
                gateway_tools = await self._gateway_loader(manager)
                if gateway_tools:
                    tools.extend(gateway_tools)
                    self._emit(
                        PhaseChangeEvent(
                            phase=AgentPhase.INITIALIZING,
                            message=f"Browser gateway at {manager.gateway_url}",
                        )
                    )

            self._emit(PhaseChangeEvent(phase=AgentPhase.EXPLORING, message="Analyzing issue..."))
            options = RuntimeOptions(
                model=self._config.model,
                system_prompt=get_system_prompt(browser_enabled=len(tools) > len(catalogue.names)),
                tools=tools,
                max_thinking_tokens=self._config.max_thinking_tokens,
                max_turns=self._config.max_turns,
                api_key=self._api_key,
                include_partial=self._config.interactive,
            )
            prompt = format_issue_prompt(self._issue, self._repo)
            await self._consume_until_cancelled(prompt, options, cancel_event)
            sandbox_url = manager.get_host_url(PREVIEW_PORT)
        except asyncio.CancelledError:
            LOGGER.warning("Agent run cancelled by its caller")
            self._reject_pending()
            raise
        except Exception as exc:  # noqa: BLE001 - every run failure is reported as a result
            self._reject_pending()
            LOGGER.error("Agent run failed after %d turn(s): %s", self._turns, exc)
            self._emit(ErrorEvent(error=get_error_message(exc)))
            return Err(exc)
        finally:
            self._emit(PhaseChangeEvent(phase=AgentPhase.COMPLETED, message="Cleaning up..."))
            await manager.cleanup()

        final = self._final
        report = build_report(
            self._issue,
            self._repo,
            final.text if final else "",
            is_error=final.is_error if final else False,
            turns=self._turns,
            duration_ms=int((time.monotonic() - started) * 1000),
            cost_usd=final.cost_usd if final else 0.0,
            sandbox_url=sandbox_url,
        )
        self._emit(CompleteEvent(report=report))
        return Ok(report)

    async def _consume(self, prompt: str, options: RuntimeOptions) -> None:
        async for message in self._runtime.stream(prompt, options):
            self._handle(message)

    async def _consume_until_cancelled(
        self,
        prompt: str,
        options: RuntimeOptions,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        if cancel_event is None:
            await self._consume(prompt, options)
            return
        if cancel_event.is_set():
            raise AgentCancelledError()

        consumer = asyncio.ensure_future(self._consume(prompt, options))
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({consumer, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not consumer.done():
                consumer.cancel()

        if consumer in done:
            consumer.result()
            return
        await asyncio.gather(consumer, return_exceptions=True)
        raise AgentCancelledError()

    def _handle(self, message: RuntimeMessage) -> None:
        if isinstance(message, SystemInit):
            LOGGER.debug("Runtime started with model %s and %d tool(s)", message.model, len(message.tools))
        elif isinstance(message, PartialDelta):
            if message.kind == "thinking":
                self._emit(ThinkingEvent(content=message.text, partial=True))
            else:
                self._emit(MessageEvent(content=message.text, partial=True))
        elif isinstance(message, AssistantTurn):
            self._turns += 1
            self._emit(TurnCompleteEvent(turn=self._turns, max_turns=self._config.max_turns))
            for block in message.blocks:
                if isinstance(block, ThinkingBlock):
                    self._emit(ThinkingEvent(content=block.text))
                elif isinstance(block, TextBlock):
                    self._emit(MessageEvent(content=block.text))
                elif isinstance(block, ToolUseBlock):
                    self._tool_names[block.id] = block.name
                    self._emit(ToolCallEvent(tool=block.name, input=block.input, call_id=block.id))
        elif isinstance(message, ToolResult):
            tool = self._tool_names.pop(message.call_id, "unknown")
            success = is_tool_result_success(message.payload, message.is_error)
            self._emit(ToolResultEvent(tool=tool, success=success, call_id=message.call_id))
        elif isinstance(message, FinalResult):
            self._final = message
        else:
            raise ValueError(f"Unexpected runtime message: {message!r}")


async def run_agent(
    issue: GitHubIssue,
    repo: GitHubRepo,
    config: AgentConfig,
    sandbox_config: SandboxConfig,
    *,
    on_event: Optional[EventHandler] = None,
    cancel_event: Optional[asyncio.Event] = None,
    **kwargs: Any,
) -> Result[AgentReport, Exception]:
    """Create an :class:`AgentRunner` and run it once."""
    runner = AgentRunner(issue, repo, config, sandbox_config, on_event=on_event, **kwargs)
    return await runner.run(cancel_event)


__all__ = ["AgentRunner", "run_agent", "EventHandler", "GatewayLoader"]
