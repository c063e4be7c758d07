from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, List, Optional, Sequence

import pytest

from air_contracts import (
    AgentCancelledError,
    AgentConfig,
    AgentPhase,
    AskUserEvent,
    CompleteEvent,
    ErrorEvent,
    MessageEvent,
    PhaseChangeEvent,
    SandboxError,
    ThinkingEvent,
    ToolResultEvent,
)
from air_runtime.agent_stream import (
    AssistantTurn,
    FinalResult,
    PartialDelta,
    RuntimeMessage,
    RuntimeOptions,
    SystemInit,
    TextBlock,
    ThinkingBlock,
    ToolResult,
    ToolUseBlock,
)
from air_runtime.runner import AgentRunner, run_agent

SOLVED = '```json\n{"status": "solved", "reproduced": true, "summary": "Fixed it", "filesChanged": ["app.py"]}\n```'


@pytest.fixture
def anyio_backend():
    return "asyncio"


class ScriptedRuntime:
    """Replays runtime messages, optionally failing or blocking at the end."""

    def __init__(
        self,
        messages: Sequence[RuntimeMessage],
        *,
        error: Optional[Exception] = None,
        block: bool = False,
    ) -> None:
        self.messages = list(messages)
        self.error = error
        self.block = block
        self.options: Optional[RuntimeOptions] = None
        self.prompt: Optional[str] = None

    async def stream(self, prompt: str, options: RuntimeOptions) -> AsyncIterator[RuntimeMessage]:
        self.prompt = prompt
        self.options = options
        for message in self.messages:
            yield message
        if self.error is not None:
            raise self.error
        if self.block:
            await asyncio.Event().wait()


class AskingRuntime:
    """Calls the ``ask_user`` tool through the options it receives, like a real tool node would."""

    def __init__(self) -> None:
        self.answer: Any = None

    async def stream(self, prompt: str, options: RuntimeOptions) -> AsyncIterator[RuntimeMessage]:
        ask_tool = next(tool for tool in options.tools if tool.name == "ask_user")
        yield AssistantTurn(blocks=(ToolUseBlock(id="q1", name="ask_user", input={"question": "Which env?"}),))
        self.answer = await ask_tool.ainvoke({"question": "Which env?"})
        yield ToolResult(call_id="q1", payload={"is_error": False})
        yield FinalResult(text=SOLVED)


def _runner(
    issue, repo, sandbox_config, sandbox_factory, runtime, events: List[Any], *, user_interaction: bool = True, **config: Any
) -> AgentRunner:
    return AgentRunner(
        issue,
        repo,
        AgentConfig(**config),
        sandbox_config,
        on_event=events.append,
        agent_runtime=runtime,
        sandbox_factory=sandbox_factory,
        user_interaction=user_interaction,
    )


def _types(events: List[Any]) -> List[str]:
    return [event.type for event in events]


@pytest.mark.anyio
async def test_successful_run_emits_events_in_arrival_order(
    sample_issue, sample_repo, sandbox_config, sandbox_factory, fake_sandbox
):
    runtime = ScriptedRuntime(
        [
            SystemInit(model="m"),
            AssistantTurn(
                blocks=(
                    ThinkingBlock(text="hmm"),
                    TextBlock(text="Cloning"),
                    ToolUseBlock(id="t1", name="sandbox_clone", input={"url": sample_repo.clone_url}),
                )
            ),
            ToolResult(call_id="t1", payload={"is_error": False}),
            AssistantTurn(blocks=(TextBlock(text=SOLVED),)),
            FinalResult(text=SOLVED, cost_usd=0.25, num_turns=2),
        ]
    )
    events: List[Any] = []

    result = await _runner(sample_issue, sample_repo, sandbox_config, sandbox_factory, runtime, events).run()

    assert _types(events) == [
        "phase_change",
        "phase_change",
        "turn_complete",
        "thinking",
        "message",
        "tool_call",
        "tool_result",
        "turn_complete",
        "message",
        "phase_change",
        "complete",
    ]
    assert events[0].phase == AgentPhase.INITIALIZING
    assert events[1].phase == AgentPhase.EXPLORING
    assert events[-2] == PhaseChangeEvent(phase=AgentPhase.COMPLETED, message="Cleaning up...", timestamp=events[-2].timestamp)
    assert events[5].call_id == "t1"
    assert events[6] == ToolResultEvent(tool="sandbox_clone", success=True, call_id="t1", timestamp=events[6].timestamp)

    report = result.value
    assert isinstance(events[-1], CompleteEvent) and events[-1].report == report
    assert report.status.type == "solved"
    assert report.turns_used == 2
    assert report.cost_usd == 0.25
    assert report.sandbox_url == "https://3000-sbx-test.e2b.app"
    assert fake_sandbox.killed == 1
    assert runtime.prompt.startswith("# Issue #42")
    assert "sandbox_clone" in [tool.name for tool in runtime.options.tools]


@pytest.mark.anyio
async def test_failed_tool_result_is_reported(sample_issue, sample_repo, sandbox_config, sandbox_factory):
    runtime = ScriptedRuntime(
        [
            AssistantTurn(blocks=(ToolUseBlock(id="x", name="sandbox_exec", input={"command": "make"}),)),
            ToolResult(call_id="x", payload={"content": [], "is_error": True}),
            FinalResult(text=SOLVED),
        ]
    )
    events: List[Any] = []

    await _runner(sample_issue, sample_repo, sandbox_config, sandbox_factory, runtime, events).run()

    result_event = next(event for event in events if event.type == "tool_result")
    assert result_event.tool == "sandbox_exec"
    assert result_event.success is False


@pytest.mark.anyio
async def test_sandbox_init_failure(sample_issue, sample_repo, sandbox_config):
    async def broken_factory(config):
        raise RuntimeError("quota exceeded")

    runtime = ScriptedRuntime([FinalResult(text=SOLVED)])
    events: List[Any] = []

    result = await _runner(sample_issue, sample_repo, sandbox_config, broken_factory, runtime, events).run()

    assert result.is_err()
    assert isinstance(result.error, SandboxError)
    assert _types(events) == ["phase_change", "error", "phase_change"]
    assert events[1].error.startswith("Sandbox init failed:")
    assert "quota exceeded" in events[1].error
    assert runtime.prompt is None


@pytest.mark.anyio
async def test_stream_failure_after_tool_call(
    sample_issue, sample_repo, sandbox_config, sandbox_factory, fake_sandbox
):
    runtime = ScriptedRuntime(
        [AssistantTurn(blocks=(ToolUseBlock(id="t1", name="sandbox_ls", input={}),))],
        error=RuntimeError("stream reset"),
    )
    events: List[Any] = []

    result = await _runner(sample_issue, sample_repo, sandbox_config, sandbox_factory, runtime, events).run()

    assert result.is_err()
    assert str(result.error) == "stream reset"
    assert _types(events)[-3:] == ["tool_call", "error", "phase_change"]
    assert [type(event) for event in events[-2:]] == [ErrorEvent, PhaseChangeEvent]
    assert events[-2].error == "stream reset"
    assert not any(isinstance(event, CompleteEvent) for event in events)
    assert fake_sandbox.killed == 1


@pytest.mark.anyio
async def test_cancel_event_stops_the_run(sample_issue, sample_repo, sandbox_config, sandbox_factory, fake_sandbox):
    runtime = ScriptedRuntime([AssistantTurn(blocks=(TextBlock(text="working"),))], block=True)
    events: List[Any] = []
    cancel = asyncio.Event()
    runner = _runner(sample_issue, sample_repo, sandbox_config, sandbox_factory, runtime, events)

    task = asyncio.create_task(runner.run(cancel))
    while not any(event.type == "message" for event in events):
        await asyncio.sleep(0)
    cancel.set()
    result = await asyncio.wait_for(task, timeout=5)

    assert isinstance(result.error, AgentCancelledError)
    assert events[-2].error == "Agent run was cancelled"
    assert fake_sandbox.killed == 1


@pytest.mark.anyio
async def test_task_cancellation_propagates_after_cleanup(
    sample_issue, sample_repo, sandbox_config, sandbox_factory, fake_sandbox
):
    runtime = ScriptedRuntime([], block=True)
    events: List[Any] = []
    runner = _runner(sample_issue, sample_repo, sandbox_config, sandbox_factory, runtime, events)

    task = asyncio.create_task(runner.run())
    while runtime.prompt is None:
        await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert fake_sandbox.killed == 1
    assert events[-1].phase == AgentPhase.COMPLETED


@pytest.mark.anyio
async def test_ask_user_round_trip(sample_issue, sample_repo, sandbox_config, sandbox_factory):
    runtime = AskingRuntime()
    runner: Optional[AgentRunner] = None
    events: List[Any] = []

    def on_event(event):
        events.append(event)
        if isinstance(event, AskUserEvent):
            asyncio.get_running_loop().call_soon(runner.answer, event.request_id, "staging")

    runner = AgentRunner(
        sample_issue,
        sample_repo,
        AgentConfig(interactive=True),
        sandbox_config,
        on_event=on_event,
        agent_runtime=runtime,
        sandbox_factory=sandbox_factory,
    )

    result = await runner.run()

    assert result.is_ok()
    assert any(isinstance(event, AskUserEvent) and event.question == "Which env?" for event in events)
    assert runtime.answer[0]["text"] == "User response: staging"


@pytest.mark.anyio
async def test_ask_user_fails_fast_without_user_interaction(sample_issue, sample_repo, sandbox_config, sandbox_factory):
    runtime = AskingRuntime()
    events: List[Any] = []

    result = await _runner(
        sample_issue, sample_repo, sandbox_config, sandbox_factory, runtime, events, user_interaction=False
    ).run()

    assert result.is_ok()
    assert not any(isinstance(event, AskUserEvent) for event in events)
    assert runtime.answer[0]["text"] == "User interaction not available"


@pytest.mark.anyio
async def test_pending_question_rejected_when_stream_fails(sample_issue, sample_repo, sandbox_config, sandbox_factory):
    outcome: dict = {}
    events: List[Any] = []

    class AskThenFail:
        async def stream(self, prompt, options):
            ask_tool = next(tool for tool in options.tools if tool.name == "ask_user")
            pending = asyncio.ensure_future(ask_tool.ainvoke({"question": "Still there?"}))
            outcome["pending"] = pending
            while not any(isinstance(event, AskUserEvent) for event in events):
                await asyncio.sleep(0)
            yield AssistantTurn(blocks=())
            raise RuntimeError("connection dropped")

    result = await _runner(sample_issue, sample_repo, sandbox_config, sandbox_factory, AskThenFail(), events).run()

    assert result.is_err()
    content = await outcome["pending"]
    assert content[0]["text"] == "Question was not answered: Agent terminated"


def test_answer_without_broker_returns_false(sample_issue, sample_repo, sandbox_config):
    runner = AgentRunner(sample_issue, sample_repo, AgentConfig(), sandbox_config, agent_runtime=ScriptedRuntime([]))
    assert runner.answer("nope", "text") is False


@pytest.mark.anyio
async def test_run_agent_without_event_sink(sample_issue, sample_repo, sandbox_config, sandbox_factory, fake_sandbox):
    result = await run_agent(
        sample_issue,
        sample_repo,
        AgentConfig(),
        sandbox_config,
        agent_runtime=ScriptedRuntime([FinalResult(text=SOLVED)]),
        sandbox_factory=sandbox_factory,
    )

    assert result.value.status.type == "solved"
    assert fake_sandbox.killed == 1


@pytest.mark.anyio
async def test_interactive_runs_surface_partial_fragments(sample_issue, sample_repo, sandbox_config, sandbox_factory):
    runtime = ScriptedRuntime(
        [
            PartialDelta(kind="thinking", text="Maybe "),
            PartialDelta(kind="text", text="Fix"),
            AssistantTurn(blocks=(ThinkingBlock(text="Maybe "), TextBlock(text="Fix"))),
            FinalResult(text=SOLVED),
        ]
    )
    events: List[Any] = []

    await _runner(sample_issue, sample_repo, sandbox_config, sandbox_factory, runtime, events, interactive=True).run()

    assert runtime.options.include_partial is True
    assert events[2] == ThinkingEvent(content="Maybe ", partial=True, timestamp=events[2].timestamp)
    assert events[3] == MessageEvent(content="Fix", partial=True, timestamp=events[3].timestamp)
    assert _types(events)[4:7] == ["turn_complete", "thinking", "message"]
    assert events[5].partial is False and events[6].partial is False


@pytest.mark.anyio
async def test_non_interactive_runs_still_answer_questions(sample_issue, sample_repo, sandbox_config, sandbox_factory):
    runtime = AskingRuntime()
    runner: Optional[AgentRunner] = None
    events: List[Any] = []

    def on_event(event):
        events.append(event)
        if isinstance(event, AskUserEvent):
            asyncio.get_running_loop().call_soon(runner.answer, event.request_id, "prod")

    runner = AgentRunner(
        sample_issue,
        sample_repo,
        AgentConfig(interactive=False),
        sandbox_config,
        on_event=on_event,
        agent_runtime=runtime,
        sandbox_factory=sandbox_factory,
    )

    result = await runner.run()

    assert result.is_ok()
    assert runtime.answer[0]["text"] == "User response: prod"
    assert not any(getattr(event, "partial", False) for event in events)
