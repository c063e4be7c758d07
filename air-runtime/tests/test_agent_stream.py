from __future__ import annotations

import itertools
from unittest.mock import patch

import anthropic
import httpx
import pytest
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, ToolMessage
from langchain_core.tools import tool

from air_contracts import AgentApiError, AgentMaxTurnsError
from air_runtime.agent_stream import (
    AssistantTurn,
    FinalResult,
    LangGraphAgentRuntime,
    PartialDelta,
    RuntimeOptions,
    SystemInit,
    TextBlock,
    ThinkingBlock,
    ToolResult,
    ToolUseBlock,
    assistant_turn_from_message,
    default_model_factory,
    estimate_cost,
    is_tool_result_success,
    partial_deltas_from_chunk,
    recursion_limit_for,
    tool_result_from_message,
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


class ScriptedChatModel(GenericFakeChatModel):
    """Fake chat model that replays scripted messages and accepts tool bindings."""

    def bind_tools(self, tools, **kwargs):
        return self


_API_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
RATE_LIMITED = anthropic.RateLimitError("slow down", response=httpx.Response(429, request=_API_REQUEST), body=None)


class RateLimitedChatModel(ScriptedChatModel):
    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        raise RATE_LIMITED


@tool
def echo(text: str) -> str:
    """Echo the given text."""
    return f"echo: {text}"


def _tool_call_message(call_id: str = "call_1") -> AIMessage:
    return AIMessage(
        content=[
            {"type": "thinking", "thinking": "Need to look first", "signature": "sig"},
            {"type": "text", "text": "Checking."},
            {"type": "tool_use", "id": call_id, "name": "echo", "input": {"text": "hi"}},
        ],
        tool_calls=[{"id": call_id, "name": "echo", "args": {"text": "hi"}}],
        usage_metadata={"input_tokens": 1000, "output_tokens": 100, "total_tokens": 1100},
    )


async def _collect(runtime: LangGraphAgentRuntime, options: RuntimeOptions) -> list:
    return [message async for message in runtime.stream("Fix issue #42", options)]


def test_assistant_turn_keeps_block_order():
    turn = assistant_turn_from_message(_tool_call_message())

    assert turn.blocks == (
        ThinkingBlock(text="Need to look first"),
        TextBlock(text="Checking."),
        ToolUseBlock(id="call_1", name="echo", input={"text": "hi"}),
    )


def test_assistant_turn_from_plain_string_with_tool_calls():
    message = AIMessage(content="Let me grep.", tool_calls=[{"id": "c9", "name": "sandbox_grep", "args": {"pattern": "x"}}])

    turn = assistant_turn_from_message(message)

    assert turn.blocks == (
        TextBlock(text="Let me grep."),
        ToolUseBlock(id="c9", name="sandbox_grep", input={"pattern": "x"}),
    )


def test_tool_result_prefers_envelope_artifact():
    message = ToolMessage(
        content="stdout:\n\nexit code: 1",
        tool_call_id="call_1",
        artifact={"content": [], "is_error": True},
    )

    result = tool_result_from_message(message)

    assert result.call_id == "call_1"
    assert result.payload == {"content": [], "is_error": True}
    assert is_tool_result_success(result.payload, result.is_error) is False


@pytest.mark.parametrize(
    ("payload", "is_error", "expected"),
    [
        ({"is_error": False}, False, True),
        ({"isError": True}, False, False),
        ({"success": False}, False, False),
        ("plain text", False, True),
        ({"is_error": False}, True, False),
    ],
)
def test_is_tool_result_success(payload, is_error, expected):
    assert is_tool_result_success(payload, is_error) is expected


def test_cost_estimate_uses_model_prices():
    usage = {"input_tokens": 1_000_000, "output_tokens": 1_000_000, "total_tokens": 2_000_000}

    assert estimate_cost("claude-sonnet-4-5-20250929", usage) == pytest.approx(18.0)
    assert estimate_cost("claude-opus-4-5-20251101", usage) == pytest.approx(30.0)
    assert estimate_cost("claude-sonnet-4-5-20250929", None) == 0.0


def test_recursion_limit_tracks_turn_ceiling():
    assert recursion_limit_for(5) == 10
    assert recursion_limit_for(None) > 100


def test_default_model_factory_enables_thinking():
    options = RuntimeOptions(model="claude-sonnet-4-5-20250929", system_prompt="s", max_thinking_tokens=16000, api_key="k")

    with patch("air_runtime.agent_stream.init_chat_model") as init_chat_model:
        default_model_factory(options)

    init_chat_model.assert_called_once_with(
        "anthropic:claude-sonnet-4-5-20250929",
        thinking={"type": "enabled", "budget_tokens": 16000},
        max_tokens=16000 + 8192,
        api_key="k",
    )


@pytest.mark.anyio
async def test_stream_converts_graph_updates():
    model = ScriptedChatModel(
        messages=iter(
            [
                _tool_call_message(),
                AIMessage(
                    content='```json\n{"status": "solved", "summary": "done"}\n```',
                    usage_metadata={"input_tokens": 2000, "output_tokens": 50, "total_tokens": 2050},
                ),
            ]
        )
    )
    runtime = LangGraphAgentRuntime(model_factory=lambda options: model)
    options = RuntimeOptions(model="claude-sonnet-4-5-20250929", system_prompt="You fix bugs.", tools=[echo])

    messages = await _collect(runtime, options)

    assert isinstance(messages[0], SystemInit)
    assert messages[0].tools == ("echo",)
    assert isinstance(messages[1], AssistantTurn)
    assert isinstance(messages[2], ToolResult)
    assert messages[2].call_id == "call_1"
    assert messages[2].payload == "echo: hi"
    assert messages[2].is_error is False
    assert isinstance(messages[3], AssistantTurn)
    final = messages[-1]
    assert isinstance(final, FinalResult)
    assert final.num_turns == 2
    assert '"status": "solved"' in final.text
    assert final.cost_usd == pytest.approx(estimate_cost(options.model, {"input_tokens": 3000, "output_tokens": 150}))


@pytest.mark.anyio
@pytest.mark.parametrize("max_turns", [1, 2, 3])
async def test_turn_ceiling_allows_exactly_max_turns(max_turns):
    model = ScriptedChatModel(messages=(_tool_call_message(f"call_{n}") for n in itertools.count()))
    runtime = LangGraphAgentRuntime(model_factory=lambda options: model)
    options = RuntimeOptions(model="m", system_prompt="s", tools=[echo], max_turns=max_turns)
    seen: list = []

    with pytest.raises(AgentMaxTurnsError) as excinfo:
        async for message in runtime.stream("Fix issue #42", options):
            seen.append(message)

    assert excinfo.value.max_turns == max_turns
    assert sum(isinstance(message, AssistantTurn) for message in seen) == max_turns


@pytest.mark.anyio
async def test_api_status_errors_are_translated():
    model = RateLimitedChatModel(messages=iter([]))
    runtime = LangGraphAgentRuntime(model_factory=lambda options: model)

    with pytest.raises(AgentApiError) as excinfo:
        await _collect(runtime, RuntimeOptions(model="m", system_prompt="s", tools=[echo]))

    assert excinfo.value.status_code == 429
    assert excinfo.value.is_retryable


def test_partial_deltas_from_anthropic_chunks():
    chunk = AIMessageChunk(
        content=[
            {"type": "thinking", "thinking": "Maybe the handler", "index": 0},
            {"type": "text", "text": "Checking", "index": 1},
            {"type": "tool_use", "id": "c1", "name": "echo", "input": {}, "index": 2},
            {"type": "text", "text": "", "index": 3},
        ]
    )

    assert partial_deltas_from_chunk(chunk) == [
        PartialDelta(kind="thinking", text="Maybe the handler"),
        PartialDelta(kind="text", text="Checking"),
    ]
    assert partial_deltas_from_chunk(AIMessageChunk(content="")) == []


@pytest.mark.anyio
async def test_partial_output_streams_ahead_of_the_turn():
    text = "Looking at the login handler"
    model = ScriptedChatModel(messages=iter([AIMessage(content=text)]))
    runtime = LangGraphAgentRuntime(model_factory=lambda options: model)
    options = RuntimeOptions(model="m", system_prompt="s", include_partial=True)

    messages = await _collect(runtime, options)

    deltas = [message for message in messages if isinstance(message, PartialDelta)]
    turn_index = next(i for i, message in enumerate(messages) if isinstance(message, AssistantTurn))
    assert "".join(delta.text for delta in deltas) == text
    assert all(messages.index(delta) < turn_index for delta in deltas)
    assert messages[turn_index].blocks == (TextBlock(text=text),)
    assert messages[-1].text == text


@pytest.mark.anyio
async def test_no_partial_output_by_default():
    model = ScriptedChatModel(messages=iter([AIMessage(content="Done here")]))
    runtime = LangGraphAgentRuntime(model_factory=lambda options: model)

    messages = await _collect(runtime, RuntimeOptions(model="m", system_prompt="s"))

    assert not any(isinstance(message, PartialDelta) for message in messages)
    assert messages[-1].text == "Done here"
