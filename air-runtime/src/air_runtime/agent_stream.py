"""
The agent runtime seam: a closed set of stream messages and the LangGraph
implementation that produces them.

The runner only ever sees :data:`RuntimeMessage` values. ``LangGraphAgentRuntime``
builds a two-node driver/tools graph around an Anthropic chat model, streams
its state updates, and converts each ``AIMessage`` into an
:class:`AssistantTurn` and each ``ToolMessage`` into a :class:`ToolResult`.
With ``include_partial`` set it also streams model tokens and yields them as
:class:`PartialDelta` values ahead of the turn they belong to.
When the graph finishes it synthesizes a :class:`FinalResult` carrying the
last assistant text and the accumulated cost.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Literal, Mapping, Optional, Protocol, Sequence, Tuple, Union

import anthropic
from langchain.chat_models import init_chat_model
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, AnyMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.tools import BaseTool
from langgraph.errors import GraphRecursionError
from langgraph.graph import END, START, MessagesState, StateGraph
from langgraph.prebuilt import ToolNode, tools_condition

from air_contracts import AGENT_DEFAULTS, AgentApiError, AgentError, AgentMaxTurnsError

LOGGER = logging.getLogger(__name__)

# Each turn is one driver step plus one tools step.
STEPS_PER_TURN = 2
UNBOUNDED_RECURSION_LIMIT = 1_000
MIN_THINKING_BUDGET = 1_024
RESPONSE_TOKEN_HEADROOM = 8_192


# -- stream messages -----------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ThinkingBlock:
    text: str


@dataclass(frozen=True, slots=True)
class TextBlock:
    text: str


@dataclass(frozen=True, slots=True)
class ToolUseBlock:
    id: str
    name: str
    input: Any = None


ContentBlock = Union[ThinkingBlock, TextBlock, ToolUseBlock]


@dataclass(frozen=True, slots=True)
class SystemInit:
    model: str = ""
    tools: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class AssistantTurn:
    blocks: Tuple[ContentBlock, ...] = ()


@dataclass(frozen=True, slots=True)
class ToolResult:
    call_id: str
    payload: Any = None
    is_error: bool = False


@dataclass(frozen=True, slots=True)
class PartialDelta:
    """A fragment of a turn that is still being generated."""

    kind: Literal["text", "thinking"]
    text: str


@dataclass(frozen=True, slots=True)
class FinalResult:
    text: str = ""
    is_error: bool = False
    cost_usd: float = 0.0
    num_turns: int = 0


RuntimeMessage = Union[SystemInit, PartialDelta, AssistantTurn, ToolResult, FinalResult]


@dataclass(slots=True)
class RuntimeOptions:
    model: str
    system_prompt: str
    tools: Sequence[BaseTool] = field(default_factory=tuple)
    max_thinking_tokens: int = AGENT_DEFAULTS.MAX_THINKING_TOKENS
    max_turns: Optional[int] = AGENT_DEFAULTS.MAX_TURNS
    api_key: Optional[str] = None
    include_partial: bool = False


class AgentRuntime(Protocol):
    def stream(self, prompt: str, options: RuntimeOptions) -> AsyncIterator[RuntimeMessage]:
        ...


def is_tool_result_success(payload: Any, is_error: bool = False) -> bool:
    """A tool result succeeded unless flagged as an error by the transport or by its own payload."""
    if is_error:
        return False
    if isinstance(payload, Mapping):
        for key in ("is_error", "isError"):
            if key in payload:
                return not bool(payload[key])
        if "success" in payload:
            return bool(payload["success"])
    return True


# -- cost ----------------------------------------------------------------------

# USD per million tokens: (input, output, cache read, cache write).
_PRICES: Dict[str, Tuple[float, float, float, float]] = {
    "claude-opus-4-5": (5.0, 25.0, 0.50, 6.25),
    "claude-opus-4-1": (15.0, 75.0, 1.50, 18.75),
    "claude-opus-4": (15.0, 75.0, 1.50, 18.75),
    "claude-sonnet-4-5": (3.0, 15.0, 0.30, 3.75),
    "claude-sonnet-4": (3.0, 15.0, 0.30, 3.75),
    "claude-haiku-4-5": (1.0, 5.0, 0.10, 1.25),
}
_DEFAULT_PRICE = _PRICES["claude-sonnet-4-5"]


def _price_for(model: str) -> Tuple[float, float, float, float]:
    for prefix in sorted(_PRICES, key=len, reverse=True):
        if model.startswith(prefix):
            return _PRICES[prefix]
    LOGGER.debug("No price entry for %s; using default pricing", model)
    return _DEFAULT_PRICE


def estimate_cost(model: str, usage: Optional[Mapping[str, Any]]) -> float:
    """Cost in USD for one response's ``usage_metadata``."""
    if not usage:
        return 0.0
    input_price, output_price, cache_read_price, cache_write_price = _price_for(model)
    details = usage.get("input_token_details") or {}
    cache_read = int(details.get("cache_read") or 0)
    cache_write = int(details.get("cache_creation") or 0)
    fresh_input = max(0, int(usage.get("input_tokens") or 0) - cache_read - cache_write)
    output = int(usage.get("output_tokens") or 0)
    total = (
        fresh_input * input_price
        + output * output_price
        + cache_read * cache_read_price
        + cache_write * cache_write_price
    )
    return total / 1_000_000


# -- message conversion ----------------------------------------------------------


def assistant_turn_from_message(message: AIMessage) -> AssistantTurn:
    """Split an ``AIMessage`` into ordered thinking, text and tool-use blocks."""
    blocks: List[ContentBlock] = []
    seen_tool_ids: set[str] = set()
    content = message.content

    if isinstance(content, str):
        if content.strip():
            blocks.append(TextBlock(text=content))
    else:
        for item in content:
            if isinstance(item, str):
                if item.strip():
                    blocks.append(TextBlock(text=item))
                continue
            if not isinstance(item, dict):
                continue
            kind = item.get("type")
            if kind == "thinking":
                blocks.append(ThinkingBlock(text=str(item.get("thinking", ""))))
            elif kind == "text":
                text = str(item.get("text", ""))
                if text.strip():
                    blocks.append(TextBlock(text=text))
            elif kind == "tool_use":
                tool_id = str(item.get("id", ""))
                seen_tool_ids.add(tool_id)
                blocks.append(ToolUseBlock(id=tool_id, name=str(item.get("name", "")), input=item.get("input")))

    for call in message.tool_calls:
        call_id = call.get("id") or ""
        if call_id in seen_tool_ids:
            continue
        blocks.append(ToolUseBlock(id=call_id, name=call["name"], input=call.get("args")))
    return AssistantTurn(blocks=tuple(blocks))


def tool_result_from_message(message: ToolMessage) -> ToolResult:
    artifact = message.artifact
    payload = artifact if isinstance(artifact, Mapping) else message.content
    return ToolResult(
        call_id=message.tool_call_id,
        payload=payload,
        is_error=message.status == "error",
    )


def partial_deltas_from_chunk(chunk: AIMessageChunk) -> List[PartialDelta]:
    content = chunk.content
    if isinstance(content, str):
        return [PartialDelta(kind="text", text=content)] if content else []
    deltas: List[PartialDelta] = []
    for part in content:
        if isinstance(part, str):
            if part:
                deltas.append(PartialDelta(kind="text", text=part))
            continue
        if not isinstance(part, Mapping):
            continue
        kind = part.get("type")
        if kind == "text" and part.get("text"):
            deltas.append(PartialDelta(kind="text", text=part["text"]))
        elif kind == "thinking" and part.get("thinking"):
            deltas.append(PartialDelta(kind="thinking", text=part["thinking"]))
    return deltas


def final_text(turn: AssistantTurn) -> str:
    return "\n".join(block.text for block in turn.blocks if isinstance(block, TextBlock))


# -- LangGraph runtime -------------------------------------------------------------


def default_model_factory(options: RuntimeOptions) -> BaseChatModel:
    kwargs: Dict[str, Any] = {}
    budget = options.max_thinking_tokens
    if budget > 0:
        budget = max(budget, MIN_THINKING_BUDGET)
        kwargs["thinking"] = {"type": "enabled", "budget_tokens": budget}
        kwargs["max_tokens"] = budget + RESPONSE_TOKEN_HEADROOM
    else:
        kwargs["max_tokens"] = RESPONSE_TOKEN_HEADROOM
    if options.api_key:
        kwargs["api_key"] = options.api_key
    return init_chat_model(f"anthropic:{options.model}", **kwargs)


def recursion_limit_for(max_turns: Optional[int]) -> int:
    """A turn is one driver step plus one tool step, so the graph stops before model call ``max_turns + 1``."""
    if max_turns is None:
        return UNBOUNDED_RECURSION_LIMIT
    return max_turns * STEPS_PER_TURN


class LangGraphAgentRuntime:
    """
    Default runtime: a driver node calling the chat model and a ``ToolNode``
    executing its tool calls, looping until the model stops calling tools.

    Args:
        model_factory: Builds the chat model from the run options. Tests pass a
            fake model here.
    """

    def __init__(self, model_factory: Optional[Callable[[RuntimeOptions], BaseChatModel]] = None) -> None:
        self._model_factory = model_factory or default_model_factory

    def build_graph(self, options: RuntimeOptions):
        llm = self._model_factory(options)
        tools = list(options.tools)
        llm_with_tools = llm.bind_tools(tools) if tools else llm
        system_message = SystemMessage(content=options.system_prompt)

        async def driver(state: MessagesState) -> Dict[str, List[AnyMessage]]:
            msgs: List[AnyMessage] = state["messages"]
            ai_msg = await llm_with_tools.ainvoke([system_message, *msgs])
            return {"messages": [ai_msg]}

        workflow = StateGraph(MessagesState)
        workflow.add_node("driver", driver)
        workflow.add_edge(START, "driver")
        if tools:
            workflow.add_node("tools", ToolNode(tools, handle_tool_errors=True))
            workflow.add_conditional_edges("driver", tools_condition, {"tools": "tools", END: END})
            workflow.add_edge("tools", "driver")
        else:
            workflow.add_edge("driver", END)
        return workflow.compile()

    async def stream(self, prompt: str, options: RuntimeOptions) -> AsyncIterator[RuntimeMessage]:
        graph = self.build_graph(options)
        limit = recursion_limit_for(options.max_turns)
        yield SystemInit(model=options.model, tools=tuple(tool.name for tool in options.tools))

        turns = 0
        cost = 0.0
        last_text = ""
        stream_mode: Any = ["updates", "messages"] if options.include_partial else "updates"
        try:
            async for item in graph.astream(
                {"messages": [HumanMessage(content=prompt)]},
                config={"recursion_limit": limit},
                stream_mode=stream_mode,
            ):
                mode, payload = item if options.include_partial else ("updates", item)
                if mode == "messages":
                    chunk = payload[0]
                    if isinstance(chunk, AIMessageChunk):
                        for delta in partial_deltas_from_chunk(chunk):
                            yield delta
                    continue
                for node_update in payload.values():
                    if not isinstance(node_update, dict):
                        continue
                    for message in node_update.get("messages", []):
                        if isinstance(message, AIMessage):
                            turns += 1
                            cost += estimate_cost(options.model, message.usage_metadata)
                            turn = assistant_turn_from_message(message)
                            last_text = final_text(turn) or last_text
                            yield turn
                        elif isinstance(message, ToolMessage):
                            yield tool_result_from_message(message)
        except GraphRecursionError as exc:
            raise AgentMaxTurnsError(options.max_turns or turns, cause=exc) from exc
        except anthropic.APIStatusError as exc:
            raise AgentApiError(exc.status_code, exc.message, cause=exc) from exc
        except anthropic.APIConnectionError as exc:
            raise AgentError("API call", str(exc), cause=exc) from exc

        LOGGER.info("Agent graph finished after %d turn(s), estimated cost $%.4f", turns, cost)
        yield FinalResult(text=last_text, is_error=False, cost_usd=cost, num_turns=turns)


__all__ = [
    "AgentRuntime",
    "AssistantTurn",
    "ContentBlock",
    "FinalResult",
    "LangGraphAgentRuntime",
    "PartialDelta",
    "RuntimeMessage",
    "RuntimeOptions",
    "SystemInit",
    "TextBlock",
    "ThinkingBlock",
    "ToolResult",
    "ToolUseBlock",
    "assistant_turn_from_message",
    "default_model_factory",
    "estimate_cost",
    "is_tool_result_success",
    "partial_deltas_from_chunk",
    "recursion_limit_for",
    "tool_result_from_message",
]
