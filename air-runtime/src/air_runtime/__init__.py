"""
Agent runtime for AIR: drives one issue-fixing run end to end.

The package wires the sandbox tool catalogue into a LangGraph agent, turns the
agent's stream into ``AgentEvent`` values, and builds the final report. The
public API is loaded lazily through ``__getattr__`` so importing the package
does not pull in the model stack until it is actually used.
"""

from importlib import import_module
from typing import Any, Dict, Tuple

__all__ = [
    "AppConfig",
    "AgentRunner",
    "run_agent",
    "LangGraphAgentRuntime",
    "RuntimeOptions",
    "InteractionBroker",
    "GitHubClient",
    "build_report",
    "parse_structured_report",
    "get_system_prompt",
    "format_issue_prompt",
    "configure_logging",
]


_ATTR_MODULE_MAP: Dict[str, Tuple[str, str]] = {
    "AppConfig": ("config", "AppConfig"),
    "AgentRunner": ("runner", "AgentRunner"),
    "run_agent": ("runner", "run_agent"),
    "LangGraphAgentRuntime": ("agent_stream", "LangGraphAgentRuntime"),
    "RuntimeOptions": ("agent_stream", "RuntimeOptions"),
    "InteractionBroker": ("interaction", "InteractionBroker"),
    "GitHubClient": ("github", "GitHubClient"),
    "build_report": ("report", "build_report"),
    "parse_structured_report": ("report", "parse_structured_report"),
    "get_system_prompt": ("prompts", "get_system_prompt"),
    "format_issue_prompt": ("prompts", "format_issue_prompt"),
    "configure_logging": ("logging_utils", "configure_logging"),
}


def __getattr__(name: str) -> Any:
    try:
        module_name, attribute = _ATTR_MODULE_MAP[name]
    except KeyError as exc:  # pragma: no cover - guard against typos
        raise AttributeError(f"module 'air_runtime' has no attribute {name!r}") from exc

    module = import_module(f".{module_name}", __name__)
    value = getattr(module, attribute)
    globals()[name] = value  # Cache for future lookups
    return value
