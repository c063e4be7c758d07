"""
Runtime configuration loaded from environment variables.

``AppConfig.from_environment()`` builds the full configuration tree once per
process entry point; the result is passed down explicitly rather than cached
at module level. Credentials are required, everything else has a default.

Environment variables:

- ``GITHUB_TOKEN``, ``ANTHROPIC_API_KEY``, ``E2B_API_KEY``: required.
- ``E2B_TIMEOUT_SECONDS`` (600), ``E2B_TEMPLATE`` (``air-sandbox``).
- ``AIR_ENABLE_BROWSER`` (false): request the Playwright MCP gateway.
- ``AGENT_MAX_TURNS`` (unset), ``AGENT_MAX_THINKING_TOKENS`` (16000),
  ``AGENT_DEFAULT_MODEL``, ``AGENT_INTERACTIVE`` (true).
"""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from air_contracts import (
    AGENT_DEFAULTS,
    DEFAULT_MODEL,
    SANDBOX_TEMPLATE,
    TIMEOUTS,
    AgentConfig,
    ConfigError,
    MissingEnvVarError,
    SandboxConfig,
)

_BOOL_TRUE = {"1", "true", "yes", "on"}
_BOOL_FALSE = {"0", "false", "no", "off"}


def _env_required(env: Mapping[str, str], name: str) -> str:
    value = env.get(name)
    if value is None or not value.strip():
        raise MissingEnvVarError(name)
    return value.strip()


def _env_flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    normalized = raw.strip().lower()
    if normalized in _BOOL_TRUE:
        return True
    if normalized in _BOOL_FALSE:
        return False
    raise ConfigError(name, f"Expected a boolean, got: {raw}")


def _env_int(env: Mapping[str, str], name: str, default: Optional[int], *, minimum: int = 1) -> Optional[int]:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ConfigError(name, f"Expected number, got: {raw}") from None
    if value < minimum:
        raise ConfigError(name, f"Must be at least {minimum}, got: {value}")
    return value


@dataclass(slots=True, frozen=True)
class GitHubSettings:
    token: str


@dataclass(slots=True, frozen=True)
class AnthropicSettings:
    api_key: str


@dataclass(slots=True, frozen=True)
class E2BSettings:
    api_key: str
    timeout_seconds: int = TIMEOUTS.SANDBOX
    template: str = SANDBOX_TEMPLATE
    enable_browser: bool = False


@dataclass(slots=True, frozen=True)
class AgentSettings:
    max_turns: Optional[int] = AGENT_DEFAULTS.MAX_TURNS
    max_thinking_tokens: int = AGENT_DEFAULTS.MAX_THINKING_TOKENS
    default_model: str = DEFAULT_MODEL
    interactive: bool = AGENT_DEFAULTS.INTERACTIVE


@dataclass(slots=True, frozen=True)
class AppConfig:
    github: GitHubSettings
    anthropic: AnthropicSettings
    e2b: E2BSettings
    agent: AgentSettings

    @classmethod
    def from_environment(cls, env: Optional[Mapping[str, str]] = None) -> "AppConfig":
        """
        Build the configuration from ``env`` (``os.environ`` by default).

        Raises:
            MissingEnvVarError: When a required credential is absent.
            ConfigError: When a value cannot be parsed.
        """
        source = os.environ if env is None else env
        return cls(
            github=GitHubSettings(token=_env_required(source, "GITHUB_TOKEN")),
            anthropic=AnthropicSettings(api_key=_env_required(source, "ANTHROPIC_API_KEY")),
            e2b=E2BSettings(
                api_key=_env_required(source, "E2B_API_KEY"),
                timeout_seconds=_env_int(source, "E2B_TIMEOUT_SECONDS", TIMEOUTS.SANDBOX),
                template=(source.get("E2B_TEMPLATE") or SANDBOX_TEMPLATE).strip(),
                enable_browser=_env_flag(source, "AIR_ENABLE_BROWSER", False),
            ),
            agent=AgentSettings(
                max_turns=_env_int(source, "AGENT_MAX_TURNS", AGENT_DEFAULTS.MAX_TURNS),
                max_thinking_tokens=_env_int(
                    source, "AGENT_MAX_THINKING_TOKENS", AGENT_DEFAULTS.MAX_THINKING_TOKENS, minimum=0
                ),
                default_model=(source.get("AGENT_DEFAULT_MODEL") or DEFAULT_MODEL).strip(),
                interactive=_env_flag(source, "AGENT_INTERACTIVE", AGENT_DEFAULTS.INTERACTIVE),
            ),
        )

    def with_overrides(
        self,
        *,
        model: Optional[str] = None,
        max_turns: Optional[int] = None,
        interactive: Optional[bool] = None,
        enable_browser: Optional[bool] = None,
    ) -> "AppConfig":
        agent = self.agent
        if model is not None:
            agent = replace(agent, default_model=model)
        if max_turns is not None:
            agent = replace(agent, max_turns=max_turns)
        if interactive is not None:
            agent = replace(agent, interactive=interactive)
        e2b = self.e2b if enable_browser is None else replace(self.e2b, enable_browser=enable_browser)
        return replace(self, agent=agent, e2b=e2b)

    def agent_config(self) -> AgentConfig:
        return AgentConfig(
            model=self.agent.default_model,
            max_turns=self.agent.max_turns,
            max_thinking_tokens=self.agent.max_thinking_tokens,
            interactive=self.agent.interactive,
        )

    def sandbox_config(self) -> SandboxConfig:
        return SandboxConfig(
            api_key=self.e2b.api_key,
            timeout_seconds=self.e2b.timeout_seconds,
            github_token=self.github.token,
            enable_browser_gateway=self.e2b.enable_browser,
            template=self.e2b.template,
        )


__all__ = ["AppConfig", "GitHubSettings", "AnthropicSettings", "E2BSettings", "AgentSettings"]
