from __future__ import annotations

from typing import Final, Tuple


class MODELS:
    SONNET: Final[str] = "claude-sonnet-4-5-20250929"
    OPUS: Final[str] = "claude-opus-4-5-20251101"


DEFAULT_MODEL: Final[str] = MODELS.SONNET

# (id, display name, description)
MODEL_OPTIONS: Final[Tuple[Tuple[str, str, str], ...]] = (
    (MODELS.SONNET, "Claude Sonnet 4.5", "Fast and capable"),
    (MODELS.OPUS, "Claude Opus 4.5", "Most capable"),
)


class TIMEOUTS:
    """Operation ceilings, in seconds."""

    SANDBOX: Final[int] = 10 * 60
    COMMAND: Final[int] = 60
    CLONE: Final[int] = 120
    SEARCH: Final[int] = 30
    BROWSER: Final[int] = 60
    BISECT_STEP: Final[int] = 120


class AGENT_DEFAULTS:
    MAX_TURNS: Final[int | None] = None
    MAX_THINKING_TOKENS: Final[int] = 16_000
    INTERACTIVE: Final[bool] = True


SANDBOX_TEMPLATE: Final[str] = "air-sandbox"
SANDBOX_HOME: Final[str] = "/home/user"
PREVIEW_PORT: Final[int] = 3000
BISECT_MAX_STEPS: Final[int] = 20
GIT_LOG_MAX_COUNT: Final[int] = 50


__all__ = [
    "MODELS",
    "DEFAULT_MODEL",
    "MODEL_OPTIONS",
    "TIMEOUTS",
    "AGENT_DEFAULTS",
    "SANDBOX_TEMPLATE",
    "SANDBOX_HOME",
    "PREVIEW_PORT",
    "BISECT_MAX_STEPS",
    "GIT_LOG_MAX_COUNT",
]
