"""
Shared data contracts for the AIR (auto issue resolver) packages.

This package is the single source of truth for the records exchanged between
the sandbox tooling, the agent runtime and its consumers: GitHub issue data,
sandbox results, agent events and reports, the ``Result`` type returned by
sandbox operations, and the error taxonomy. Everything here is plain data with
pydantic validation and has no I/O.
"""
from .agent import (
    AgentConfig,
    AgentPhase,
    AgentReport,
    AgentStatus,
    AlreadyFixedStatus,
    FailedStatus,
    FileChange,
    NeedsHumanStatus,
    PartialStatus,
    SolvedStatus,
)
from .constants import (
    AGENT_DEFAULTS,
    BISECT_MAX_STEPS,
    DEFAULT_MODEL,
    GIT_LOG_MAX_COUNT,
    MODEL_OPTIONS,
    MODELS,
    PREVIEW_PORT,
    SANDBOX_HOME,
    SANDBOX_TEMPLATE,
    TIMEOUTS,
)
from .errors import (
    AgentApiError,
    AgentCancelledError,
    AgentError,
    AgentMaxTurnsError,
    AppError,
    ConfigError,
    GitHubAuthError,
    GitHubError,
    GitHubRateLimitError,
    InteractionCancelledError,
    InvalidIssueUrlError,
    IssueNotFoundError,
    MissingEnvVarError,
    RepoNotFoundError,
    SandboxCommandError,
    SandboxError,
    SandboxNotInitializedError,
    SandboxTimeoutError,
    get_error_code,
    get_error_message,
    is_retryable,
)
from .events import (
    AGENT_EVENT_ADAPTER,
    AgentEvent,
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
)
from .github import GitHubComment, GitHubIssue, GitHubRepo, ParsedIssueUrl, parse_issue_url
from .result import Err, Ok, Result
from .sandbox import (
    BisectMarkResult,
    BisectResult,
    BrowserAction,
    BrowserResult,
    CommandResult,
    GitCommit,
    SandboxConfig,
    SandboxInfo,
)

__all__ = [
    "AgentConfig",
    "AgentPhase",
    "AgentReport",
    "AgentStatus",
    "AlreadyFixedStatus",
    "FailedStatus",
    "FileChange",
    "NeedsHumanStatus",
    "PartialStatus",
    "SolvedStatus",
    "AGENT_DEFAULTS",
    "BISECT_MAX_STEPS",
    "DEFAULT_MODEL",
    "GIT_LOG_MAX_COUNT",
    "MODEL_OPTIONS",
    "MODELS",
    "PREVIEW_PORT",
    "SANDBOX_HOME",
    "SANDBOX_TEMPLATE",
    "TIMEOUTS",
    "AgentApiError",
    "AgentCancelledError",
    "AgentError",
    "AgentMaxTurnsError",
    "AppError",
    "ConfigError",
    "GitHubAuthError",
    "GitHubError",
    "GitHubRateLimitError",
    "InteractionCancelledError",
    "InvalidIssueUrlError",
    "IssueNotFoundError",
    "MissingEnvVarError",
    "RepoNotFoundError",
    "SandboxCommandError",
    "SandboxError",
    "SandboxNotInitializedError",
    "SandboxTimeoutError",
    "get_error_code",
    "get_error_message",
    "is_retryable",
    "AGENT_EVENT_ADAPTER",
    "AgentEvent",
    "AskUserEvent",
    "CompleteEvent",
    "ErrorEvent",
    "MessageEvent",
    "PhaseChangeEvent",
    "ThinkingEvent",
    "ToolCallEvent",
    "ToolResultEvent",
    "TurnCompleteEvent",
    "assert_never_event",
    "GitHubComment",
    "GitHubIssue",
    "GitHubRepo",
    "ParsedIssueUrl",
    "parse_issue_url",
    "Err",
    "Ok",
    "Result",
    "BisectMarkResult",
    "BisectResult",
    "BrowserAction",
    "BrowserResult",
    "CommandResult",
    "GitCommit",
    "SandboxConfig",
    "SandboxInfo",
]
