"""
Error taxonomy shared by every AIR component.

Each error carries two messages: ``message`` is the internal diagnostic that
ends up in logs, while ``user_message`` is safe to show to a human. Sandbox
operations never raise these errors across the tool boundary; they return them
inside an ``Err`` (see :mod:`air_contracts.result`).
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class AppError(Exception):
    """Base class for all application errors."""

    code: str = "APP_ERROR"
    is_retryable: bool = False

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.timestamp = datetime.now(timezone.utc)
        if cause is not None:
            self.__cause__ = cause

    @property
    def user_message(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        cause = self.__cause__
        return {
            "name": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "timestamp": self.timestamp.isoformat(timespec="seconds"),
            "cause": str(cause) if cause is not None else None,
        }


# -- configuration ---------------------------------------------------------


class ConfigError(AppError):
    code = "CONFIG_ERROR"

    def __init__(self, field: str, reason: str, *, cause: Optional[BaseException] = None) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"Configuration error for '{field}': {reason}", cause=cause)

    @property
    def user_message(self) -> str:
        return f"Configuration error: {self.field} - {self.reason}"


class MissingEnvVarError(ConfigError):
    code = "MISSING_ENV_VAR"

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name
        super().__init__(var_name, f"Environment variable {var_name} is required")

    @property
    def user_message(self) -> str:
        return f"Missing required environment variable: {self.var_name}"


# -- github ------------------------------------------------------------------


class GitHubError(AppError):
    code = "GITHUB_ERROR"

    def __init__(self, operation: str, message: str, *, cause: Optional[BaseException] = None) -> None:
        self.operation = operation
        super().__init__(f"GitHub {operation}: {message}", cause=cause)

    @property
    def user_message(self) -> str:
        return f"GitHub error during {self.operation}. Check your token and permissions."


class InvalidIssueUrlError(AppError):
    code = "INVALID_ISSUE_URL"

    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(f"Invalid GitHub issue URL: {url}")

    @property
    def user_message(self) -> str:
        return "Invalid URL format. Expected: https://github.com/owner/repo/issues/123"


class IssueNotFoundError(GitHubError):
    code = "ISSUE_NOT_FOUND"

    def __init__(self, owner: str, repo: str, issue_number: int) -> None:
        self.owner = owner
        self.repo = repo
        self.issue_number = issue_number
        super().__init__("fetch issue", f"Issue #{issue_number} not found in {owner}/{repo}")

    @property
    def user_message(self) -> str:
        return f"Issue #{self.issue_number} not found in {self.owner}/{self.repo}"


class RepoNotFoundError(GitHubError):
    code = "REPO_NOT_FOUND"

    def __init__(self, owner: str, repo: str) -> None:
        self.owner = owner
        self.repo = repo
        super().__init__("fetch repository", f"Repository {owner}/{repo} not found")

    @property
    def user_message(self) -> str:
        return f"Repository {self.owner}/{self.repo} not found or not accessible"


class GitHubAuthError(GitHubError):
    code = "GITHUB_AUTH_ERROR"

    def __init__(self, *, cause: Optional[BaseException] = None) -> None:
        super().__init__("authenticate", "Invalid or expired token", cause=cause)

    @property
    def user_message(self) -> str:
        return "GitHub authentication failed. Check your GITHUB_TOKEN."


class GitHubRateLimitError(GitHubError):
    code = "GITHUB_RATE_LIMIT"
    is_retryable = True

    def __init__(self, reset_at: datetime) -> None:
        self.reset_at = reset_at
        super().__init__("rate limit", f"Rate limited until {reset_at.isoformat(timespec='seconds')}")

    @property
    def user_message(self) -> str:
        return f"GitHub rate limit exceeded. Resets at {self.reset_at.strftime('%H:%M:%S %Z').strip()}"


# -- sandbox -----------------------------------------------------------------


class SandboxError(AppError):
    code = "SANDBOX_ERROR"

    def __init__(self, operation: str, message: str, *, cause: Optional[BaseException] = None) -> None:
        self.operation = operation
        self.detail = message
        super().__init__(f"Sandbox {operation}: {message}", cause=cause)

    @property
    def user_message(self) -> str:
        return f"Sandbox error during {self.operation}: {self.detail}"


class SandboxTimeoutError(SandboxError):
    code = "SANDBOX_TIMEOUT"
    is_retryable = True

    def __init__(self, operation: str, timeout_seconds: float, *, cause: Optional[BaseException] = None) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(operation, f"Timed out after {timeout_seconds}s", cause=cause)

    @property
    def user_message(self) -> str:
        return f"Operation timed out after {round(self.timeout_seconds)}s"


class SandboxCommandError(SandboxError):
    code = "SANDBOX_COMMAND_ERROR"

    def __init__(self, command: str, exit_code: int, stderr: str) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__("run command", f"Exit code {exit_code}")

    @property
    def user_message(self) -> str:
        return f"Command failed (exit {self.exit_code})"


class SandboxNotInitializedError(SandboxError):
    code = "SANDBOX_NOT_INITIALIZED"

    def __init__(self) -> None:
        super().__init__("access", "Sandbox not initialized. Call clone first.")

    @property
    def user_message(self) -> str:
        return "Sandbox not ready. Repository must be cloned first."


# -- agent -------------------------------------------------------------------


class AgentError(AppError):
    code = "AGENT_ERROR"

    def __init__(self, phase: str, message: str, *, cause: Optional[BaseException] = None) -> None:
        self.phase = phase
        super().__init__(f"Agent error in {phase}: {message}", cause=cause)

    @property
    def user_message(self) -> str:
        return f"Agent error during {self.phase}"


class AgentMaxTurnsError(AgentError):
    code = "AGENT_MAX_TURNS"

    def __init__(self, max_turns: int, *, cause: Optional[BaseException] = None) -> None:
        self.max_turns = max_turns
        super().__init__("execution", f"Reached max turns ({max_turns})", cause=cause)

    @property
    def user_message(self) -> str:
        return f"Agent reached maximum turns ({self.max_turns}) without completing"


class AgentApiError(AgentError):
    code = "AGENT_API_ERROR"

    def __init__(self, status_code: int, message: str, *, cause: Optional[BaseException] = None) -> None:
        self.status_code = status_code
        super().__init__("API call", message, cause=cause)

    @property
    def is_retryable(self) -> bool:  # type: ignore[override]
        return self.status_code in {429, 500, 502, 503}

    @property
    def user_message(self) -> str:
        if self.status_code == 401:
            return "API authentication failed. Check ANTHROPIC_API_KEY."
        if self.status_code == 429:
            return "API rate limited. Please wait and retry."
        if self.status_code in {500, 502, 503}:
            return "API temporarily unavailable. Please retry."
        return f"API error ({self.status_code})"


class AgentCancelledError(AgentError):
    code = "AGENT_CANCELLED"

    def __init__(self, reason: str = "Run cancelled") -> None:
        super().__init__("execution", reason)

    @property
    def user_message(self) -> str:
        return "Agent run was cancelled"


class InteractionCancelledError(AppError):
    """A pending question to the human was withdrawn before it was answered."""

    code = "INTERACTION_CANCELLED"

    def __init__(self, reason: str = "Question cancelled") -> None:
        self.reason = reason
        super().__init__(reason)


def get_error_message(error: BaseException | object) -> str:
    """Return the message that may be shown to a human for ``error``."""
    if isinstance(error, AppError):
        return error.user_message
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return str(error)


def get_error_code(error: BaseException | object) -> str:
    if isinstance(error, AppError):
        return error.code
    if isinstance(error, BaseException):
        return type(error).__name__
    return "UNKNOWN_ERROR"


def is_retryable(error: BaseException | object) -> bool:
    return isinstance(error, AppError) and bool(error.is_retryable)


__all__ = [
    "AppError",
    "ConfigError",
    "MissingEnvVarError",
    "GitHubError",
    "InvalidIssueUrlError",
    "IssueNotFoundError",
    "RepoNotFoundError",
    "GitHubAuthError",
    "GitHubRateLimitError",
    "SandboxError",
    "SandboxTimeoutError",
    "SandboxCommandError",
    "SandboxNotInitializedError",
    "AgentError",
    "AgentMaxTurnsError",
    "AgentApiError",
    "AgentCancelledError",
    "InteractionCancelledError",
    "get_error_message",
    "get_error_code",
    "is_retryable",
]
