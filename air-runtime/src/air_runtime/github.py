"""
Minimal asynchronous GitHub REST client.

Only the two reads an agent run needs are implemented: the issue (with its
comments) and the repository metadata. Every call returns a ``Result`` so the
CLI can render ``user_message`` without unwinding a stack.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import httpx

from air_contracts import (
    Err,
    GitHubAuthError,
    GitHubComment,
    GitHubError,
    GitHubIssue,
    GitHubRateLimitError,
    GitHubRepo,
    IssueNotFoundError,
    Ok,
    ParsedIssueUrl,
    RepoNotFoundError,
    Result,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.github.com"
DEFAULT_TIMEOUT_SECONDS = 10.0
COMMENTS_PER_PAGE = 100


class _StatusError(Exception):
    """Internal carrier for a non-2xx response."""

    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


def _rate_limit_reset(response: httpx.Response) -> datetime:
    raw = response.headers.get("x-ratelimit-reset")
    if raw:
        try:
            return datetime.fromtimestamp(int(raw), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError):
            LOGGER.debug("Ignoring malformed x-ratelimit-reset header: %s", raw)
    return datetime.now(timezone.utc) + timedelta(seconds=60)


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.headers.get("x-ratelimit-remaining") == "0":
        return True
    try:
        payload = response.json()
    except ValueError:
        return "rate limit" in response.text.lower()
    message = payload.get("message", "") if isinstance(payload, dict) else ""
    return "rate limit" in str(message).lower()


def _map_error(
    exc: Exception,
    operation: str,
    parsed: ParsedIssueUrl,
    *,
    issue_lookup: bool,
) -> GitHubError:
    if isinstance(exc, _StatusError):
        response = exc.response
        status = response.status_code
        if status == 401:
            return GitHubAuthError(cause=exc)
        if status == 403:
            if _is_rate_limited(response):
                return GitHubRateLimitError(_rate_limit_reset(response))
            return GitHubAuthError(cause=exc)
        if status == 404:
            if issue_lookup:
                return IssueNotFoundError(parsed.owner, parsed.repo, parsed.issue_number)
            return RepoNotFoundError(parsed.owner, parsed.repo)
        return GitHubError(operation, f"HTTP {status}", cause=exc)
    return GitHubError(operation, str(exc) or type(exc).__name__, cause=exc)


def _issue_from_payload(issue: Dict[str, Any], comments: list[Dict[str, Any]]) -> GitHubIssue:
    labels = []
    for label in issue.get("labels") or []:
        name = label if isinstance(label, str) else (label or {}).get("name")
        if name:
            labels.append(name)

    return GitHubIssue(
        number=issue["number"],
        title=issue.get("title") or "",
        body=issue.get("body") or "",
        state="closed" if issue.get("state") == "closed" else "open",
        labels=tuple(labels),
        comments=tuple(
            GitHubComment(
                id=comment["id"],
                body=comment.get("body") or "",
                user=(comment.get("user") or {}).get("login") or "unknown",
                created_at=comment.get("created_at") or "",
            )
            for comment in comments
        ),
        html_url=issue.get("html_url") or "",
        created_at=issue.get("created_at") or "",
        updated_at=issue.get("updated_at") or "",
    )


def _repo_from_payload(data: Dict[str, Any]) -> GitHubRepo:
    return GitHubRepo(
        owner=(data.get("owner") or {}).get("login") or "",
        name=data["name"],
        full_name=data.get("full_name") or "",
        default_branch=data.get("default_branch") or "main",
        clone_url=data.get("clone_url") or "",
        is_private=bool(data.get("private", False)),
    )


class GitHubClient:
    """
    Thin wrapper over ``httpx.AsyncClient`` for the GitHub REST API.

    Use as an async context manager, or call :meth:`aclose` when done. A custom
    ``transport`` (for example ``httpx.MockTransport``) replaces the network.
    """

    def __init__(
        self,
        token: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "air-issue-resolver",
            },
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = await self._client.get(path, params=params)
        if response.status_code >= 400:
            raise _StatusError(response)
        return response.json()

    async def fetch_issue(self, parsed: ParsedIssueUrl) -> Result[GitHubIssue, GitHubError]:
        base = f"/repos/{parsed.owner}/{parsed.repo}/issues/{parsed.issue_number}"
        try:
            issue, comments = await asyncio.gather(
                self._get(base),
                self._get(f"{base}/comments", params={"per_page": COMMENTS_PER_PAGE}),
            )
            return Ok(_issue_from_payload(issue, comments or []))
        except (_StatusError, httpx.HTTPError, ValueError, KeyError) as exc:
            LOGGER.debug("Issue fetch failed for %s/%s#%s: %s", parsed.owner, parsed.repo, parsed.issue_number, exc)
            return Err(_map_error(exc, "fetch issue", parsed, issue_lookup=True))

    async def fetch_repo(self, parsed: ParsedIssueUrl) -> Result[GitHubRepo, GitHubError]:
        try:
            data = await self._get(f"/repos/{parsed.owner}/{parsed.repo}")
            return Ok(_repo_from_payload(data))
        except (_StatusError, httpx.HTTPError, ValueError, KeyError) as exc:
            LOGGER.debug("Repository fetch failed for %s/%s: %s", parsed.owner, parsed.repo, exc)
            return Err(_map_error(exc, "fetch repository", parsed, issue_lookup=False))

    async def fetch(self, parsed: ParsedIssueUrl) -> Result[tuple[GitHubIssue, GitHubRepo], GitHubError]:
        """Fetch the issue and its repository concurrently; the issue error wins when both fail."""
        issue_result, repo_result = await asyncio.gather(self.fetch_issue(parsed), self.fetch_repo(parsed))
        if issue_result.is_err():
            return issue_result
        if repo_result.is_err():
            return repo_result
        return Ok((issue_result.value, repo_result.value))


__all__ = ["GitHubClient", "DEFAULT_BASE_URL"]
