"""
GitHub issue and repository contracts.

These records are the only GitHub data the agent run consumes. They are
populated by the runtime's HTTP client and are immutable once built.
"""
from __future__ import annotations

import re
from typing import Literal, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .errors import InvalidIssueUrlError
from .result import Err, Ok, Result

_ISSUE_URL_PATTERN = re.compile(r"github\.com/([^/]+)/([^/]+)/issues/(\d+)")


class GitHubComment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    body: str = ""
    user: str = "unknown"
    created_at: str = ""


class GitHubIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    number: int
    title: str
    body: str = ""
    state: Literal["open", "closed"] = "open"
    labels: Tuple[str, ...] = ()
    comments: Tuple[GitHubComment, ...] = ()
    html_url: str = ""
    created_at: str = ""
    updated_at: str = ""


class GitHubRepo(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner: str
    name: str
    full_name: str
    default_branch: str = "main"
    clone_url: str
    is_private: bool = Field(default=False, description="Whether the repository is private.")


class ParsedIssueUrl(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner: str
    repo: str
    issue_number: int


def parse_issue_url(url: str) -> Result[ParsedIssueUrl, InvalidIssueUrlError]:
    """
    Extract owner, repository and issue number from a GitHub issue URL.

    Any host prefix is accepted as long as the path contains
    ``github.com/{owner}/{repo}/issues/{number}`` with a positive number.
    """
    match = _ISSUE_URL_PATTERN.search(url or "")
    if not match:
        return Err(InvalidIssueUrlError(url))

    owner, repo, raw_number = match.groups()
    number = int(raw_number)
    if not owner or not repo or number <= 0:
        return Err(InvalidIssueUrlError(url))
    return Ok(ParsedIssueUrl(owner=owner, repo=repo, issue_number=number))


__all__ = [
    "GitHubComment",
    "GitHubIssue",
    "GitHubRepo",
    "ParsedIssueUrl",
    "parse_issue_url",
]
