"""Tests for github module."""
import pytest
from pydantic import ValidationError

from air_contracts.errors import InvalidIssueUrlError
from air_contracts.github import GitHubIssue, GitHubRepo, parse_issue_url


class TestParseIssueUrl:
    """Tests for parse_issue_url function."""

    def test_parses_canonical_url(self):
        result = parse_issue_url("https://github.com/acme/widgets/issues/42")
        assert result.is_ok()
        parsed = result.unwrap()
        assert parsed.owner == "acme"
        assert parsed.repo == "widgets"
        assert parsed.issue_number == 42

    def test_accepts_trailing_fragments(self):
        """Anchors and query strings after the number are ignored."""
        result = parse_issue_url("https://github.com/acme/widgets/issues/7#issuecomment-1")
        assert result.unwrap().issue_number == 7

    @pytest.mark.parametrize(
        "url",
        [
            "https://github.com/acme/widgets/pull/42",
            "https://github.com/acme/issues/42",
            "https://gitlab.com/acme/widgets/issues/42",
            "https://github.com/acme/widgets/issues/0",
            "not a url",
            "",
        ],
    )
    def test_rejects_invalid_urls(self, url):
        result = parse_issue_url(url)
        assert result.is_err()
        assert isinstance(result.error, InvalidIssueUrlError)
        assert "Expected: https://github.com/owner/repo/issues/123" in result.error.user_message


class TestGitHubModels:
    """Tests for GitHub issue and repository models."""

    def test_issue_defaults(self):
        issue = GitHubIssue(number=1, title="Broken")
        assert issue.body == ""
        assert issue.comments == ()
        assert issue.labels == ()
        assert issue.state == "open"

    def test_issue_rejects_unknown_state(self):
        with pytest.raises(ValidationError):
            GitHubIssue(number=1, title="Broken", state="merged")

    def test_repo_is_frozen(self):
        repo = GitHubRepo(
            owner="acme",
            name="widgets",
            full_name="acme/widgets",
            clone_url="https://github.com/acme/widgets.git",
        )
        with pytest.raises(ValidationError):
            repo.name = "other"
