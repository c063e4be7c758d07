"""
Turn the agent's final free-form text into an ``AgentReport``.

The agent is asked to finish with a JSON object describing the outcome. The
parser looks for it in three places, in order of precedence:

1. a fenced block tagged ``json``;
2. any other fenced block whose object carries a ``status`` key;
3. the brace-balanced object enclosing a ``"status":`` key.

When nothing parses, the report falls back to ``failed`` (if the run ended in
error) or ``needs_human``.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterator, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from air_contracts import (
    AgentReport,
    AlreadyFixedStatus,
    FailedStatus,
    FileChange,
    GitHubIssue,
    GitHubRepo,
    NeedsHumanStatus,
    PartialStatus,
    SolvedStatus,
)

LOGGER = logging.getLogger(__name__)

SUMMARY_FALLBACK_CHARS = 500

_JSON_FENCE = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL)
_ANY_FENCE = re.compile(r"```(?:[\w+-]*\n)?\s*(.*?)\s*```", re.DOTALL)


class StructuredReport(BaseModel):
    """The JSON object the agent emits at the end of a run."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    status: Literal["solved", "already_fixed", "partial", "needs_human", "failed"]
    reproduced: bool = False
    summary: Optional[str] = None
    root_cause: Optional[str] = Field(default=None, validation_alias=AliasChoices("rootCause", "root_cause"))
    files_changed: List[str] = Field(
        default_factory=list, validation_alias=AliasChoices("filesChanged", "files_changed")
    )
    fix_description: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("fixDescription", "fix_description")
    )
    fixing_commit: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("fixingCommit", "fixing_commit")
    )
    remaining_work: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("remainingWork", "remaining_work")
    )
    blockers: Optional[List[str]] = None
    error: Optional[str] = None


def _validate(candidate: str, *, require_status: bool = False) -> Optional[StructuredReport]:
    try:
        payload = json.loads(candidate)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    if require_status and "status" not in payload:
        return None
    try:
        return StructuredReport.model_validate(payload)
    except ValidationError as exc:
        LOGGER.debug("Structured report rejected: %s", exc.errors(include_url=False))
        return None


_STATUS_KEY = re.compile(r'"status"\s*:')


def _balanced_end(text: str, start: int) -> Optional[int]:
    """Index of the ``}`` closing the ``{`` at ``start``, skipping braces inside JSON strings."""
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        current = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif current == "\\":
                escaped = True
            elif current == '"':
                in_string = False
            continue
        if current == '"':
            in_string = True
        elif current == "{":
            depth += 1
        elif current == "}":
            depth -= 1
            if depth == 0:
                return index
    return None


def _status_objects(text: str) -> Iterator[str]:
    """Yield the innermost balanced object enclosing each ``"status":`` key."""
    for match in _STATUS_KEY.finditer(text):
        start = text.rfind("{", 0, match.start())
        while start != -1:
            end = _balanced_end(text, start)
            if end is not None and end >= match.end():
                yield text[start : end + 1]
                break
            start = text.rfind("{", 0, start)


def parse_structured_report(text: str) -> Optional[StructuredReport]:
    if not text:
        return None

    for match in _JSON_FENCE.finditer(text):
        report = _validate(match.group(1))
        if report is not None:
            return report

    for match in _ANY_FENCE.finditer(text):
        report = _validate(match.group(1), require_status=True)
        if report is not None:
            return report

    for candidate in _status_objects(text):
        report = _validate(candidate, require_status=True)
        if report is not None:
            return report
    return None


def _status_from(parsed: StructuredReport, fallback_summary: str):
    summary = parsed.summary or fallback_summary
    if parsed.status == "solved":
        return SolvedStatus(summary=summary, fix_description=parsed.fix_description or "Fix applied")
    if parsed.status == "already_fixed":
        return AlreadyFixedStatus(summary=summary, fixing_commit=parsed.fixing_commit or "unknown")
    if parsed.status == "partial":
        return PartialStatus(summary=summary, remaining_work=parsed.remaining_work or "Additional work needed")
    if parsed.status == "needs_human":
        return NeedsHumanStatus(summary=summary, blockers=tuple(parsed.blockers or ("Human review required",)))
    return FailedStatus(summary=summary, error=parsed.error or "Agent failed")


def build_report(
    issue: GitHubIssue,
    repo: GitHubRepo,
    result_text: str,
    *,
    is_error: bool = False,
    turns: int = 0,
    duration_ms: int = 0,
    cost_usd: float = 0.0,
    sandbox_url: Optional[str] = None,
) -> AgentReport:
    """
    Build the final report from the agent's last message.

    Args:
        result_text: The agent's final text; may be empty.
        is_error: Whether the runtime flagged the final result as an error.
        sandbox_url: Preview URL captured before the sandbox was destroyed.
    """
    text = result_text or ""
    excerpt = text[:SUMMARY_FALLBACK_CHARS]
    parsed = parse_structured_report(text)

    if parsed is not None:
        return AgentReport(
            issue=issue,
            repo=repo,
            status=_status_from(parsed, excerpt),
            reproduced=parsed.reproduced,
            root_cause=parsed.root_cause,
            analysis=text,
            changes=tuple(FileChange(path=path) for path in parsed.files_changed),
            sandbox_url=sandbox_url,
            turns_used=turns,
            duration_ms=duration_ms,
            cost_usd=cost_usd,
        )

    LOGGER.info("No structured report found in final agent output (%d chars)", len(text))
    if is_error:
        status: Any = FailedStatus(summary=excerpt, error="Agent error")
    else:
        status = NeedsHumanStatus(summary=excerpt, blockers=("Could not parse structured output",))
    return AgentReport(
        issue=issue,
        repo=repo,
        status=status,
        analysis=text,
        sandbox_url=sandbox_url,
        turns_used=turns,
        duration_ms=duration_ms,
        cost_usd=cost_usd,
    )


def report_to_dict(report: AgentReport) -> dict:
    """Serialize a report with the camelCase keys used by the agent's JSON contract."""
    status = report.status
    status_payload: dict[str, Any] = {"type": status.type, "summary": status.summary}
    if isinstance(status, SolvedStatus):
        status_payload["fixDescription"] = status.fix_description
    elif isinstance(status, AlreadyFixedStatus):
        status_payload["fixingCommit"] = status.fixing_commit
    elif isinstance(status, PartialStatus):
        status_payload["remainingWork"] = status.remaining_work
    elif isinstance(status, NeedsHumanStatus):
        status_payload["blockers"] = list(status.blockers)
    else:
        status_payload["error"] = status.error

    return {
        "issue": {"number": report.issue.number, "title": report.issue.title, "url": report.issue.html_url},
        "repo": report.repo.full_name,
        "status": status_payload,
        "reproduced": report.reproduced,
        "rootCause": report.root_cause,
        "filesChanged": [change.path for change in report.changes],
        "sandboxUrl": report.sandbox_url,
        "turnsUsed": report.turns_used,
        "durationMs": report.duration_ms,
        "costUsd": report.cost_usd,
    }


__all__ = ["StructuredReport", "parse_structured_report", "build_report", "report_to_dict"]
