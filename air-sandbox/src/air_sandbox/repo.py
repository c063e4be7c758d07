"""
Repository operations: clone, history search, checkout and bisection.

Bisection state lives in the sandbox's working tree, so every exit path of
:func:`git_bisect_run` ends with ``git bisect reset``.
"""
from __future__ import annotations

import logging
import posixpath
import re
import shlex
from datetime import date, datetime
from typing import Iterable, List, Literal, Optional, Sequence

from pydantic import ValidationError

from air_contracts import (
    BISECT_MAX_STEPS,
    GIT_LOG_MAX_COUNT,
    SANDBOX_HOME,
    TIMEOUTS,
    BisectMarkResult,
    BisectResult,
    Err,
    GitCommit,
    Ok,
    Result,
    SandboxError,
    SandboxNotInitializedError,
    SandboxTimeoutError,
)

from .commands import run_command
from .manager import SandboxManager

LOGGER = logging.getLogger(__name__)

GITHUB_PREFIX = "https://github.com/"
COMMIT_FORMAT = "%H|%aI|%s"
_BRACKETED_COMMIT = re.compile(r"\[([a-f0-9]+)\]")
_FIRST_BAD_COMMIT = re.compile(r"([a-f0-9]{40}) is the first bad commit")

BisectMark = Literal["good", "bad", "skip"]


def _authenticated_url(clone_url: str, token: Optional[str]) -> str:
    if token and clone_url.startswith(GITHUB_PREFIX):
        return clone_url.replace(GITHUB_PREFIX, f"https://{token}@github.com/", 1)
    return clone_url


def _scrub(text: str, token: Optional[str]) -> str:
    if token:
        return text.replace(token, "***")
    return text


def repo_dir_name(clone_url: str) -> str:
    name = clone_url.rstrip("/").split("/")[-1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    return name or "repo"


async def clone_repo(
    manager: SandboxManager,
    clone_url: str,
    branch: Optional[str] = None,
) -> Result[str, SandboxError]:
    """Clone ``clone_url`` into the sandbox home and record it as the repo root."""
    if manager.sandbox is None:
        return Err(SandboxNotInitializedError())

    token = manager.github_token
    repo_path = posixpath.join(SANDBOX_HOME, repo_dir_name(clone_url))
    parts = ["git", "clone"]
    if branch:
        parts += ["--branch", shlex.quote(branch)]
    parts += [shlex.quote(_authenticated_url(clone_url, token)), shlex.quote(repo_path)]

    result = await run_command(
        manager,
        " ".join(parts),
        timeout=TIMEOUTS.CLONE,
        cwd=SANDBOX_HOME,
        operation="clone",
        redact=(token,) if token else (),
    )
    if result.is_err():
        error = result.error
        if isinstance(error, SandboxTimeoutError):
            return Err(SandboxTimeoutError("clone", TIMEOUTS.CLONE))
        return Err(SandboxError("clone", _scrub(error.detail, token)))

    output = result.value
    if output.exit_code != 0:
        return Err(SandboxError("clone", _scrub(output.stderr.strip(), token) or "Clone failed"))

    manager.repo_path = repo_path
    LOGGER.info("Cloned %s into %s", clone_url, repo_path)
    return Ok(repo_path)


def parse_commit_line(line: str) -> Optional[GitCommit]:
    """Parse one ``%H|%aI|%s`` line; the subject may itself contain ``|``."""
    parts = line.split("|", 2)
    if len(parts) < 3:
        return None
    commit_hash, commit_date, message = parts
    try:
        return GitCommit(hash=commit_hash.strip(), date=commit_date.strip(), message=message)
    except ValidationError:
        LOGGER.debug("Skipping unparsable commit line: %r", line)
        return None


def filter_commits(commits: Iterable[GitCommit], search_terms: Optional[Sequence[str]]) -> List[GitCommit]:
    commits = list(commits)
    terms = [term.lower() for term in (search_terms or []) if term]
    if not terms:
        return commits
    return [commit for commit in commits if any(term in commit.message.lower() for term in terms)]


async def get_commits_since(
    manager: SandboxManager,
    since: date,
    *,
    search_terms: Optional[Sequence[str]] = None,
    max_count: int = GIT_LOG_MAX_COUNT,
) -> Result[List[GitCommit], SandboxError]:
    if manager.sandbox is None:
        return Err(SandboxNotInitializedError())

    since_day = since.date() if isinstance(since, datetime) else since
    command = (
        f"git log --since={since_day.isoformat()} "
        f"--format={shlex.quote(COMMIT_FORMAT)} -n {int(max_count)}"
    )
    result = await run_command(manager, command, timeout=TIMEOUTS.SEARCH, operation="git log")
    if result.is_err():
        return result
    output = result.value
    if output.exit_code != 0:
        return Err(SandboxError("git log", output.stderr.strip() or f"exit code {output.exit_code}"))

    commits = [commit for commit in map(parse_commit_line, output.stdout.split("\n")) if commit]
    return Ok(filter_commits(commits, search_terms))


async def git_checkout(manager: SandboxManager, ref: str) -> Result[str, SandboxError]:
    if manager.sandbox is None:
        return Err(SandboxNotInitializedError())
    result = await run_command(
        manager,
        f"git checkout {shlex.quote(ref)}",
        timeout=TIMEOUTS.SEARCH,
        operation="git checkout",
    )
    if result.is_err():
        return result
    output = result.value
    if output.exit_code != 0:
        return Err(SandboxError("git checkout", output.stderr.strip() or f"exit code {output.exit_code}"))
    return Ok(ref)


def _bracketed_commit(stdout: str) -> Optional[str]:
    match = _BRACKETED_COMMIT.search(stdout)
    return match.group(1) if match else None


async def git_bisect_start(manager: SandboxManager, bad: str, good: str) -> Result[str, SandboxError]:
    """Start bisecting between ``bad`` and ``good``; returns the first commit to test."""
    if manager.sandbox is None:
        return Err(SandboxNotInitializedError())
    command = f"git bisect start && git bisect bad {shlex.quote(bad)} && git bisect good {shlex.quote(good)}"
    result = await run_command(manager, command, timeout=TIMEOUTS.SEARCH, operation="git bisect start")
    if result.is_err():
        return result
    output = result.value
    if output.exit_code != 0 and "Bisecting" not in output.stdout:
        return Err(SandboxError("git bisect start", output.stderr.strip() or f"exit code {output.exit_code}"))
    return Ok(_bracketed_commit(output.stdout) or "unknown")


async def git_bisect_mark(manager: SandboxManager, status: BisectMark) -> Result[BisectMarkResult, SandboxError]:
    if manager.sandbox is None:
        return Err(SandboxNotInitializedError())
    if status not in ("good", "bad", "skip"):
        return Err(SandboxError("git bisect", f"Unknown bisect mark: {status}"))

    result = await run_command(manager, f"git bisect {status}", timeout=TIMEOUTS.SEARCH, operation="git bisect")
    if result.is_err():
        return result
    output = result.value

    if "is the first bad commit" in output.stdout:
        match = _FIRST_BAD_COMMIT.search(output.stdout)
        found: Optional[GitCommit] = None
        if match:
            details = await run_command(
                manager,
                f"git log -1 --format={shlex.quote(COMMIT_FORMAT)} {match.group(1)}",
                timeout=10,
                operation="git log",
            )
            if details.is_ok() and details.value.exit_code == 0 and details.value.stdout.strip():
                found = parse_commit_line(details.value.stdout.strip())
        return Ok(BisectMarkResult(done=True, found_commit=found))

    next_commit = _bracketed_commit(output.stdout)
    if next_commit is None and output.exit_code != 0:
        return Err(SandboxError("git bisect", output.stderr.strip() or f"exit code {output.exit_code}"))
    return Ok(BisectMarkResult(done=False, next_commit=next_commit))


async def git_bisect_reset(manager: SandboxManager) -> Result[None, SandboxError]:
    if manager.sandbox is None:
        return Err(SandboxNotInitializedError())
    result = await run_command(manager, "git bisect reset", timeout=TIMEOUTS.SEARCH, operation="git bisect reset")
    if result.is_err():
        return result
    if result.value.exit_code != 0:
        return Err(SandboxError("git bisect reset", result.value.stderr.strip() or "reset failed"))
    return Ok(None)


async def _reset_quietly(manager: SandboxManager) -> None:
    try:
        outcome = await git_bisect_reset(manager)
    except Exception as exc:  # noqa: BLE001 - reset failures never mask the run outcome
        LOGGER.warning("git bisect reset raised: %s", exc)
        return
    if outcome.is_err():
        LOGGER.warning("git bisect reset failed: %s", outcome.error)


async def git_bisect_run(
    manager: SandboxManager,
    bad: str,
    good: str,
    test_command: str,
    *,
    max_steps: int = BISECT_MAX_STEPS,
    timeout_per_step: float = TIMEOUTS.BISECT_STEP,
) -> Result[BisectResult, SandboxError]:
    """
    Automated bisection: run ``test_command`` at each step, mark by exit code.

    A zero exit marks the commit good, anything else marks it bad. The search
    stops when git reports the first bad commit or after ``max_steps``.
    """
    if manager.sandbox is None:
        return Err(SandboxNotInitializedError())

    log: List[str] = []
    steps = 0
    try:
        started = await git_bisect_start(manager, bad, good)
        if started.is_err():
            return started
        log.append(f"Started bisect: bad={bad}, good={good}")
        log.append(f"First commit to test: {started.value}")

        while steps < max_steps:
            steps += 1
            test = await run_command(
                manager,
                test_command,
                timeout=timeout_per_step,
                operation="git bisect run",
            )
            if test.is_err():
                return test
            passed = test.value.exit_code == 0
            log.append(f"Step {steps}: Test {'passed' if passed else 'failed'} (exit: {test.value.exit_code})")

            marked = await git_bisect_mark(manager, "good" if passed else "bad")
            if marked.is_err():
                return marked
            if marked.value.done:
                log.append("Bisect complete! Found bad commit.")
                return Ok(
                    BisectResult(
                        found=True,
                        commit=marked.value.found_commit,
                        steps_count=steps,
                        log=tuple(log),
                    )
                )
            log.append(f"Next commit: {marked.value.next_commit}")

        log.append(f"Max steps ({max_steps}) reached without finding commit")
        return Ok(BisectResult(found=False, steps_count=steps, log=tuple(log)))
    except Exception as exc:  # noqa: BLE001
        return Err(SandboxError("git bisect run", str(exc) or type(exc).__name__, cause=exc))
    finally:
        await _reset_quietly(manager)


__all__ = [
    "clone_repo",
    "repo_dir_name",
    "parse_commit_line",
    "filter_commits",
    "get_commits_since",
    "git_checkout",
    "git_bisect_start",
    "git_bisect_mark",
    "git_bisect_reset",
    "git_bisect_run",
]
