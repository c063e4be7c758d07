"""
Project-wide pytest fixtures.

Provides an in-memory stand-in for an E2B sandbox so sandbox operations, the
tool catalogue and the agent runner can be exercised without network access.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from air_contracts import GitHubComment, GitHubIssue, GitHubRepo, SandboxConfig
from air_sandbox.manager import SandboxManager


@dataclass
class FakeCommandOutput:
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0


@dataclass
class FakeCall:
    command: str
    cwd: Optional[str]
    timeout: Optional[float]


@dataclass
class _Rule:
    fragment: str
    responses: List[object]


class FakeCommands:
    """Scripted ``sandbox.commands``; the first rule whose fragment matches wins."""

    def __init__(self) -> None:
        self.calls: List[FakeCall] = []
        self._rules: List[_Rule] = []

    def on(self, fragment: str, *responses: object) -> None:
        """Register responses (``FakeCommandOutput`` or exceptions) consumed in order; the last one repeats."""
        self._rules.append(_Rule(fragment, list(responses) or [FakeCommandOutput()]))

    def commands_matching(self, fragment: str) -> List[str]:
        return [call.command for call in self.calls if fragment in call.command]

    async def run(self, command: str, cwd: Optional[str] = None, timeout: Optional[float] = None, **_: object):
        self.calls.append(FakeCall(command, cwd, timeout))
        for rule in self._rules:
            if rule.fragment in command:
                response = rule.responses.pop(0) if len(rule.responses) > 1 else rule.responses[0]
                if isinstance(response, BaseException):
                    raise response
                return response
        return FakeCommandOutput()


class FakeFiles:
    def __init__(self) -> None:
        self.store: Dict[str, str] = {}

    async def read(self, path: str, **_: object) -> str:
        if path not in self.store:
            raise FileNotFoundError(f"No such file: {path}")
        return self.store[path]

    async def write(self, path: str, data: str, **_: object) -> None:
        self.store[path] = data


@dataclass
class FakeSandbox:
    sandbox_id: str = "sbx-test"
    commands: FakeCommands = field(default_factory=FakeCommands)
    files: FakeFiles = field(default_factory=FakeFiles)
    killed: int = 0
    kill_error: Optional[BaseException] = None
    mcp_url: Optional[str] = None
    mcp_token: Optional[str] = None

    def get_host(self, port: int) -> str:
        return f"{port}-{self.sandbox_id}.e2b.app"

    async def kill(self) -> None:
        self.killed += 1
        if self.kill_error is not None:
            raise self.kill_error

    def get_mcp_url(self) -> Optional[str]:
        return self.mcp_url

    async def get_mcp_token(self) -> Optional[str]:
        return self.mcp_token


@pytest.fixture
def fake_sandbox() -> FakeSandbox:
    return FakeSandbox()


@pytest.fixture
def sandbox_config() -> SandboxConfig:
    return SandboxConfig(api_key="e2b-test-key", github_token="ghp_secret")


@pytest.fixture
def sandbox_factory(fake_sandbox: FakeSandbox):
    created: List[FakeSandbox] = []

    async def factory(config: SandboxConfig) -> FakeSandbox:
        created.append(fake_sandbox)
        return fake_sandbox

    factory.created = created  # type: ignore[attr-defined]
    return factory


@pytest.fixture
def manager(sandbox_config: SandboxConfig, sandbox_factory) -> SandboxManager:
    """A manager that has not been initialized yet."""
    return SandboxManager(sandbox_config, sandbox_factory=sandbox_factory)


@pytest.fixture
def live_manager(manager: SandboxManager, fake_sandbox: FakeSandbox) -> SandboxManager:
    """A manager with a live fake sandbox and a cloned repository at /home/user/widgets."""
    manager.sandbox = fake_sandbox
    manager.started_at = datetime.now(timezone.utc)
    manager.repo_path = "/home/user/widgets"
    return manager


@pytest.fixture
def sample_repo() -> GitHubRepo:
    return GitHubRepo(
        owner="acme",
        name="widgets",
        full_name="acme/widgets",
        clone_url="https://github.com/acme/widgets.git",
    )


@pytest.fixture
def sample_issue() -> GitHubIssue:
    return GitHubIssue(
        number=42,
        title="Login button does nothing",
        body="Clicking login on Safari is a no-op.",
        labels=("bug",),
        comments=(GitHubComment(id=1, body="Same on Firefox.", user="octocat"),),
        html_url="https://github.com/acme/widgets/issues/42",
    )
