from __future__ import annotations

import logging
from datetime import date

import pytest
from e2b import TimeoutException

from air_contracts import SandboxNotInitializedError, SandboxTimeoutError
from air_sandbox.commands import run_command
from air_sandbox.files import NO_MATCHES, build_search_command, edit_file, list_directory, read_file, search_files, write_file
from air_sandbox.repo import clone_repo, get_commits_since, git_checkout, parse_commit_line, repo_dir_name

from conftest import FakeCommandOutput


@pytest.fixture
def anyio_backend():
    return "asyncio"


class TestRunCommand:
    @pytest.mark.anyio
    async def test_requires_sandbox(self, manager):
        result = await run_command(manager, "ls")
        assert result.is_err()
        assert isinstance(result.error, SandboxNotInitializedError)

    @pytest.mark.anyio
    async def test_non_zero_exit_is_ok(self, live_manager, fake_sandbox):
        fake_sandbox.commands.on("pytest", FakeCommandOutput(stdout="1 failed", exit_code=1))

        result = await run_command(live_manager, "pytest -x")

        assert result.is_ok()
        assert result.value.exit_code == 1
        assert result.value.stdout == "1 failed"
        assert fake_sandbox.commands.calls[-1].cwd == "/home/user/widgets"
        assert fake_sandbox.commands.calls[-1].timeout == 60

    @pytest.mark.anyio
    async def test_timeout_is_an_error(self, live_manager, fake_sandbox):
        fake_sandbox.commands.on("sleep", TimeoutException("deadline exceeded"))

        result = await run_command(live_manager, "sleep 100", timeout=5)

        assert result.is_err()
        assert isinstance(result.error, SandboxTimeoutError)
        assert result.error.timeout_seconds == 5

    @pytest.mark.anyio
    async def test_defaults_to_home_without_repo(self, live_manager, fake_sandbox):
        live_manager.repo_path = None
        await run_command(live_manager, "pwd")
        assert fake_sandbox.commands.calls[-1].cwd == "/home/user"


class TestFiles:
    @pytest.mark.anyio
    async def test_write_then_read_relative_path(self, live_manager, fake_sandbox):
        written = await write_file(live_manager, "src/app.py", "print('hi')\n")
        assert written.value == "/home/user/widgets/src/app.py"

        result = await read_file(live_manager, "src/app.py")
        assert result.value == "print('hi')\n"

    @pytest.mark.anyio
    async def test_read_missing_file_is_error(self, live_manager):
        result = await read_file(live_manager, "missing.txt")
        assert result.is_err()
        assert "missing.txt" in result.error.message

    @pytest.mark.anyio
    async def test_edit_requires_unique_match(self, live_manager, fake_sandbox):
        fake_sandbox.files.store["/home/user/widgets/a.py"] = "x = 1\nx = 1\n"

        ambiguous = await edit_file(live_manager, "a.py", "x = 1", "x = 2")
        assert ambiguous.is_err()
        assert "appears 2 times" in ambiguous.error.message

        replaced = await edit_file(live_manager, "a.py", "x = 1", "x = 2", replace_all=True)
        assert replaced.value == 2
        assert fake_sandbox.files.store["/home/user/widgets/a.py"] == "x = 2\nx = 2\n"

    @pytest.mark.anyio
    async def test_edit_missing_string(self, live_manager, fake_sandbox):
        fake_sandbox.files.store["/home/user/widgets/a.py"] = "y = 1\n"
        result = await edit_file(live_manager, "a.py", "x = 1", "x = 2")
        assert result.is_err()
        assert "not found" in result.error.message

    @pytest.mark.anyio
    async def test_list_directory(self, live_manager, fake_sandbox):
        fake_sandbox.commands.on("ls -1", FakeCommandOutput(stdout="README.md\nsrc\n"))
        result = await list_directory(live_manager)
        assert result.value == ["README.md", "src"]
        assert fake_sandbox.commands.calls[-1].command == "ls -1 /home/user/widgets"

    @pytest.mark.anyio
    async def test_list_directory_failure(self, live_manager, fake_sandbox):
        fake_sandbox.commands.on("ls -1", FakeCommandOutput(stderr="No such file or directory", exit_code=2))
        result = await list_directory(live_manager, "nope")
        assert result.is_err()
        assert "No such file" in result.error.message

    @pytest.mark.anyio
    async def test_search_with_no_matches(self, live_manager, fake_sandbox):
        fake_sandbox.commands.on("rg -n", FakeCommandOutput(stdout=""))
        result = await search_files(live_manager, "needle")
        assert result.value == NO_MATCHES
        assert fake_sandbox.commands.calls[-1].timeout == 30

    def test_search_command_quotes_arguments(self):
        command = build_search_command("it's", "/home/user/r", "*.py")
        assert "-g '*.py'" in command
        assert "--include='*.py'" in command
        assert "'it'\"'\"'s'" in command
        assert command.endswith("|| true")

    def test_search_case_sensitivity_matches_grep_fallback(self):
        command = build_search_command("Needle", "/home/user/r")
        assert " -S " not in command
        assert " -i " not in command


class TestRepo:
    @pytest.mark.anyio
    async def test_clone_injects_token_and_records_path(self, live_manager, fake_sandbox):
        live_manager.repo_path = None

        result = await clone_repo(live_manager, "https://github.com/acme/widgets.git", "dev")

        assert result.value == "/home/user/widgets"
        assert live_manager.repo_path == "/home/user/widgets"
        call = fake_sandbox.commands.calls[-1]
        assert call.command == (
            "git clone --branch dev https://ghp_secret@github.com/acme/widgets.git /home/user/widgets"
        )
        assert call.timeout == 120

    @pytest.mark.anyio
    async def test_clone_failure_scrubs_token(self, live_manager, fake_sandbox):
        live_manager.repo_path = None
        fake_sandbox.commands.on(
            "git clone",
            FakeCommandOutput(stderr="fatal: https://ghp_secret@github.com/acme/x.git not found", exit_code=128),
        )

        result = await clone_repo(live_manager, "https://github.com/acme/x.git")

        assert result.is_err()
        assert "ghp_secret" not in result.error.message
        assert live_manager.repo_path is None

    @pytest.mark.anyio
    async def test_clone_does_not_log_token(self, live_manager, fake_sandbox, caplog):
        live_manager.repo_path = None
        caplog.set_level(logging.DEBUG, logger="air_sandbox")

        await clone_repo(live_manager, "https://github.com/acme/widgets.git")

        assert "ghp_secret" in fake_sandbox.commands.calls[-1].command
        assert "git clone https://***@github.com/acme/widgets.git" in caplog.text
        assert "ghp_secret" not in caplog.text

    @pytest.mark.anyio
    async def test_clone_timeout(self, live_manager, fake_sandbox):
        fake_sandbox.commands.on("git clone", TimeoutException("slow"))
        result = await clone_repo(live_manager, "https://github.com/acme/x.git")
        assert isinstance(result.error, SandboxTimeoutError)
        assert result.error.operation == "clone"

    def test_repo_dir_name(self):
        assert repo_dir_name("https://github.com/acme/widgets.git") == "widgets"
        assert repo_dir_name("https://github.com/acme/widgets") == "widgets"
        assert repo_dir_name("") == "repo"

    def test_parse_commit_line_keeps_pipes_in_subject(self):
        commit = parse_commit_line("a" * 40 + "|2024-03-01T10:00:00+00:00|fix: a | b")
        assert commit is not None
        assert commit.message == "fix: a | b"
        assert commit.short_hash == "aaaaaaaa"
        assert parse_commit_line("garbage") is None

    @pytest.mark.anyio
    async def test_commits_since_filters_case_insensitively(self, live_manager, fake_sandbox):
        stdout = "\n".join(
            [
                "a" * 40 + "|2024-03-02T10:00:00+00:00|Fix crash on empty input",
                "b" * 40 + "|2024-03-01T10:00:00+00:00|docs: update readme",
            ]
        )
        fake_sandbox.commands.on("git log", FakeCommandOutput(stdout=stdout))

        result = await get_commits_since(live_manager, date(2024, 3, 1), search_terms=["CRASH"], max_count=10)

        assert [c.message for c in result.value] == ["Fix crash on empty input"]
        assert "--since=2024-03-01" in fake_sandbox.commands.calls[-1].command
        assert "-n 10" in fake_sandbox.commands.calls[-1].command

    @pytest.mark.anyio
    async def test_checkout_failure(self, live_manager, fake_sandbox):
        fake_sandbox.commands.on("git checkout", FakeCommandOutput(stderr="pathspec 'nope' did not match", exit_code=1))
        result = await git_checkout(live_manager, "nope")
        assert result.is_err()
        assert "pathspec" in result.error.message
