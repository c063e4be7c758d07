"""File operations inside the sandbox: read, write, edit, list and search."""
from __future__ import annotations

import logging
import shlex
from typing import List, Optional

from air_contracts import (
    TIMEOUTS,
    Err,
    Ok,
    Result,
    SandboxError,
    SandboxNotInitializedError,
)

from .commands import run_command
from .manager import SandboxManager

LOGGER = logging.getLogger(__name__)

NO_MATCHES = "No matches found"


async def read_file(manager: SandboxManager, path: str) -> Result[str, SandboxError]:
    sandbox = manager.sandbox
    if sandbox is None:
        return Err(SandboxNotInitializedError())
    full_path = manager.resolve_path(path)
    try:
        content = await sandbox.files.read(full_path)
    except Exception as exc:  # noqa: BLE001
        return Err(SandboxError("read file", f"{full_path}: {exc}", cause=exc))
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    return Ok(content)


async def write_file(manager: SandboxManager, path: str, content: str) -> Result[str, SandboxError]:
    """Replace the file at ``path`` wholesale; returns the resolved path."""
    sandbox = manager.sandbox
    if sandbox is None:
        return Err(SandboxNotInitializedError())
    full_path = manager.resolve_path(path)
    try:
        await sandbox.files.write(full_path, content)
    except Exception as exc:  # noqa: BLE001
        return Err(SandboxError("write file", f"{full_path}: {exc}", cause=exc))
    LOGGER.debug("Wrote %d chars to %s", len(content), full_path)
    return Ok(full_path)


async def edit_file(
    manager: SandboxManager,
    path: str,
    old_string: str,
    new_string: str,
    *,
    replace_all: bool = False,
) -> Result[int, SandboxError]:
    """
    Replace an exact substring of a file.

    ``old_string`` must occur exactly once unless ``replace_all`` is set. The
    number of replacements made is returned.
    """
    if not old_string:
        return Err(SandboxError("edit file", "old_string must not be empty"))

    read = await read_file(manager, path)
    if read.is_err():
        return read
    content = read.value

    occurrences = content.count(old_string)
    if occurrences == 0:
        return Err(SandboxError("edit file", f"String to replace not found in {path}"))
    if occurrences > 1 and not replace_all:
        return Err(
            SandboxError(
                "edit file",
                f"String to replace appears {occurrences} times in {path}; "
                "include more surrounding context or set replace_all",
            )
        )

    if replace_all:
        updated = content.replace(old_string, new_string)
    else:
        updated = content.replace(old_string, new_string, 1)
    written = await write_file(manager, path, updated)
    if written.is_err():
        return written
    return Ok(occurrences if replace_all else 1)


async def list_directory(manager: SandboxManager, path: Optional[str] = None) -> Result[List[str], SandboxError]:
    if manager.sandbox is None:
        return Err(SandboxNotInitializedError())
    full_path = manager.resolve_path(path) if path else manager.working_directory()
    result = await run_command(manager, f"ls -1 {shlex.quote(full_path)}", operation="list directory")
    if result.is_err():
        return result
    output = result.value
    if output.exit_code != 0:
        return Err(SandboxError("list directory", output.stderr.strip() or f"Cannot list {full_path}"))
    return Ok([line for line in output.stdout.split("\n") if line])


def build_search_command(pattern: str, path: str, file_pattern: Optional[str] = None) -> str:
    """ripgrep first, grep as a fallback; never fails on zero matches."""
    quoted_pattern = shlex.quote(pattern)
    quoted_path = shlex.quote(path)
    rg_glob = f"-g {shlex.quote(file_pattern)} " if file_pattern else ""
    grep_include = f"--include={shlex.quote(file_pattern)} " if file_pattern else ""
    return (
        f"(rg -n --no-heading {rg_glob}-e {quoted_pattern} {quoted_path} 2>/dev/null"
        f" || grep -rn {grep_include}-e {quoted_pattern} {quoted_path} 2>/dev/null) || true"
    )


async def search_files(
    manager: SandboxManager,
    pattern: str,
    *,
    path: Optional[str] = None,
    file_pattern: Optional[str] = None,
) -> Result[str, SandboxError]:
    if manager.sandbox is None:
        return Err(SandboxNotInitializedError())
    search_path = manager.resolve_path(path) if path else manager.working_directory()
    command = build_search_command(pattern, search_path, file_pattern)
    result = await run_command(manager, command, timeout=TIMEOUTS.SEARCH, operation="search files")
    if result.is_err():
        return result
    return Ok(result.value.stdout or NO_MATCHES)


__all__ = [
    "NO_MATCHES",
    "read_file",
    "write_file",
    "edit_file",
    "list_directory",
    "build_search_command",
    "search_files",
]
