"""
Shell command execution inside the sandbox.

A command that runs and exits non-zero is a successful operation: its
``CommandResult`` carries the exit code as data. Only failures to run the
command at all (no sandbox, timeout, transport errors) become ``Err`` values.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from e2b import CommandExitException, TimeoutException

from air_contracts import (
    TIMEOUTS,
    CommandResult,
    Err,
    Ok,
    Result,
    SandboxError,
    SandboxNotInitializedError,
    SandboxTimeoutError,
)

from .manager import SandboxManager

LOGGER = logging.getLogger(__name__)


def _mask(text: str, secrets: Iterable[str]) -> str:
    for secret in secrets:
        text = text.replace(secret, "***")
    return text


async def run_command(
    manager: SandboxManager,
    command: str,
    *,
    timeout: float = TIMEOUTS.COMMAND,
    cwd: Optional[str] = None,
    operation: str = "run command",
    redact: Iterable[str] = (),
) -> Result[CommandResult, SandboxError]:
    """
    Run ``command`` through the sandbox shell.

    Args:
        manager: Session owner; must be initialized.
        command: Shell command line.
        timeout: Ceiling in seconds.
        cwd: Working directory; defaults to the repository root, else the home dir.
        operation: Label used in error messages.
        redact: Secrets embedded in ``command``; masked in logs and error text.
    """
    sandbox = manager.sandbox
    if sandbox is None:
        return Err(SandboxNotInitializedError())

    workdir = cwd or manager.working_directory()
    secrets = [secret for secret in redact if secret]
    LOGGER.debug("exec[%s] %s (cwd=%s, timeout=%ss)", operation, _mask(command, secrets), workdir, timeout)
    try:
        result = await sandbox.commands.run(command, cwd=workdir, timeout=timeout)
    except CommandExitException as exc:
        return Ok(
            CommandResult(
                stdout=exc.stdout or "",
                stderr=exc.stderr or "",
                exit_code=exc.exit_code,
            )
        )
    except TimeoutException as exc:
        return Err(SandboxTimeoutError(operation, timeout, cause=exc))
    except Exception as exc:  # noqa: BLE001 - provider errors become results
        return Err(SandboxError(operation, _mask(str(exc), secrets) or type(exc).__name__, cause=exc))

    return Ok(
        CommandResult(
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            exit_code=result.exit_code,
        )
    )


__all__ = ["run_command"]
