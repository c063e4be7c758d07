"""
Lifecycle management for the E2B sandbox that hosts a single agent run.

The :class:`SandboxManager` owns the remote handle and the per-session state
(repository path, start time, browser gateway endpoint). Operations in
``air_sandbox.commands``/``files``/``repo``/``browser`` read that state but only
``clone_repo`` writes the repository path.
"""
from __future__ import annotations

import logging
import posixpath
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from air_contracts import (
    SANDBOX_HOME,
    Err,
    Ok,
    Result,
    SandboxConfig,
    SandboxError,
    SandboxInfo,
    SandboxNotInitializedError,
)

LOGGER = logging.getLogger(__name__)

# MCP servers requested from the E2B gateway when the browser feature is on.
GATEWAY_SERVERS: Dict[str, Dict[str, Any]] = {"playwright": {}}

SandboxFactory = Callable[[SandboxConfig], Awaitable[Any]]


async def create_e2b_sandbox(config: SandboxConfig) -> Any:
    """Create a remote sandbox from ``config.template`` using the E2B SDK."""
    from e2b import AsyncSandbox

    options: Dict[str, Any] = {
        "template": config.template,
        "api_key": config.api_key,
        "timeout": config.timeout_seconds,
    }
    if config.enable_browser_gateway:
        options["mcp"] = GATEWAY_SERVERS
    return await AsyncSandbox.create(**options)


class SandboxManager:
    """
    Owns one sandbox session.

    A manager starts empty, becomes live after :meth:`initialize`, gains a
    repository path after a successful clone, and returns to empty after
    :meth:`cleanup`. It is never shared between runs.
    """

    def __init__(
        self,
        config: SandboxConfig,
        *,
        sandbox_factory: SandboxFactory | None = None,
    ) -> None:
        self._config = config
        self._factory = sandbox_factory or create_e2b_sandbox
        self.sandbox: Any | None = None
        self.repo_path: Optional[str] = None
        self.started_at: Optional[datetime] = None
        self.gateway_url: Optional[str] = None
        self.gateway_token: Optional[str] = None

    @property
    def config(self) -> SandboxConfig:
        return self._config

    @property
    def github_token(self) -> Optional[str]:
        return self._config.github_token

    async def initialize(self) -> Result[SandboxInfo, SandboxError]:
        try:
            sandbox = await self._factory(self._config)
        except Exception as exc:  # noqa: BLE001 - provider errors become results
            LOGGER.error("Sandbox creation failed: %s", exc)
            return Err(SandboxError("initialize", str(exc) or type(exc).__name__, cause=exc))

        self.sandbox = sandbox
        self.started_at = datetime.now(timezone.utc)
        if self._config.enable_browser_gateway:
            await self._resolve_gateway(sandbox)

        info = self.get_info()
        assert info is not None
        LOGGER.info("Sandbox %s started (template=%s)", info.id, self._config.template)
        return Ok(info)

    async def _resolve_gateway(self, sandbox: Any) -> None:
        try:
            url = sandbox.get_mcp_url()
            token = await sandbox.get_mcp_token()
        except Exception as exc:  # noqa: BLE001 - the gateway is optional
            LOGGER.warning("Browser gateway unavailable: %s", exc)
            return
        if url and token:
            self.gateway_url = url
            self.gateway_token = token

    async def cleanup(self) -> None:
        """Kill the sandbox and reset the session. Safe to call repeatedly."""
        sandbox = self.sandbox
        if sandbox is None:
            return
        sandbox_id = _sandbox_id(sandbox)
        try:
            await sandbox.kill()
        except Exception as exc:  # noqa: BLE001 - teardown failures are non-fatal
            LOGGER.warning("Ignoring sandbox teardown failure for %s: %s", sandbox_id, exc)
        finally:
            self.sandbox = None
            self.repo_path = None
            self.started_at = None
            self.gateway_url = None
            self.gateway_token = None
        LOGGER.info("Sandbox %s cleaned up", sandbox_id)

    def is_initialized(self) -> bool:
        return self.sandbox is not None

    def has_gateway(self) -> bool:
        return self.sandbox is not None and bool(self.gateway_url) and bool(self.gateway_token)

    def get_info(self) -> Optional[SandboxInfo]:
        if self.sandbox is None or self.started_at is None:
            return None
        return SandboxInfo(
            id=_sandbox_id(self.sandbox),
            repo_path=self.repo_path,
            started_at=self.started_at,
            gateway_url=self.gateway_url,
        )

    def get_host_url(self, port: int) -> Optional[str]:
        if self.sandbox is None:
            return None
        return f"https://{self.sandbox.get_host(port)}"

    def ensure_initialized(self) -> Any:
        if self.sandbox is None:
            raise SandboxNotInitializedError()
        return self.sandbox

    def resolve_path(self, path: str) -> str:
        if path.startswith("/"):
            return path
        base = self.repo_path or SANDBOX_HOME
        return posixpath.join(base, path)

    def working_directory(self) -> str:
        return self.repo_path or SANDBOX_HOME


def _sandbox_id(sandbox: Any) -> str:
    return str(getattr(sandbox, "sandbox_id", "unknown"))


__all__ = ["SandboxManager", "SandboxFactory", "create_e2b_sandbox", "GATEWAY_SERVERS"]
