"""
Loads browser-automation tools from the sandbox's MCP gateway.

When the browser feature is enabled, E2B exposes a Playwright MCP server
behind an authenticated streamable-HTTP endpoint. This module turns that
endpoint into LangChain tools through ``MultiServerMCPClient``, retrying with
exponential backoff while the gateway warms up. Loading failures are logged
and yield no tools; the run proceeds with the core catalogue only.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Protocol
from urllib.parse import urlsplit, urlunsplit

import httpx
from langchain_core.tools import BaseTool
from langchain_mcp_adapters.client import MultiServerMCPClient

from .manager import SandboxManager

LOGGER = logging.getLogger(__name__)

GATEWAY_SERVER_NAME = "playwright"
DEFAULT_ATTEMPTS = 3
DEFAULT_INITIAL_DELAY = 1.0
DEFAULT_MAX_DELAY = 8.0


class MCPClientProtocol(Protocol):
    async def get_tools(self) -> List[BaseTool]:
        ...


ClientFactory = Callable[[Dict[str, Dict[str, Any]]], MCPClientProtocol]


def build_gateway_config(url: str, token: str) -> Dict[str, Dict[str, Any]]:
    return {
        GATEWAY_SERVER_NAME: {
            "url": url,
            "transport": "streamable_http",
            "headers": {"Authorization": f"Bearer {token}"},
        }
    }


def _sanitize_url(value: str) -> str:
    try:
        result = urlsplit(value)
    except ValueError:
        return value
    if result.username or result.password:
        netloc = result.hostname or ""
        if result.port:
            netloc = f"{netloc}:{result.port}"
        return urlunsplit((result.scheme, netloc, result.path, result.query, result.fragment))
    return value


def _describe_exception(exc: BaseException) -> str:
    if isinstance(exc, BaseExceptionGroup):
        parts = [_describe_exception(inner) for inner in exc.exceptions[:3]]
        extra = f" (+{len(exc.exceptions) - 3} more)" if len(exc.exceptions) > 3 else ""
        return f"{exc.__class__.__name__}: [{'; '.join(parts)}]{extra}"
    if isinstance(exc, httpx.HTTPError):
        try:
            return f"{exc.__class__.__name__} while calling {_sanitize_url(str(exc.request.url))}"
        except RuntimeError:
            pass
    return f"{exc.__class__.__name__}: {exc}"


async def load_gateway_tools(
    url: str,
    token: str,
    *,
    attempts: int = DEFAULT_ATTEMPTS,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    client_factory: ClientFactory | None = None,
) -> List[BaseTool]:
    """Fetch the gateway's tool list, or an empty list if it stays unreachable."""
    config = build_gateway_config(url, token)
    factory = client_factory or MultiServerMCPClient
    client = factory(config)
    delay = initial_delay
    attempts = max(1, attempts)

    for attempt in range(1, attempts + 1):
        try:
            LOGGER.info("Loading gateway tools from %s (attempt %s/%s)", _sanitize_url(url), attempt, attempts)
            tools = await client.get_tools()
            LOGGER.info("Loaded %s gateway tool(s).", len(tools))
            return list(tools)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - need broad catch for retries.
            description = _describe_exception(exc)
            if attempt == attempts:
                LOGGER.error("Gateway tool loading failed after %s attempt(s): %s", attempts, description)
                break
            LOGGER.warning(
                "Gateway tool loading failed (attempt %s/%s): %s; retrying in %.2fs",
                attempt,
                attempts,
                description,
                delay,
            )
            await asyncio.sleep(delay)
            delay = min(max_delay, delay * 2 if delay else 1.0)
    return []


async def gateway_tools_for(manager: SandboxManager, **kwargs: Any) -> List[BaseTool]:
    """Gateway tools for a live session; empty when the session has no gateway."""
    if not manager.has_gateway():
        return []
    assert manager.gateway_url is not None and manager.gateway_token is not None
    return await load_gateway_tools(manager.gateway_url, manager.gateway_token, **kwargs)


__all__ = ["build_gateway_config", "load_gateway_tools", "gateway_tools_for", "GATEWAY_SERVER_NAME"]
