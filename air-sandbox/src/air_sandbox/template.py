"""
The E2B template every AIR sandbox starts from.

The image carries the tools the agent reaches for inside the sandbox: git and
ripgrep for the repository, Node.js with npm and pnpm, Python 3 with pip and
venv, and Playwright with Chromium installed under ``/app`` for the browser
tools. Homebrew is available for anything else a project needs.

Build it once per E2B account with ``air-build-template`` (requires
``E2B_API_KEY``); sandboxes then refer to it by :data:`SANDBOX_TEMPLATE`.
"""
from __future__ import annotations

import logging
from typing import Any, Final, Optional, Tuple

from air_contracts import SANDBOX_HOME, SANDBOX_TEMPLATE

LOGGER = logging.getLogger(__name__)

BASE_IMAGE: Final[str] = "node:20-slim"
# Playwright lives here; browser scripts resolve it through NODE_PATH.
PLAYWRIGHT_DIR: Final[str] = "/app"
TEMPLATE_CPU_COUNT: Final[int] = 2
TEMPLATE_MEMORY_MB: Final[int] = 2048

CORE_PACKAGES: Final[Tuple[str, ...]] = (
    "git",
    "ripgrep",
    "curl",
    "wget",
    "build-essential",
    "procps",
    "python3",
    "python3-pip",
    "python3-venv",
)

# Shared libraries Chromium needs at runtime.
BROWSER_PACKAGES: Final[Tuple[str, ...]] = (
    "libnss3",
    "libnspr4",
    "libatk1.0-0",
    "libatk-bridge2.0-0",
    "libcups2",
    "libdrm2",
    "libxkbcommon0",
    "libxcomposite1",
    "libxdamage1",
    "libxfixes3",
    "libxrandr2",
    "libgbm1",
    "libasound2",
)

PLAYWRIGHT_INSTALL: Final[str] = "PLAYWRIGHT_BROWSERS_PATH=0 npx playwright install --with-deps chromium"
HOMEBREW_INSTALL: Final[str] = (
    'NONINTERACTIVE=1 /bin/bash -c "$(curl -fsSL https://raw.githubusercontent.com/Homebrew/install/HEAD/install.sh)"'
)
HOMEBREW_SHELLENV: Final[str] = (
    "echo 'eval \"$(/home/linuxbrew/.linuxbrew/bin/brew shellenv)\"' >> /etc/bash.bashrc"
)


def template_definition(template: Optional[Any] = None) -> Any:
    """
    Describe the AIR image on an E2B ``Template`` builder.

    Args:
        template: An empty builder; a fresh ``e2b.Template()`` when omitted.
    """
    if template is None:
        from e2b import Template

        template = Template()

    return (
        template.from_image(BASE_IMAGE)
        .set_user("root")
        .set_workdir("/")
        .apt_install([*CORE_PACKAGES, *BROWSER_PACKAGES])
        .set_workdir(PLAYWRIGHT_DIR)
        .run_cmd("npm init -y")
        .npm_install(["playwright"])
        .run_cmd(PLAYWRIGHT_INSTALL)
        .run_cmd(f"chmod a+rwX {PLAYWRIGHT_DIR}")
        .npm_install("pnpm", g=True)
        .run_cmd(HOMEBREW_INSTALL)
        .run_cmd(HOMEBREW_SHELLENV)
        .set_user("user")
        .set_workdir(SANDBOX_HOME)
    )


def _log_build_line(entry: Any) -> None:
    LOGGER.info("%s", entry)


def build_template(
    api_key: str,
    *,
    alias: str = SANDBOX_TEMPLATE,
    builder: Optional[Any] = None,
) -> Any:
    """
    Build and register the AIR template under ``alias``.

    Args:
        api_key: E2B API key of the account that will own the template.
        alias: Name sandboxes pass as ``template`` when they are created.
        builder: The class exposing ``build``; ``e2b.Template`` when omitted.

    Returns:
        Whatever the SDK reports for the finished build.
    """
    if builder is None:
        from e2b import Template

        builder = Template

    LOGGER.info("Building E2B template %s from %s", alias, BASE_IMAGE)
    built = builder.build(
        template_definition(builder()),
        alias=alias,
        cpu_count=TEMPLATE_CPU_COUNT,
        memory_mb=TEMPLATE_MEMORY_MB,
        on_build_logs=_log_build_line,
        api_key=api_key,
    )
    LOGGER.info("Template %s built", alias)
    return built


__all__ = [
    "BASE_IMAGE",
    "PLAYWRIGHT_DIR",
    "CORE_PACKAGES",
    "BROWSER_PACKAGES",
    "build_template",
    "template_definition",
]
