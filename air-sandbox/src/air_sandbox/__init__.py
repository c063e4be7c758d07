"""
Sandbox tooling for AIR.

``SandboxManager`` owns one remote E2B sandbox; the operation modules
(``commands``, ``files``, ``repo``, ``browser``) act on it and return
``Result`` values; ``SandboxToolCatalogue`` exposes those operations to the
agent as validated, named tools. ``template`` describes and builds the image
the sandboxes start from.
"""
from .browser import (
    evaluate_script,
    execute_browser_actions,
    fill_form_and_submit,
    get_page_text,
    navigate_and_screenshot,
)
from .commands import run_command
from .files import edit_file, list_directory, read_file, search_files, write_file
from .gateway import gateway_tools_for, load_gateway_tools
from .manager import SandboxManager, create_e2b_sandbox
from .repo import (
    clone_repo,
    get_commits_since,
    git_bisect_mark,
    git_bisect_reset,
    git_bisect_run,
    git_bisect_start,
    git_checkout,
)
from .template import build_template, template_definition
from .tools import SandboxToolCatalogue, ToolEnvelope, UserInteraction

__all__ = [
    "SandboxManager",
    "create_e2b_sandbox",
    "run_command",
    "read_file",
    "write_file",
    "edit_file",
    "list_directory",
    "search_files",
    "clone_repo",
    "get_commits_since",
    "git_checkout",
    "git_bisect_start",
    "git_bisect_mark",
    "git_bisect_reset",
    "git_bisect_run",
    "execute_browser_actions",
    "navigate_and_screenshot",
    "fill_form_and_submit",
    "get_page_text",
    "evaluate_script",
    "SandboxToolCatalogue",
    "ToolEnvelope",
    "UserInteraction",
    "gateway_tools_for",
    "load_gateway_tools",
    "build_template",
    "template_definition",
]
