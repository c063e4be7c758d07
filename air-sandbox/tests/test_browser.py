from __future__ import annotations

import json

import pytest

from air_contracts.sandbox import EvaluateAction, FillAction, NavigateAction, ScreenshotAction
from air_sandbox.browser import (
    ACTIONS_PATH,
    RUNNER_SCRIPT,
    RUNNER_SCRIPT_PATH,
    execute_browser_actions,
    get_page_text,
    parse_runner_output,
)

from conftest import FakeCommandOutput


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.mark.anyio
async def test_user_strings_stay_out_of_the_script(live_manager, fake_sandbox):
    hostile = "'); require('child_process').execSync('rm -rf /'); ('"
    fake_sandbox.commands.on("node ", FakeCommandOutput(stdout=json.dumps({"success": True, "results": [], "logs": []})))

    await execute_browser_actions(
        live_manager,
        [NavigateAction(url="http://localhost:3000"), FillAction(selector="#q", value=hostile)],
    )

    assert fake_sandbox.files.store[RUNNER_SCRIPT_PATH] == RUNNER_SCRIPT
    actions = json.loads(fake_sandbox.files.store[ACTIONS_PATH])
    assert actions[1] == {"type": "fill", "selector": "#q", "value": hostile}
    assert fake_sandbox.commands.calls[0].cwd == "/tmp"
    assert fake_sandbox.commands.calls[0].command.startswith("NODE_PATH=/app/node_modules node ")


@pytest.mark.anyio
async def test_screenshot_text_and_logs_are_collected(live_manager, fake_sandbox):
    payload = {
        "success": True,
        "results": [
            {"type": "text", "selector": "h1", "value": "Hello"},
            {"type": "html", "value": "<h1>Hello</h1>"},
            {"type": "evaluate", "value": 42},
        ],
        "logs": ["ready"],
    }
    fake_sandbox.commands.on("node ", FakeCommandOutput(stdout="npm notice\n" + json.dumps(payload)))
    fake_sandbox.commands.on("base64 -w 0", FakeCommandOutput(stdout="iVBORw0KGgo=\n"))

    result = await execute_browser_actions(
        live_manager,
        [NavigateAction(url="http://localhost:3000"), ScreenshotAction(full_page=True), EvaluateAction(script="return 42")],
    )

    browser = result.value
    assert browser.success
    assert browser.text == "Hello"
    assert browser.html == "<h1>Hello</h1>"
    assert browser.screenshot == "iVBORw0KGgo="
    assert browser.logs == ("ready",)
    assert browser.evaluations == (42,)


@pytest.mark.anyio
async def test_unparsable_output_is_non_fatal(live_manager, fake_sandbox):
    fake_sandbox.commands.on("node ", FakeCommandOutput(stdout="Error: Cannot find module 'playwright'", exit_code=1))

    result = await execute_browser_actions(live_manager, [NavigateAction(url="http://localhost")])

    assert result.is_ok()
    assert not result.value.success
    assert result.value.error.startswith("Failed to parse result:")


@pytest.mark.anyio
async def test_get_page_text(live_manager, fake_sandbox):
    payload = {"success": True, "results": [{"type": "text", "selector": "body", "value": "All good"}], "logs": []}
    fake_sandbox.commands.on("node ", FakeCommandOutput(stdout=json.dumps(payload)))

    result = await get_page_text(live_manager, "http://localhost:3000")

    assert result.value == "All good"


@pytest.mark.anyio
async def test_requires_sandbox(manager):
    result = await execute_browser_actions(manager, [NavigateAction(url="http://localhost")])
    assert result.is_err()


def test_parse_runner_output_rejects_non_objects():
    assert parse_runner_output("") is None
    assert parse_runner_output("[1, 2]") is None
    assert parse_runner_output('log line\n{"success": false}') == {"success": False}
