"""
Headless browser automation through Playwright running inside the sandbox.

Actions are never spliced into generated code. They are written as JSON next
to a fixed Node runner script, which interprets them one by one. ``evaluate``
scripts run in the page through ``new Function`` with the source passed as a
Playwright argument.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import TypeAdapter

from air_contracts import (
    TIMEOUTS,
    BrowserAction,
    BrowserResult,
    Err,
    Ok,
    Result,
    SandboxError,
    SandboxNotInitializedError,
)
from air_contracts.sandbox import (
    ClickAction,
    EvaluateAction,
    FillAction,
    GetHtmlAction,
    GetTextAction,
    NavigateAction,
    ScreenshotAction,
    WaitAction,
    WaitTimeAction,
)

from .commands import run_command
from .files import write_file
from .manager import SandboxManager
from .template import PLAYWRIGHT_DIR

LOGGER = logging.getLogger(__name__)

RUNNER_SCRIPT_PATH = "/tmp/air-playwright-script.js"
ACTIONS_PATH = "/tmp/air-playwright-actions.json"
SCREENSHOT_PATH = "/tmp/air-screenshot.png"

_ACTIONS_ADAPTER: TypeAdapter[List[BrowserAction]] = TypeAdapter(List[BrowserAction])

RUNNER_SCRIPT = """
const fs = require('fs');
const { chromium } = require('playwright');

const [actionsPath, screenshotPath] = process.argv.slice(2);
const actions = JSON.parse(fs.readFileSync(actionsPath, 'utf8'));

async function perform(page, action, results) {
  switch (action.type) {
    case 'navigate':
      await page.goto(action.url, { waitUntil: 'networkidle' });
      break;
    case 'click':
      await page.click(action.selector);
      break;
    case 'fill':
      await page.fill(action.selector, action.value);
      break;
    case 'type':
      await page.type(action.selector, action.text);
      break;
    case 'screenshot':
      await page.screenshot({ path: screenshotPath, fullPage: Boolean(action.full_page) });
      break;
    case 'wait':
      await page.waitForSelector(action.selector, { timeout: action.timeout });
      break;
    case 'wait_time':
      await page.waitForTimeout(action.ms);
      break;
    case 'evaluate':
      results.push({
        type: 'evaluate',
        value: await page.evaluate((source) => new Function(source)(), action.script),
      });
      break;
    case 'get_text':
      results.push({ type: 'text', selector: action.selector, value: await page.textContent(action.selector) });
      break;
    case 'get_html':
      results.push({ type: 'html', value: await page.content() });
      break;
    case 'press':
      await page.keyboard.press(action.key);
      break;
    case 'select':
      await page.selectOption(action.selector, action.value);
      break;
    case 'hover':
      await page.hover(action.selector);
      break;
    case 'scroll':
      await page.evaluate((y) => window.scrollBy(0, y), action.y);
      break;
    default:
      throw new Error('Unknown action: ' + action.type);
  }
}

(async () => {
  const browser = await chromium.launch({ headless: true });
  const context = await browser.newContext({ viewport: { width: 1280, height: 720 } });
  const page = await context.newPage();
  const results = [];
  const logs = [];
  page.on('console', (msg) => logs.push(msg.text()));

  try {
    for (const action of actions) {
      await perform(page, action, results);
    }
    console.log(JSON.stringify({ success: true, results, logs }));
  } catch (error) {
    console.log(JSON.stringify({ success: false, error: error.message, results, logs }));
  } finally {
    await browser.close();
  }
})();
""".strip()


def serialize_actions(actions: Sequence[BrowserAction]) -> str:
    return _ACTIONS_ADAPTER.dump_json(list(actions)).decode("utf-8")


def _first_value(results: Sequence[Mapping[str, Any]], kind: str) -> Optional[str]:
    for entry in results:
        if isinstance(entry, Mapping) and entry.get("type") == kind:
            value = entry.get("value")
            return None if value is None else str(value)
    return None


def parse_runner_output(stdout: str) -> Optional[Dict[str, Any]]:
    """Decode the runner's last stdout line; ``None`` when it is not a JSON object."""
    lines = [line for line in stdout.strip().split("\n") if line.strip()]
    if not lines:
        return None
    try:
        payload = json.loads(lines[-1])
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


async def execute_browser_actions(
    manager: SandboxManager,
    actions: Sequence[BrowserAction],
) -> Result[BrowserResult, SandboxError]:
    if not manager.is_initialized():
        return Err(SandboxNotInitializedError())

    for path, content in ((RUNNER_SCRIPT_PATH, RUNNER_SCRIPT), (ACTIONS_PATH, serialize_actions(actions))):
        written = await write_file(manager, path, content)
        if written.is_err():
            return written

    executed = await run_command(
        manager,
        f"NODE_PATH={PLAYWRIGHT_DIR}/node_modules node {RUNNER_SCRIPT_PATH} {ACTIONS_PATH} {SCREENSHOT_PATH}",
        timeout=TIMEOUTS.BROWSER,
        cwd="/tmp",
        operation="browser execution",
    )
    if executed.is_err():
        return executed

    stdout = executed.value.stdout
    payload = parse_runner_output(stdout)
    if payload is None:
        LOGGER.warning("Browser runner produced unparsable output (exit %s)", executed.value.exit_code)
        detail = stdout.strip() or executed.value.stderr.strip()
        return Ok(BrowserResult(success=False, error=f"Failed to parse result: {detail}"))

    screenshot: Optional[str] = None
    if any(isinstance(action, ScreenshotAction) for action in actions):
        encoded = await run_command(
            manager,
            f"base64 -w 0 {SCREENSHOT_PATH} 2>/dev/null || true",
            timeout=10,
            operation="browser screenshot",
        )
        if encoded.is_ok() and encoded.value.stdout.strip():
            screenshot = encoded.value.stdout.strip()

    results = payload.get("results") or []
    return Ok(
        BrowserResult(
            success=bool(payload.get("success")),
            screenshot=screenshot,
            text=_first_value(results, "text"),
            html=_first_value(results, "html"),
            error=payload.get("error"),
            logs=tuple(str(line) for line in payload.get("logs") or ()),
            evaluations=tuple(
                entry.get("value") for entry in results if isinstance(entry, Mapping) and entry.get("type") == "evaluate"
            ),
        )
    )


async def navigate_and_screenshot(
    manager: SandboxManager,
    url: str,
    *,
    wait_for_selector: Optional[str] = None,
    full_page: bool = False,
) -> Result[BrowserResult, SandboxError]:
    actions: List[BrowserAction] = [NavigateAction(url=url)]
    if wait_for_selector:
        actions.append(WaitAction(selector=wait_for_selector, timeout=10_000))
    else:
        actions.append(WaitTimeAction(ms=2000))
    actions += [ScreenshotAction(full_page=full_page), GetHtmlAction()]
    return await execute_browser_actions(manager, actions)


async def fill_form_and_submit(
    manager: SandboxManager,
    url: str,
    fields: Mapping[str, str],
    submit_selector: Optional[str] = None,
) -> Result[BrowserResult, SandboxError]:
    actions: List[BrowserAction] = [NavigateAction(url=url), WaitTimeAction(ms=1000)]
    actions += [FillAction(selector=selector, value=value) for selector, value in fields.items()]
    if submit_selector:
        actions += [ClickAction(selector=submit_selector), WaitTimeAction(ms=2000)]
    actions += [ScreenshotAction(), GetHtmlAction()]
    return await execute_browser_actions(manager, actions)


async def get_page_text(manager: SandboxManager, url: str) -> Result[str, SandboxError]:
    actions: List[BrowserAction] = [
        NavigateAction(url=url),
        WaitTimeAction(ms=2000),
        GetTextAction(selector="body"),
    ]
    result = await execute_browser_actions(manager, actions)
    if result.is_err():
        return result
    return Ok(result.value.text or "")


async def evaluate_script(manager: SandboxManager, url: str, script: str) -> Result[BrowserResult, SandboxError]:
    actions: List[BrowserAction] = [
        NavigateAction(url=url),
        WaitTimeAction(ms=1000),
        EvaluateAction(script=script),
    ]
    return await execute_browser_actions(manager, actions)


__all__ = [
    "RUNNER_SCRIPT",
    "RUNNER_SCRIPT_PATH",
    "ACTIONS_PATH",
    "SCREENSHOT_PATH",
    "serialize_actions",
    "parse_runner_output",
    "execute_browser_actions",
    "navigate_and_screenshot",
    "fill_form_and_submit",
    "get_page_text",
    "evaluate_script",
]
