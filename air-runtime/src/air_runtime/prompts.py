"""Prompt templates for the issue-fixing agent."""
from __future__ import annotations

from air_contracts import GitHubIssue, GitHubRepo

MAX_PROMPT_COMMENTS = 3
MAX_COMMENT_CHARS = 300

_BASE_TOOLS = """\
**Core:**
- sandbox_clone - Clone repo (MUST call first)
- sandbox_exec - Run shell commands
- sandbox_read - Read file contents
- sandbox_write - Write entire file
- sandbox_edit - Replace string in file (preferred for small changes)
- sandbox_grep - Search code (use instead of ls)
- sandbox_ls - List directory

**Git:**
- sandbox_git_log - Recent commits
- sandbox_git_checkout - Switch commit/branch
- sandbox_bisect - Find regression commit

**Browser (UI bugs):**
- sandbox_browser - Run a scripted Playwright session (navigate, click, fill, screenshot, ...)
- sandbox_url - Get public URL for a local server port"""

_GATEWAY_TOOLS = """
- browser_* - Interactive Playwright tools from the browser gateway (navigate, snapshot, click, type)"""

_WORKFLOW = """\
**Help:**
- ask_user - Ask the user when stuck (missing API keys, unclear requirements, etc)

## Workflow

1. Clone immediately
2. grep for relevant code
3. Read the files
4. **REPRODUCE the bug first** (run tests, or screenshot for UI)
5. Fix minimally with sandbox_edit
6. **VERIFY the fix** (run tests again, or screenshot again for UI)

## Rules

- grep > ls (search don't browse)
- sandbox_edit > sandbox_write (for small changes)
- Fix only what's needed
- If the bug no longer reproduces, use sandbox_git_log or sandbox_bisect to find the fixing commit

**UI BUGS (HTML, CSS, visual):**
1. Start a local server: sandbox_exec with "python -m http.server 3000 &"
2. Get public URL: sandbox_url (port 3000)
3. Screenshot BEFORE with sandbox_browser (navigate to http://localhost:3000, then screenshot)
4. Make the fix with sandbox_edit
5. Screenshot AFTER with sandbox_browser
6. Compare screenshots to verify the fix visually

**Logic bugs:** Run relevant tests before and after

## Output

When done, output this JSON:

```json
{
  "status": "solved" | "already_fixed" | "partial" | "needs_human",
  "reproduced": true | false,
  "rootCause": "brief explanation",
  "summary": "what you did",
  "filesChanged": ["file.ts"],
  "fixingCommit": "sha (already_fixed only)",
  "remainingWork": "what is left (partial only)",
  "blockers": ["why a human is needed (needs_human only)"]
}
```"""


def get_system_prompt(browser_enabled: bool = False) -> str:
    """Return the agent's system prompt, listing gateway browser tools when available."""
    tools = _BASE_TOOLS + (_GATEWAY_TOOLS if browser_enabled else "")
    return f"You are an expert debugger. Fix GitHub issues fast.\n\n## Tools\n\n{tools}\n\n{_WORKFLOW}"


def format_issue_prompt(issue: GitHubIssue, repo: GitHubRepo) -> str:
    comments = ""
    if issue.comments:
        rendered = "\n\n".join(
            f"**{comment.user}:** {comment.body[:MAX_COMMENT_CHARS]}"
            for comment in issue.comments[:MAX_PROMPT_COMMENTS]
        )
        comments = f"\n## Comments\n{rendered}"

    return (
        f"# Issue #{issue.number}: {issue.title}\n"
        "\n"
        f"**Repo:** {repo.full_name}\n"
        f"**Clone:** {repo.clone_url}\n"
        "\n"
        "## Description\n"
        f"{issue.body or '(no description)'}\n"
        f"{comments}\n"
        "\n"
        "---\n"
        "Clone and fix this issue. Be fast."
    )


__all__ = ["get_system_prompt", "format_issue_prompt"]
