"""The fixed developer message that maps backend tool habits onto this host."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger("codex-bridge")

BRIDGE_PROMPT_MARKER = "# Codex Bridge Tooling"

BRIDGE_PROMPT = f"""{BRIDGE_PROMPT_MARKER}

You are running behind a messages-protocol client. The client owns the tool
palette; only the tool names it declares in this request exist.

## Tool names

- There is no `apply_patch` tool. Modify files with `edit`, create them with `write`.
- There is no `update_plan` tool. Use `plan.write` to change the plan and `plan.read` to review it.
- Read files with `read`; search with `grep` and `glob`; list directories with `ls`.
- Run shell commands with `bash`.
- MCP tools, when present, are named `mcp__<server>__<tool>`.

## Before every tool call

1. Is the tool name one the client declared?
2. Are file paths relative to the workspace root?
3. Did a short preamble explain what the call is for?

## Replies

- Keep progress notes brief.
- Follow the client's formatting; avoid tables unless asked.
- Finish the task before sending the final message.
"""


def bridge_message(prompt: str = BRIDGE_PROMPT) -> dict[str, str]:
    return {"role": "developer", "content": prompt}


def ensure_bridge_prompt_cached(path: Path) -> Path:
    """Write the bridge prompt to ``path`` unless a copy already exists there."""
    path = Path(path).expanduser()
    if path.exists():
        return path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(BRIDGE_PROMPT, encoding="utf-8")
    logger.info("Cached bridge prompt at %s", path)
    return path


def read_cached_bridge_prompt(path: Path) -> Optional[str]:
    """Return the cached prompt text, or ``None`` when nothing is cached."""
    try:
        return Path(path).expanduser().read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
