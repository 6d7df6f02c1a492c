#!/usr/bin/env python3
"""
Dandy Notifier MCP server: lets coding agents raise desktop notifications.

Exposes a single ``notify`` tool that forwards to the local relay started by
notify_server.py. The relay must be running; this process only sends.

Configure in an MCP client as:
    {"command": "dandy-notifier-mcp"}
"""

import asyncio
import logging
import sys
from typing import Any

from mcp.server.fastmcp import FastMCP

from relay_client import RelayClientError, build_payload, send_notification

logger = logging.getLogger("dandynotifier.mcp")

mcp = FastMCP(
    "dandy-notifier",
    instructions="""Send desktop notifications to the user through the local Dandy Notifier relay.

Use notify() when a long-running task finishes, fails, or needs attention.
Optionally attach one button: open_location (URL or file path) or
execute_command (shell command run with /bin/bash -c when clicked).
""",
)


@mcp.tool()
async def notify(
    title: str,
    message: str,
    subtitle: str | None = None,
    group: str | None = None,
    sound: str | None = None,
    interruption_level: str | None = None,
    open_location: str | None = None,
    execute_command: str | None = None,
) -> dict[str, Any]:
    """Show a desktop notification to the user.

    Args:
      - title: Notification title (required)
      - message: Notification body (required)
      - subtitle: Secondary line under the title
      - group: Group identifier; notifications with the same group stack together
      - sound: Sound name or path to a sound file
      - interruption_level: passive | active | timeSensitive | critical
      - open_location: URL or file path opened when the user clicks "Open"
      - execute_command: Shell command run when the user clicks "Execute"
    """
    if not title or not message:
        return {"error": "title and message are required"}

    payload = build_payload(
        title,
        message,
        subtitle=subtitle,
        group=group,
        sound=sound,
        interruption_level=interruption_level,
        open_location=open_location,
        execute_command=execute_command,
    )
    try:
        await asyncio.to_thread(send_notification, payload)
    except RelayClientError as e:
        logger.warning("notify failed: %s", e)
        return {"error": str(e)}
    return {"status": "ok", "message": "Notification sent"}


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stderr,  # MCP uses stdout for JSON-RPC; logs go to stderr
    )
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
