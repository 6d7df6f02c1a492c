"""
Client side of the relay: build ``POST /notify`` payloads and send them.
"""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any

from token_store import TokenStore

DEFAULT_SERVER_URL = "http://127.0.0.1:8889"
REQUEST_TIMEOUT = 5.0

# The relay is always local; never route through an HTTP proxy from the environment
_opener = urllib.request.build_opener(urllib.request.ProxyHandler({}))

logger = logging.getLogger("dandynotifier.client")


class RelayClientError(RuntimeError):
    """The notification could not be delivered to the relay."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


def build_payload(
    title: str,
    message: str,
    subtitle: str | None = None,
    group: str | None = None,
    sound: str | None = None,
    interruption_level: str | None = None,
    open_location: str | None = None,
    execute_command: str | None = None,
) -> dict[str, Any]:
    """Build the request body. ``open_location`` wins over ``execute_command``."""
    notification: dict[str, Any] = {"title": title, "message": message}
    if subtitle:
        notification["subtitle"] = subtitle
    if group:
        notification["group"] = group
    if sound:
        notification["sound"] = sound
    if interruption_level:
        notification["interruptionLevel"] = interruption_level

    if open_location:
        notification["action"] = {
            "id": "open_action",
            "label": "Open",
            "type": "open",
            "location": open_location,
        }
    elif execute_command:
        notification["action"] = {
            "id": "exec_action",
            "label": "Execute",
            "type": "exec",
            "exec": "/bin/bash",
            "args": ["-c", execute_command],
        }
    return {"notification": notification}


def send_notification(
    payload: dict[str, Any],
    server_url: str | None = None,
    token_file: Path | str | None = None,
) -> dict[str, Any]:
    """POST *payload* to the relay and return its JSON reply.

    Raises RelayClientError if the token is missing, the relay is unreachable,
    or it answers with anything but 200.
    """
    token = TokenStore(token_file).read()
    if not token:
        raise RelayClientError("Auth token not found. Make sure the Dandy Notifier relay is running.")

    base = (server_url or os.environ.get("DANDY_SERVER_URL") or DEFAULT_SERVER_URL).rstrip("/")
    req = urllib.request.Request(
        f"{base}/notify",
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json", "Authorization": f"Bearer {token}"},
        method="POST",
    )
    try:
        with _opener.open(req, timeout=REQUEST_TIMEOUT) as resp:  # nosec B310: localhost relay
            return json.loads(resp.read() or b"{}")
    except urllib.error.HTTPError as e:
        detail = e.read().decode("utf-8", errors="replace")
        try:
            detail = json.loads(detail).get("message", detail)
        except (json.JSONDecodeError, AttributeError):
            pass
        raise RelayClientError(f"Server returned HTTP {e.code}: {detail}", status=e.code) from e
    except (urllib.error.URLError, OSError) as e:
        raise RelayClientError(f"Could not reach relay at {base}: {e}") from e
