"""
Pending-action registry: correlates notification buttons with deferred side effects.

Actions are registered when their notification is presented and consumed the
first time the user clicks the matching button, which may happen long after
the request that created them. Writers run on the server's event loop and
readers on whatever thread the presentation surface reports interactions
from, so every access goes through one lock.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Protocol, Sequence
from urllib.parse import urlparse

from notification_payload import DEFAULT_ACTION_ID, DISMISS_ACTION_ID, ActionDescriptor, ActionKind

logger = logging.getLogger("dandynotifier.actions")


class LocationOpener(Protocol):
    def open(self, url: str) -> None: ...


class ProcessSpawner(Protocol):
    def spawn(self, command: str, args: Sequence[str]) -> None: ...


def resolve_location(location: str) -> str:
    """Turn an action location into a URL.

    Scheme-qualified locations (``https://``, ``file://``, ``vscode://`` ...)
    are used as-is. Anything else is a filesystem path.
    """
    parsed = urlparse(location)
    # A single-letter scheme is a Windows drive letter, not a URL
    if len(parsed.scheme) > 1:
        return location
    return Path(location).expanduser().resolve().as_uri()


class ActionRegistry:
    """Maps action ids to pending actions. Each registration fires at most once."""

    def __init__(self, opener: LocationOpener, spawner: ProcessSpawner, max_workers: int = 2):
        self._opener = opener
        self._spawner = spawner
        self._lock = threading.Lock()
        self._pending: dict[str, ActionDescriptor] = {}
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="action-exec")

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def pending_ids(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    def register(self, action_id: str, action: ActionDescriptor) -> None:
        with self._lock:
            if action_id in self._pending:
                logger.debug("Action id %r re-registered, replacing previous entry", action_id)
            self._pending[action_id] = action

    def consume(self, action_id: str) -> ActionDescriptor | None:
        """Remove and return the action, or None if there is nothing to run."""
        with self._lock:
            return self._pending.pop(action_id, None)

    def dispatch(self, action_id: str) -> Future | None:
        """Consume *action_id* and run it.

        ``open`` runs on the calling thread. ``exec`` is handed to the worker
        pool and its Future returned, so a slow command never holds up the
        interaction thread. Unknown, default and already-consumed ids are
        no-ops.
        """
        if action_id in (DEFAULT_ACTION_ID, DISMISS_ACTION_ID):
            return None
        action = self.consume(action_id)
        if action is None:
            logger.debug("No pending action for id %r", action_id)
            return None

        if action.kind is ActionKind.OPEN:
            self._open(action)
            return None
        return self._executor.submit(self._exec, action)

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait)

    def _open(self, action: ActionDescriptor) -> None:
        url = resolve_location(action.location or "")
        logger.info("Action %r: opening %s", action.id, url)
        try:
            self._opener.open(url)
        except Exception:
            logger.error("Action %r: failed to open %s", action.id, url, exc_info=True)

    def _exec(self, action: ActionDescriptor) -> None:
        logger.info("Action %r: executing %s (%d args)", action.id, action.command, len(action.args))
        try:
            self._spawner.spawn(action.command or "", list(action.args))
        except Exception:
            logger.error("Action %r: failed to execute %s", action.id, action.command, exc_info=True)
