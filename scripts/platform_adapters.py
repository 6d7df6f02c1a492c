"""
Concrete capabilities for the relay: desktop presenter, URL opener, process spawner.

The core only talks to these through the narrow interfaces in
notification_manager and action_registry; tests substitute in-memory fakes.
"""

from __future__ import annotations

import logging
import platform
import shutil
import subprocess
import threading
import webbrowser
from typing import Callable, Sequence

from notification_manager import (
    DEFAULT_SOUND,
    ActionCategory,
    PresentationError,
    PresentedNotification,
)
from notification_payload import InterruptionLevel

logger = logging.getLogger("dandynotifier.adapters")

ResponseHandler = Callable[[str], None]

_URGENCY = {
    InterruptionLevel.PASSIVE: "low",
    InterruptionLevel.ACTIVE: "normal",
    InterruptionLevel.TIME_SENSITIVE: "normal",
    InterruptionLevel.CRITICAL: "critical",
}


class BrowserOpener:
    """Opens URLs and file:// URIs with the user's default handler."""

    def open(self, url: str) -> None:
        if not webbrowser.open(url):
            logger.warning("No handler accepted %s", url)


class SubprocessSpawner:
    """Starts a command detached from the relay, discarding its output."""

    def spawn(self, command: str, args: Sequence[str]) -> None:
        subprocess.Popen(
            [command, *args],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )


class LogPresenter:
    """Writes notifications to the log instead of the screen (headless hosts)."""

    def __init__(self):
        self.categories: dict[str, ActionCategory] = {}

    def register_category(self, category: ActionCategory) -> None:
        self.categories[category.identifier] = category

    def present(self, notification: PresentedNotification) -> None:
        buttons = ""
        category = self.categories.get(notification.category_id or "")
        if category:
            buttons = " [" + ", ".join(b.label for b in category.buttons) + "]"
        logger.info(
            "NOTIFY (%s) %s: %s%s",
            notification.interruption_level.value,
            notification.title,
            notification.body,
            buttons,
        )


def _applescript_quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


class DesktopPresenter:
    """Shows notifications with the host's notification command.

    Linux uses ``notify-send``. When a notification has buttons, notify-send
    is run with ``--wait`` on a daemon thread and the chosen action id it
    prints is passed to the response handler. macOS uses ``osascript``, which
    cannot show buttons, so actions there are never triggered.
    """

    def __init__(self, on_response: ResponseHandler | None = None, system: str | None = None):
        self.on_response = on_response
        self.system = system or platform.system()
        self._categories: dict[str, ActionCategory] = {}
        self._lock = threading.Lock()

    def set_response_handler(self, handler: ResponseHandler) -> None:
        self.on_response = handler

    def register_category(self, category: ActionCategory) -> None:
        with self._lock:
            self._categories[category.identifier] = category

    def present(self, notification: PresentedNotification) -> None:
        if self.system == "Darwin":
            self._present_osascript(notification)
        elif self.system == "Linux":
            self._present_notify_send(notification)
        else:
            self._forget_category(notification)
            raise PresentationError(f"Desktop notifications are not supported on {self.system}")

    def build_notify_send_args(self, notification: PresentedNotification) -> list[str]:
        args = [
            "notify-send",
            "--app-name=DandyNotifier",
            f"--urgency={_URGENCY[notification.interruption_level]}",
        ]
        if notification.sound != DEFAULT_SOUND:
            args.append(f"--hint=string:sound-name:{notification.sound}")
        if notification.thread_id:
            args.append(f"--hint=string:x-dunst-stack-tag:{notification.thread_id}")
        category = self._category_for(notification)
        if category:
            args.append("--wait")
            args.extend(f"--action={b.id}={b.label}" for b in category.buttons)
        summary = notification.title
        if notification.subtitle:
            summary = f"{notification.title}: {notification.subtitle}"
        args.extend(["--", summary, notification.body])
        return args

    def _category_for(self, notification: PresentedNotification) -> ActionCategory | None:
        if not notification.category_id:
            return None
        with self._lock:
            return self._categories.get(notification.category_id)

    def _forget_category(self, notification: PresentedNotification) -> None:
        with self._lock:
            self._categories.pop(notification.category_id or "", None)

    def _present_notify_send(self, notification: PresentedNotification) -> None:
        if shutil.which("notify-send") is None:
            self._forget_category(notification)
            raise PresentationError("notify-send not found (install libnotify)")
        args = self.build_notify_send_args(notification)
        try:
            proc = subprocess.Popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                text=True,
            )
        except OSError as e:
            self._forget_category(notification)
            raise PresentationError(f"Failed to run notify-send: {e}") from e

        watcher = threading.Thread(
            target=self._await_response,
            args=(proc, notification),
            name=f"notify-{notification.identifier[:8]}",
            daemon=True,
        )
        watcher.start()

    def _await_response(self, proc: subprocess.Popen, notification: PresentedNotification) -> None:
        output, _ = proc.communicate()
        self._forget_category(notification)
        action_id = (output or "").strip()
        if not action_id or self.on_response is None:
            return
        try:
            self.on_response(action_id)
        except Exception:
            logger.error("Response handler failed for action %r", action_id, exc_info=True)

    def _present_osascript(self, notification: PresentedNotification) -> None:
        script = f"display notification {_applescript_quote(notification.body)}"
        script += f" with title {_applescript_quote(notification.title)}"
        if notification.subtitle:
            script += f" subtitle {_applescript_quote(notification.subtitle)}"
        if notification.sound != DEFAULT_SOUND:
            script += f" sound name {_applescript_quote(notification.sound.rsplit('.', 1)[0])}"
        # osascript shows no buttons, so the category is never consulted
        self._forget_category(notification)
        try:
            subprocess.Popen(
                ["osascript", "-e", script],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as e:
            raise PresentationError(f"Failed to run osascript: {e}") from e
