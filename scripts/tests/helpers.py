"""Shared test helpers."""
from __future__ import annotations

import json
import threading


class FakePresenter:
    """Records what the manager hands to the presentation surface."""

    def __init__(self, fail_present: Exception | None = None, fail_category: Exception | None = None):
        self.categories = []
        self.presented = []
        self.fail_present = fail_present
        self.fail_category = fail_category

    def register_category(self, category) -> None:
        if self.fail_category:
            raise self.fail_category
        self.categories.append(category)

    def present(self, notification) -> None:
        if self.fail_present:
            raise self.fail_present
        self.presented.append(notification)


class FakeOpener:
    def __init__(self):
        self.opened: list[str] = []
        self.threads: list[str] = []

    def open(self, url: str) -> None:
        self.threads.append(threading.current_thread().name)
        self.opened.append(url)


class FakeSpawner:
    def __init__(self):
        self.spawned: list[tuple[str, list[str]]] = []
        self.threads: list[str] = []
        self.done = threading.Event()

    def spawn(self, command: str, args) -> None:
        self.threads.append(threading.current_thread().name)
        self.spawned.append((command, list(args)))
        self.done.set()


def make_body(overrides: dict | None = None, **notification) -> bytes:
    """Build a minimal valid /notify body, with optional notification fields."""
    data = {"notification": {"title": "T", "message": "M"}}
    data["notification"].update(notification)
    if overrides:
        data.update(overrides)
    return json.dumps(data).encode()


def make_action(action_id: str = "a1", kind: str = "open", **fields) -> dict:
    action = {"id": action_id, "label": action_id.upper(), "type": kind}
    if kind == "open":
        action.setdefault("location", "https://example.com")
    else:
        action.setdefault("exec", "/bin/echo")
        action.setdefault("args", ["hi"])
    action.update(fields)
    return action
