"""
Notification payload model and the JSON decoder for ``POST /notify`` bodies.

Wire shape::

    {"notification": {
        "title": str, "message": str,
        "subtitle"?: str, "group"?: str, "sound"?: str,
        "interruptionLevel"?: "passive" | "active" | "timeSensitive" | "critical",
        "action"?: Action, "actions"?: [Action]
    }}

    Action = {"id": str, "label": str, "type": "open" | "exec",
              "location"?: str, "exec"?: str, "args"?: [str]}

The legacy single ``action`` and the ``actions`` list are folded into one
list at decode time; nothing downstream looks at which form was used.
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from typing import Any

MAX_ACTIONS = 4

# Identifiers the presentation surface reports for interactions that are not buttons
DEFAULT_ACTION_ID = "default"
DISMISS_ACTION_ID = "dismiss"
RESERVED_ACTION_IDS = frozenset({DEFAULT_ACTION_ID, DISMISS_ACTION_ID})


class InterruptionLevel(str, enum.Enum):
    PASSIVE = "passive"
    ACTIVE = "active"
    TIME_SENSITIVE = "timeSensitive"
    CRITICAL = "critical"

    @classmethod
    def parse(cls, value: Any) -> InterruptionLevel:
        """Map a wire value to a level. Anything unrecognized is ACTIVE."""
        for level in cls:
            if level.value == value:
                return level
        return cls.ACTIVE


class ActionKind(str, enum.Enum):
    OPEN = "open"
    EXEC = "exec"


@dataclass(frozen=True)
class ActionDescriptor:
    id: str
    label: str
    kind: ActionKind
    location: str | None = None
    command: str | None = None
    args: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "label": self.label, "type": self.kind.value}
        if self.kind is ActionKind.OPEN:
            data["location"] = self.location
        else:
            data["exec"] = self.command
            data["args"] = list(self.args)
        return data


@dataclass(frozen=True)
class NotificationPayload:
    title: str
    message: str
    subtitle: str | None = None
    group: str | None = None
    sound: str | None = None
    interruption_level: InterruptionLevel = InterruptionLevel.ACTIVE
    actions: tuple[ActionDescriptor, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        """Encode as the request body accepted by ``POST /notify``."""
        notification: dict[str, Any] = {"title": self.title, "message": self.message}
        for key, value in (("subtitle", self.subtitle), ("group", self.group), ("sound", self.sound)):
            if value is not None:
                notification[key] = value
        notification["interruptionLevel"] = self.interruption_level.value
        if self.actions:
            notification["actions"] = [a.to_dict() for a in self.actions]
        return {"notification": notification}

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict()).encode("utf-8")


class DecodeError(Exception):
    """The request body is not a valid notification payload.

    Carries enough context for the caller to spot a typo without access to
    server logs: the raw body text and the keys that were actually present.
    """

    def __init__(
        self,
        message: str,
        body: str = "",
        keys: list[str] | None = None,
        notification_keys: list[str] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.body = body
        self.keys = keys
        self.notification_keys = notification_keys

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"error": "Invalid JSON", "message": self.message, "body": self.body}
        if self.keys is not None:
            data["keys"] = self.keys
        if self.notification_keys is not None:
            data["notification_keys"] = self.notification_keys
        return data


def _optional_str(obj: dict, key: str, where: str) -> str | None:
    value = obj.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{where}.{key} must be a string")
    return value


def _required_str(obj: dict, key: str, where: str) -> str:
    value = obj.get(key)
    if value is None:
        raise ValueError(f"Missing required field: {where}.{key}")
    if not isinstance(value, str):
        raise ValueError(f"{where}.{key} must be a string")
    return value


def decode_action(obj: Any, where: str = "action") -> ActionDescriptor:
    if not isinstance(obj, dict):
        raise ValueError(f"{where} must be an object")
    action_id = _required_str(obj, "id", where)
    if not action_id:
        raise ValueError(f"{where}.id must not be empty")
    if action_id in RESERVED_ACTION_IDS:
        raise ValueError(f"{where}.id {action_id!r} is reserved")
    label = _required_str(obj, "label", where)
    kind_raw = _required_str(obj, "type", where)
    try:
        kind = ActionKind(kind_raw)
    except ValueError:
        raise ValueError(f"{where}.type must be 'open' or 'exec', got {kind_raw!r}") from None

    if kind is ActionKind.OPEN:
        location = _required_str(obj, "location", where)
        return ActionDescriptor(id=action_id, label=label, kind=kind, location=location)

    command = _required_str(obj, "exec", where)
    args = obj.get("args") or []
    if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
        raise ValueError(f"{where}.args must be a list of strings")
    return ActionDescriptor(id=action_id, label=label, kind=kind, command=command, args=tuple(args))


def _decode_actions(notification: dict) -> tuple[ActionDescriptor, ...]:
    raw_list = notification.get("actions")
    if raw_list is not None:
        if not isinstance(raw_list, list):
            raise ValueError("notification.actions must be a list")
        raw = raw_list
        where = "notification.actions"
    elif notification.get("action") is not None:
        raw = [notification["action"]]
        where = "notification.action"
    else:
        return ()

    actions = [decode_action(item, f"{where}[{i}]") for i, item in enumerate(raw[:MAX_ACTIONS])]
    seen: set[str] = set()
    for action in actions:
        if action.id in seen:
            raise ValueError(f"Duplicate action id: {action.id!r}")
        seen.add(action.id)
    return tuple(actions)


def decode_notification(obj: Any) -> NotificationPayload:
    """Build a payload from the already-parsed ``notification`` object."""
    if not isinstance(obj, dict):
        raise ValueError("notification must be an object")
    title = _required_str(obj, "title", "notification")
    if not title:
        raise ValueError("notification.title must not be empty")
    return NotificationPayload(
        title=title,
        message=_required_str(obj, "message", "notification"),
        subtitle=_optional_str(obj, "subtitle", "notification"),
        group=_optional_str(obj, "group", "notification"),
        sound=_optional_str(obj, "sound", "notification"),
        interruption_level=InterruptionLevel.parse(obj.get("interruptionLevel")),
        actions=_decode_actions(obj),
    )


def decode_request(body: bytes) -> NotificationPayload:
    """Decode a ``POST /notify`` body. Raises DecodeError with diagnostics."""
    text = body.decode("utf-8", errors="replace")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeError(str(e), body=text) from e

    keys = sorted(data) if isinstance(data, dict) else None
    nested = data.get("notification") if isinstance(data, dict) else None
    notification_keys = sorted(nested) if isinstance(nested, dict) else None

    try:
        if not isinstance(data, dict):
            raise ValueError("Request body must be a JSON object")
        if "notification" not in data:
            raise ValueError("Missing required field: notification")
        return decode_notification(nested)
    except ValueError as e:
        raise DecodeError(str(e), body=text, keys=keys, notification_keys=notification_keys) from e
