"""
Turns validated payloads into presentable notifications and owns the action registry.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import PurePath
from typing import Protocol

from action_registry import ActionRegistry
from notification_payload import MAX_ACTIONS, InterruptionLevel, NotificationPayload

logger = logging.getLogger("dandynotifier.manager")

DEFAULT_SOUND = "default"
CATEGORY_PREFIX = "ACTIONABLE"


class PresentationError(Exception):
    """The presentation surface refused or failed to show a notification."""


@dataclass(frozen=True)
class ActionButton:
    id: str
    label: str


@dataclass(frozen=True)
class ActionCategory:
    """A named bundle of buttons a notification can be tagged with."""

    identifier: str
    buttons: tuple[ActionButton, ...]


@dataclass(frozen=True)
class PresentedNotification:
    identifier: str
    title: str
    body: str
    subtitle: str | None = None
    sound: str = DEFAULT_SOUND
    thread_id: str | None = None
    interruption_level: InterruptionLevel = InterruptionLevel.ACTIVE
    category_id: str | None = None


class NotificationPresenter(Protocol):
    """The surface that actually shows banners to the user.

    ``present`` must return promptly; it schedules the notification for
    display and never waits for the user.
    """

    def register_category(self, category: ActionCategory) -> None: ...

    def present(self, notification: PresentedNotification) -> None: ...


def sound_name(sound: str | None) -> str:
    """Sounds may be given as a path; the presenter only wants the name."""
    if not sound:
        return DEFAULT_SOUND
    return PurePath(sound).name or DEFAULT_SOUND


class NotificationManager:
    def __init__(self, presenter: NotificationPresenter, registry: ActionRegistry):
        self.presenter = presenter
        self.registry = registry

    def show_notification(self, payload: NotificationPayload) -> PresentedNotification:
        """Present *payload* and register its actions.

        Raises PresentationError if the presenter rejects the category or the
        notification. Actions are registered only after the notification has
        been handed to the presenter, so a rejected notification leaves the
        registry untouched.
        """
        identifier = str(uuid.uuid4())
        actions = payload.actions[:MAX_ACTIONS]
        category_id = None

        if actions:
            category = ActionCategory(
                identifier=f"{CATEGORY_PREFIX}-{identifier}",
                buttons=tuple(ActionButton(id=a.id, label=a.label) for a in actions),
            )
            try:
                self.presenter.register_category(category)
            except Exception as e:
                raise PresentationError(f"Failed to register actions: {e}") from e
            category_id = category.identifier

        notification = PresentedNotification(
            identifier=identifier,
            title=payload.title,
            body=payload.message,
            subtitle=payload.subtitle,
            sound=sound_name(payload.sound),
            thread_id=payload.group,
            interruption_level=InterruptionLevel.parse(payload.interruption_level),
            category_id=category_id,
        )
        try:
            self.presenter.present(notification)
        except PresentationError:
            raise
        except Exception as e:
            raise PresentationError(str(e) or e.__class__.__name__) from e

        for action in actions:
            self.registry.register(action.id, action)

        logger.info(
            "Presented notification %s (%r, %d action%s)",
            identifier,
            payload.title,
            len(actions),
            "" if len(actions) == 1 else "s",
        )
        return notification

    def handle_response(self, action_id: str) -> None:
        """Called by the presenter when the user interacts with a notification."""
        self.registry.dispatch(action_id)
