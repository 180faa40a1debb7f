"""
Notification hand-off.

The lifecycle core only reports which transitions happened; delivery
(e-mail, push, in-app) belongs to the notification collaborator.  The
default dispatcher writes each event to the log so a downstream shipper
can pick them up.
"""

from __future__ import annotations

import logging
from typing import Iterable, Protocol

from src.domain.events import TransitionEvent

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    async def dispatch(self, events: Iterable[TransitionEvent]) -> None: ...


class LoggingNotificationDispatcher:
    async def dispatch(self, events: Iterable[TransitionEvent]) -> None:
        for event in events:
            logger.info(
                "notification %s -> %s %s",
                event.type,
                event.recipient_id,
                event.variables,
            )
