# src/demand_board/tasks/realtime.py

from __future__ import annotations

import logging
from collections.abc import Callable

from ..core.models import ChangeEvent
from ..core.ports import ChangeFeed
from ..notifications.inbox import NotificationInbox
from .repository import TaskRepository

logger = logging.getLogger(__name__)


class RealtimeRouter:
    """
    Routes change-feed events for the logged-in session.

    tasks / comments  -> TaskRepository.merge_remote_event
    notifications     -> NotificationInbox.merge_remote_event (own email only)
    """

    def __init__(self, feed: ChangeFeed, repository: TaskRepository, inbox: NotificationInbox) -> None:
        self._feed = feed
        self._repository = repository
        self._inbox = inbox
        self._unsubscribe: Callable[[], None] | None = None
        self.on_change: Callable[[ChangeEvent], None] | None = None

    @property
    def active(self) -> bool:
        return self._unsubscribe is not None

    def start(self) -> None:
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self._feed.subscribe(self.handle)
        logger.info("Realtime subscription started for %s", self._inbox.user_email)

    def stop(self) -> None:
        if self._unsubscribe is None:
            return
        self._unsubscribe()
        self._unsubscribe = None
        logger.info("Realtime subscription stopped for %s", self._inbox.user_email)

    def handle(self, event: ChangeEvent) -> bool:
        if event.table in ("tasks", "comments"):
            changed = self._repository.merge_remote_event(event)
        elif event.table == "notifications":
            changed = self._inbox.merge_remote_event(event)
        else:
            logger.debug("Ignoring change event for table %s", event.table)
            return False

        if changed and self.on_change is not None:
            try:
                self.on_change(event)
            except Exception:
                logger.exception("on_change callback failed")
        return changed
