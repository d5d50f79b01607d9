# src/demand_board/store/feed.py

from __future__ import annotations

import logging
from collections.abc import Callable

from ..core.models import ChangeEvent
from ..core.ports import ChangeHandler

logger = logging.getLogger(__name__)


class LocalChangeFeed:
    """
    In-process change feed.

    Stores publish an event after every committed write; subscribers are called
    synchronously in subscription order. A failing subscriber is logged and
    does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._handlers: list[ChangeHandler] = []

    def subscribe(self, handler: ChangeHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def publish(self, event: ChangeEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Change handler failed table=%s kind=%s", event.table, event.kind)
