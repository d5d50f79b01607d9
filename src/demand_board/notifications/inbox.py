# src/demand_board/notifications/inbox.py

from __future__ import annotations

import logging

from ..core.models import ChangeEvent, ChangeKind, Notification
from ..core.optimistic import apply_optimistic
from ..core.ports import FeedbackKind, RemoteStore, Reporter
from ..errors import RemoteStoreError, ValidationError

logger = logging.getLogger(__name__)


class NotificationInbox:
    """
    Notifications owned by one user, newest first.

    Only the owner mutates them: mark-read (optimistic) and delete-all
    (waits for the store). New rows arrive through the change feed.
    """

    def __init__(
        self,
        store: RemoteStore,
        user_email: str,
        *,
        reporter: Reporter | None = None,
        limit: int = 20,
    ) -> None:
        self._store = store
        self.user_email = user_email.strip().lower()
        self._reporter = reporter
        self.limit = max(1, int(limit))
        self._items: list[Notification] = []

    @property
    def items(self) -> list[Notification]:
        return list(self._items)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._items if not n.read)

    def get(self, notification_id: str) -> Notification | None:
        for n in self._items:
            if n.id == notification_id:
                return n
        return None

    def clear(self) -> None:
        self._items = []

    def _report(self, kind: FeedbackKind, message: str) -> None:
        if self._reporter is not None:
            self._reporter.report(kind, message)

    async def load(self) -> bool:
        try:
            rows = await self._store.fetch_notifications(self.user_email, limit=self.limit)
        except RemoteStoreError as e:
            logger.warning("Notification load failed for %s: %s", self.user_email, e.message)
            return False
        items = [Notification.from_row(r) for r in rows]
        items.sort(key=lambda n: n.created_at, reverse=True)
        self._items = items[: self.limit]
        logger.debug("Loaded %d notifications for %s", len(self._items), self.user_email)
        return True

    async def mark_read(self, notification_id: str) -> bool:
        item = self.get(notification_id)
        if item is None:
            raise ValidationError(f"Notificação não encontrada: {notification_id}", field="notification_id")
        if item.read:
            return True

        def mutate() -> None:
            item.read = True

        def revert() -> None:
            item.read = False

        return await apply_optimistic(
            mutate,
            lambda: self._store.update_notification(item.id, {"read": True}),
            revert,
            on_error=lambda _e: self._report(FeedbackKind.ERROR, "Erro ao marcar notificação como lida."),
        )

    async def mark_all_read(self) -> int:
        marked = 0
        for item in [n for n in self._items if not n.read]:
            if await self.mark_read(item.id):
                marked += 1
        return marked

    async def delete_all(self) -> bool:
        try:
            await self._store.delete_notifications(self.user_email)
        except RemoteStoreError as e:
            logger.warning("Notification delete failed for %s: %s", self.user_email, e.message)
            self._report(FeedbackKind.ERROR, "Erro ao limpar notificações.")
            return False
        self._items = []
        return True

    def merge_remote_event(self, event: ChangeEvent) -> bool:
        """Prepend a pushed notification addressed to this user (once per id)."""
        if event.table != "notifications" or event.kind is not ChangeKind.INSERT:
            return False
        row = event.new or {}
        if not row.get("id"):
            return False
        if str(row.get("user_email") or "").strip().lower() != self.user_email:
            return False
        if self.get(str(row["id"])) is not None:
            return False

        self._items.insert(0, Notification.from_row(row))
        del self._items[self.limit :]
        return True
