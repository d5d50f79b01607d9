# src/demand_board/store/polling_feed.py

from __future__ import annotations

"""
Change feed for stores without push (the REST backend).

A small polling loop that:
- fetches the task snapshot (with nested comments) and each watched inbox,
- diffs it against the previous snapshot,
- publishes INSERT / UPDATE / DELETE events for tasks, INSERT for comments
  and INSERT for notifications.

The first poll only records the baseline. UPDATE events carry just the
columns that changed, so a poll racing a local write cannot roll back
fields it did not see change.

The loop starts with the first subscriber (inside a running event loop)
and is cancelled when the last one unsubscribes.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from typing import Any

from ..core.models import ChangeEvent, ChangeKind
from ..core.ports import ChangeHandler, RemoteStore, Row
from ..errors import RemoteStoreError
from .feed import LocalChangeFeed

logger = logging.getLogger(__name__)


class PollingChangeFeed(LocalChangeFeed):
    def __init__(
        self,
        store: RemoteStore,
        *,
        emails: Iterable[str] = (),
        interval_seconds: float = 5.0,
        notifications_limit: int = 20,
        autostart: bool = True,
    ) -> None:
        super().__init__()
        self._store = store
        self.emails: list[str] = list(dict.fromkeys(e.strip().lower() for e in emails if e.strip()))
        self.interval_seconds = max(0.01, float(interval_seconds))
        self.notifications_limit = max(1, int(notifications_limit))
        self.autostart = autostart

        self._tasks: dict[str, Row] | None = None
        self._comment_ids: set[str] = set()
        self._notification_ids: set[str] = set()
        self._runner: asyncio.Task[None] | None = None

    # ---- lifecycle ----

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    def subscribe(self, handler: ChangeHandler) -> Callable[[], None]:
        unsubscribe = super().subscribe(handler)
        if self.autostart:
            self.start()

        def unsubscribe_and_maybe_stop() -> None:
            unsubscribe()
            if self.subscriber_count == 0:
                self.stop()

        return unsubscribe_and_maybe_stop

    def start(self) -> None:
        if self.running:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; polling not started")
            return
        self._runner = loop.create_task(self._run(), name="polling-change-feed")
        logger.info("Polling change feed started (every %.1fs)", self.interval_seconds)

    def stop(self) -> None:
        if self._runner is None:
            return
        self._runner.cancel()
        self._runner = None
        logger.info("Polling change feed stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except RemoteStoreError as e:
                logger.warning("Change poll failed: %s", e.message)
            except Exception:
                logger.exception("Change poll crashed")
            await asyncio.sleep(self.interval_seconds)

    # ---- polling ----

    async def poll_once(self) -> int:
        """Fetch, diff and publish. Returns the number of events published."""
        rows = await self._store.fetch_tasks()
        inbox_rows: list[Row] = []
        for email in self.emails:
            inbox_rows.extend(await self._store.fetch_notifications(email, limit=self.notifications_limit))

        events = self._diff(rows, inbox_rows)
        for event in events:
            self.publish(event)
        if events:
            logger.debug("Change poll published %d event(s)", len(events))
        return len(events)

    def _diff(self, rows: list[Row], inbox_rows: list[Row]) -> list[ChangeEvent]:
        tasks: dict[str, Row] = {}
        comments: list[Row] = []
        for row in rows:
            task_id = str(row.get("id") or "")
            if not task_id:
                continue
            tasks[task_id] = {k: v for k, v in row.items() if k != "comments"}
            for c in row.get("comments") or []:
                if c.get("id"):
                    comments.append({**c, "task_id": c.get("task_id") or task_id})
        comments.sort(key=lambda c: str(c.get("created_at") or ""))

        previous = self._tasks
        self._tasks = tasks
        if previous is None:
            # Baseline poll.
            self._comment_ids = {str(c["id"]) for c in comments}
            self._notification_ids = {str(n["id"]) for n in inbox_rows if n.get("id")}
            return []

        events: list[ChangeEvent] = []
        for task_id, row in tasks.items():
            old = previous.get(task_id)
            if old is None:
                events.append(ChangeEvent(table="tasks", kind=ChangeKind.INSERT, new=row))
                continue
            changed = _changed_columns(old, row)
            if changed:
                events.append(
                    ChangeEvent(
                        table="tasks",
                        kind=ChangeKind.UPDATE,
                        new={"id": task_id, **changed},
                        old={k: old.get(k) for k in changed},
                    )
                )
        for task_id in previous.keys() - tasks.keys():
            events.append(ChangeEvent(table="tasks", kind=ChangeKind.DELETE, old={"id": task_id}))

        for c in comments:
            cid = str(c["id"])
            if cid not in self._comment_ids:
                self._comment_ids.add(cid)
                events.append(ChangeEvent(table="comments", kind=ChangeKind.INSERT, new=c))

        for n in sorted(inbox_rows, key=lambda r: str(r.get("created_at") or "")):
            nid = str(n.get("id") or "")
            if nid and nid not in self._notification_ids:
                self._notification_ids.add(nid)
                events.append(ChangeEvent(table="notifications", kind=ChangeKind.INSERT, new=n))
        return events


def _changed_columns(old: Row, new: Row) -> dict[str, Any]:
    return {k: v for k, v in new.items() if k != "id" and old.get(k) != v}
