# src/demand_board/core/state.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..auth.session import SessionManager
from ..llm.classifier import ClassificationResult, DemandClassifier
from ..notifications.inbox import NotificationInbox
from ..tasks.fanout import NotificationFanout, UnknownRecipientPolicy
from ..tasks.realtime import RealtimeRouter
from ..tasks.repository import TaskRepository
from .identity import IdentityDirectory, ProjectCatalog
from .models import Session
from .ports import ChangeFeed, RemoteStore, Reporter

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: Any

    store: RemoteStore
    directory: IdentityDirectory
    catalog: ProjectCatalog
    sessions: SessionManager
    classifier: DemandClassifier

    feed: ChangeFeed | None = None
    reporter: Reporter | None = None

    # Per-session objects, present only while someone is logged in.
    repository: TaskRepository | None = None
    inbox: NotificationInbox | None = None
    router: RealtimeRouter | None = None

    # Last /classify output, kept so /classify-apply style flows can reuse it.
    last_classification: ClassificationResult | None = None

    @property
    def session(self) -> Session | None:
        return self.sessions.current

    def _setting(self, name: str, default: Any) -> Any:
        return getattr(self.settings, name, default)

    async def start_session(self, session: Session) -> None:
        """Build the per-user objects, subscribe to the feed, then load."""
        if self.repository is not None:
            await self.end_session(logout=False)

        fanout = NotificationFanout(
            self.store,
            self.directory,
            policy=UnknownRecipientPolicy.from_str(self._setting("unknown_recipient_policy", "warn")),
        )
        self.repository = TaskRepository(
            self.store,
            fanout,
            self.catalog,
            actor=session,
            reporter=self.reporter,
            reopen_on_progress_regression=bool(self._setting("reopen_on_progress_regression", False)),
            allow_assignee_delete=bool(self._setting("allow_assignee_delete", False)),
        )
        self.inbox = NotificationInbox(
            self.store,
            session.email,
            reporter=self.reporter,
            limit=int(self._setting("notifications_limit", 20)),
        )

        if self.feed is not None:
            self.router = RealtimeRouter(self.feed, self.repository, self.inbox)
            # Subscribe before loading so nothing written meanwhile is missed.
            self.router.start()

        await self.repository.load()
        await self.inbox.load()
        logger.info(
            "Session started for %s: %d tasks, %d unread notifications",
            session.email,
            len(self.repository.tasks),
            self.inbox.unread_count,
        )

    async def end_session(self, *, logout: bool = True) -> None:
        if self.router is not None:
            self.router.stop()
        if self.repository is not None:
            self.repository.clear()
        if self.inbox is not None:
            self.inbox.clear()
        self.router = None
        self.repository = None
        self.inbox = None
        self.last_classification = None
        if logout:
            self.sessions.logout()
