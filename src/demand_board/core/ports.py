# src/demand_board/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The repository, fan-out and inbox depend on Protocols instead of concrete
implementations. Stores, feeds, feedback sinks and LLM providers stay
swappable, and tests plug in in-memory fakes.
"""

from collections.abc import Callable
from enum import StrEnum
from typing import Any, Protocol

from .models import ChangeEvent

ChatMessage = dict[str, str]
# OpenAI-style chat messages: {"role": "...", "content": "..."}.

Row = dict[str, Any]


class RemoteStore(Protocol):
    """
    Relational store holding tasks, comments, notifications and profiles.

    Every method may raise RemoteStoreError. Rows are plain dicts using the
    store's column names; timestamps are ISO-8601 strings.
    """

    async def fetch_tasks(self) -> list[Row]: ...
    async def insert_task(self, row: Row) -> Row: ...
    async def update_task(self, task_id: str, fields: Row) -> None: ...
    async def delete_task(self, task_id: str) -> None: ...

    async def insert_comment(self, row: Row) -> Row: ...

    async def fetch_notifications(self, user_email: str, limit: int = 20) -> list[Row]: ...
    async def insert_notification(self, row: Row) -> Row: ...
    async def update_notification(self, notification_id: str, fields: Row) -> None: ...
    async def delete_notifications(self, user_email: str) -> None: ...

    async def fetch_profile(self, email: str) -> Row | None: ...
    async def insert_profile(self, row: Row) -> Row: ...

    async def close(self) -> None: ...


ChangeHandler = Callable[[ChangeEvent], None]


class ChangeFeed(Protocol):
    """Realtime change events pushed by the store."""

    def subscribe(self, handler: ChangeHandler) -> Callable[[], None]: ...


class FeedbackKind(StrEnum):
    LOADING = "loading"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Reporter(Protocol):
    """
    User-facing feedback sink (the "toast").

    The view decides how to render it; the core only says what happened.
    """

    def report(self, kind: FeedbackKind, message: str) -> None: ...


class LLMClient(Protocol):
    """Chat completion client returning the full text (OpenAI-compatible)."""

    def complete(self, messages: list[ChatMessage], system_prompt: str) -> str: ...
