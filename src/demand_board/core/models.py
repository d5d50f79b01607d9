# src/demand_board/core/models.py

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class Priority(StrEnum):
    """Board partition key."""

    ALTA = "ALTA"
    MEDIA = "MEDIA"
    BAIXA = "BAIXA"

    @classmethod
    def from_db(cls, raw: str | None) -> Priority:
        if not raw:
            return cls.MEDIA
        try:
            return cls(str(raw).strip().upper())
        except ValueError:
            return cls.MEDIA


class Category(StrEnum):
    DEV = "Dev"
    DADOS = "Dados"
    INFRA = "Infra"
    PESQUISA = "Pesquisa"

    @classmethod
    def from_db(cls, raw: str | None) -> Category:
        if not raw:
            return cls.DEV
        wanted = str(raw).strip().lower()
        for member in cls:
            if member.value.lower() == wanted:
                return member
        return cls.DEV


class TaskStatus(StrEnum):
    PENDING = "PENDING"
    DONE = "DONE"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(str(raw).strip().upper())
        except ValueError:
            return cls.PENDING

    def toggled(self) -> TaskStatus:
        return TaskStatus.PENDING if self is TaskStatus.DONE else TaskStatus.DONE


class Role(StrEnum):
    BOSS = "BOSS"
    EMPLOYEE = "EMPLOYEE"


class ChangeKind(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


def parse_ts(value: Any) -> datetime:
    """
    Normalize a store timestamp to an aware UTC datetime.

    Accepts datetimes, ISO-8601 strings (including a trailing "Z") and epoch seconds.
    Missing or unparseable values map to "now" so a malformed row never breaks ordering.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=UTC)
    if isinstance(value, str) and value.strip():
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Unparseable timestamp %r, using now", value)
            return datetime.now(UTC)
        return dt if dt.tzinfo else dt.replace(tzinfo=UTC)
    return datetime.now(UTC)


def format_ts(value: datetime) -> str:
    return value.astimezone(UTC).isoformat()


def _assignees_from_db(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raw = [raw]
    if not isinstance(raw, (list, tuple)):
        return []
    out: list[str] = []
    for name in raw:
        s = str(name).strip()
        if s and s not in out:
            out.append(s)
    return out


@dataclass(slots=True)
class Comment:
    id: str
    task_id: str
    author: str
    text: str
    created_at: datetime

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Comment:
        return cls(
            id=str(row["id"]),
            task_id=str(row.get("task_id") or ""),
            author=str(row.get("author") or ""),
            text=str(row.get("text") or ""),
            created_at=parse_ts(row.get("created_at")),
        )


@dataclass(slots=True)
class Task:
    id: str
    title: str
    category: Category
    priority: Priority
    project: str
    assignees: list[str]
    created_at: datetime
    status: TaskStatus = TaskStatus.PENDING
    progress: int = 0
    justification: str = ""
    comments: list[Comment] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Task:
        """Build a Task from a store row; nested comments are sorted ascending."""
        comments = [Comment.from_row(c) for c in (row.get("comments") or [])]
        comments.sort(key=lambda c: c.created_at)
        return cls(
            id=str(row["id"]),
            title=str(row.get("title") or ""),
            category=Category.from_db(row.get("category")),
            priority=Priority.from_db(row.get("priority")),
            project=str(row.get("project") or ""),
            assignees=_assignees_from_db(row.get("assignees")),
            created_at=parse_ts(row.get("created_at")),
            status=TaskStatus.from_db(row.get("status")),
            progress=clamp_progress(row.get("progress")),
            justification=str(row.get("justification") or ""),
            comments=comments,
        )

    def merge_row(self, row: dict[str, Any]) -> None:
        """Overwrite scalar fields present in `row`; comments are left untouched."""
        if "title" in row:
            self.title = str(row.get("title") or "")
        if "category" in row:
            self.category = Category.from_db(row.get("category"))
        if "priority" in row:
            self.priority = Priority.from_db(row.get("priority"))
        if "project" in row:
            self.project = str(row.get("project") or "")
        if "assignees" in row:
            assignees = _assignees_from_db(row.get("assignees"))
            if assignees:
                self.assignees = assignees
        if "status" in row:
            self.status = TaskStatus.from_db(row.get("status"))
        if "progress" in row:
            self.progress = clamp_progress(row.get("progress"))
        if "justification" in row:
            self.justification = str(row.get("justification") or "")
        if row.get("created_at"):
            self.created_at = parse_ts(row.get("created_at"))

    def has_comment(self, comment_id: str) -> bool:
        return any(c.id == comment_id for c in self.comments)

    @property
    def is_done(self) -> bool:
        return self.status is TaskStatus.DONE


def clamp_progress(raw: Any) -> int:
    try:
        value = int(raw or 0)
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, value))


@dataclass(slots=True)
class TaskDraft:
    """A task that has not been persisted yet (no id, no created_at)."""

    title: str
    assignees: list[str]
    category: Category = Category.DEV
    priority: Priority = Priority.MEDIA
    project: str = ""
    justification: str = ""

    def to_insert_row(self) -> dict[str, Any]:
        return {
            "title": self.title.strip(),
            "category": self.category.value,
            "priority": self.priority.value,
            "project": self.project.strip(),
            "assignees": list(self.assignees),
            "justification": self.justification.strip(),
            "status": TaskStatus.PENDING.value,
            "progress": 0,
        }


@dataclass(slots=True)
class Notification:
    id: str
    user_email: str
    title: str
    message: str
    created_at: datetime
    read: bool = False

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Notification:
        return cls(
            id=str(row["id"]),
            user_email=str(row.get("user_email") or "").lower(),
            title=str(row.get("title") or ""),
            message=str(row.get("message") or ""),
            created_at=parse_ts(row.get("created_at")),
            read=bool(row.get("read") or False),
        )


@dataclass(slots=True, frozen=True)
class Identity:
    """One allowlist entry."""

    name: str
    email: str
    role: Role

    @property
    def is_boss(self) -> bool:
        return self.role is Role.BOSS


@dataclass(slots=True, frozen=True)
class Session:
    """Authenticated identity for the running process."""

    name: str
    email: str
    role: Role

    @property
    def is_boss(self) -> bool:
        return self.role is Role.BOSS

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "email": self.email, "role": self.role.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        return cls(
            name=str(data["name"]),
            email=str(data["email"]).lower(),
            role=Role(str(data["role"])),
        )

    @classmethod
    def from_identity(cls, identity: Identity) -> Session:
        return cls(name=identity.name, email=identity.email, role=identity.role)


@dataclass(slots=True, frozen=True)
class ChangeEvent:
    """One change-feed message (table row inserted/updated/deleted)."""

    table: str
    kind: ChangeKind
    new: dict[str, Any] = field(default_factory=dict)
    old: dict[str, Any] | None = None
