# src/demand_board/tasks/fanout.py

from __future__ import annotations

"""
Notification fan-out.

After a task is created or a comment is added, work out who must hear about it
and write one notification row per recipient.

Fan-out is fire-and-forget: failures are logged, never retried, never surfaced
to the acting user, and never roll back the mutation that triggered them.
"""

import asyncio
import logging
from collections.abc import Iterable
from enum import StrEnum

from ..core.identity import IdentityDirectory
from ..core.models import Comment, Session, Task
from ..core.ports import RemoteStore
from ..errors import ValidationError

logger = logging.getLogger(__name__)


class UnknownRecipientPolicy(StrEnum):
    """What to do with a display name that is not in the allowlist."""

    SKIP = "skip"  # silently drop the recipient
    WARN = "warn"  # drop it, but log a warning
    FAIL = "fail"  # reject task creation before any remote call

    @classmethod
    def from_str(cls, raw: str | None) -> UnknownRecipientPolicy:
        try:
            return cls((raw or "").strip().lower())
        except ValueError:
            return cls.WARN


class NotificationFanout:
    def __init__(
        self,
        store: RemoteStore,
        directory: IdentityDirectory,
        *,
        policy: UnknownRecipientPolicy = UnknownRecipientPolicy.WARN,
    ) -> None:
        self._store = store
        self._directory = directory
        self.policy = policy

    def unresolved(self, names: Iterable[str]) -> list[str]:
        return [n for n in names if self._directory.email_for(n) is None]

    def check_recipients(self, names: Iterable[str]) -> None:
        """Raise ValidationError for unknown names when the policy is FAIL."""
        if self.policy is not UnknownRecipientPolicy.FAIL:
            return
        missing = self.unresolved(names)
        if missing:
            raise ValidationError(
                f"Responsável(is) fora da lista de usuários: {', '.join(missing)}",
                field="assignees",
                unresolved=missing,
            )

    def resolve_emails(self, names: Iterable[str]) -> list[str]:
        emails: list[str] = []
        for name in names:
            email = self._directory.email_for(name)
            if email is None:
                if self.policy is UnknownRecipientPolicy.SKIP:
                    logger.debug("Fan-out: no directory entry for %r, skipped", name)
                else:
                    logger.warning("Fan-out: no directory entry for %r, skipped", name)
                continue
            if email not in emails:
                emails.append(email)
        return emails

    async def notify(self, emails: Iterable[str], *, title: str, message: str) -> int:
        """Write one notification per email. Returns the number of successful writes."""
        targets = list(dict.fromkeys(emails))
        if not targets:
            return 0

        rows = [
            {"user_email": email, "title": title, "message": message, "read": False}
            for email in targets
        ]
        results = await asyncio.gather(
            *(self._store.insert_notification(row) for row in rows),
            return_exceptions=True,
        )

        sent = 0
        for email, res in zip(targets, results):
            if isinstance(res, BaseException):
                logger.error("Fan-out: notification to %s failed: %r", email, res)
                continue
            sent += 1
            logger.debug("Fan-out: notified %s (%s)", email, title)
        return sent

    async def task_created(self, task: Task, creator: Session) -> int:
        """Every assignee; plus the BOSS when an EMPLOYEE created the task."""
        emails = self.resolve_emails(task.assignees)
        sent = await self.notify(
            emails,
            title=f"Nova Demanda: {task.title}",
            message=(
                f'Você foi atribuído ao projeto "{task.project}" '
                f"com prioridade {task.priority.value}."
            ),
        )

        if not creator.is_boss:
            boss = self._directory.boss
            sent += await self.notify(
                [boss.email],
                title=f"Nova Demanda: {task.title}",
                message=(
                    f'{creator.name} criou uma demanda no projeto "{task.project}" '
                    f"com prioridade {task.priority.value}."
                ),
            )
        return sent

    async def comment_added(self, task: Task, comment: Comment, author: Session) -> int:
        """BOSS comments reach every assignee; anyone else's comment reaches the BOSS."""
        if author.is_boss:
            emails = self.resolve_emails(task.assignees)
        else:
            emails = [self._directory.boss.email]

        return await self.notify(
            emails,
            title=f"Novo Comentário em: {task.title}",
            message=f'{author.name} comentou: "{comment.text}"',
        )
