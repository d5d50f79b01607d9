# src/demand_board/tasks/repository.py

from __future__ import annotations

"""
Task repository: the synchronization layer between the remote store and the
in-memory task list the view renders.

Local state:
- tasks ordered newest-first by created_at,
- each task's comments ordered oldest-first.

Write paths:
- status / priority / progress are optimistic (mutate, call, revert on failure),
- create / delete / comment wait for the store (no provisional ids, no
  resurrected rows).

Realtime path:
- merge_remote_event() folds change-feed events into local state,
  idempotently per identifier,
- task UPDATE events for a task with an optimistic write in flight are
  buffered and replayed once that write settles.
"""

import contextlib
import logging
from collections.abc import Awaitable, Iterator
from typing import Any

from ..core.identity import ProjectCatalog
from ..core.models import (
    ChangeEvent,
    ChangeKind,
    Comment,
    Priority,
    Session,
    Task,
    TaskDraft,
    TaskStatus,
)
from ..core.optimistic import apply_optimistic
from ..core.ports import FeedbackKind, RemoteStore, Reporter
from ..errors import PermissionDeniedError, RemoteStoreError, ValidationError
from .fanout import NotificationFanout

logger = logging.getLogger(__name__)


class TaskRepository:
    def __init__(
        self,
        store: RemoteStore,
        fanout: NotificationFanout,
        catalog: ProjectCatalog,
        *,
        actor: Session,
        reporter: Reporter | None = None,
        reopen_on_progress_regression: bool = False,
        allow_assignee_delete: bool = False,
    ) -> None:
        self._store = store
        self._fanout = fanout
        self._catalog = catalog
        self.actor = actor
        self._reporter = reporter
        self.reopen_on_progress_regression = reopen_on_progress_regression
        self.allow_assignee_delete = allow_assignee_delete

        self._tasks: list[Task] = []
        self._load_generation = 0
        self._in_flight: dict[str, int] = {}
        self._deferred: dict[str, list[ChangeEvent]] = {}
        self.loading = False

    # ---- read side ----

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks)

    def get(self, task_id: str) -> Task | None:
        for t in self._tasks:
            if t.id == task_id:
                return t
        return None

    def find(self, id_or_prefix: str) -> Task | None:
        """Exact id, or a unique id prefix (handy for console input)."""
        key = (id_or_prefix or "").strip()
        if not key:
            return None
        exact = self.get(key)
        if exact is not None:
            return exact
        matches = [t for t in self._tasks if t.id.startswith(key)]
        return matches[0] if len(matches) == 1 else None

    def in_flight(self, task_id: str) -> bool:
        return task_id in self._in_flight

    def clear(self) -> None:
        self._tasks = []
        self._in_flight.clear()
        self._deferred.clear()
        self._load_generation += 1
        self.loading = False

    # ---- helpers ----

    def _report(self, kind: FeedbackKind, message: str) -> None:
        if self._reporter is None:
            logger.debug("feedback[%s]: %s", kind.value, message)
            return
        try:
            self._reporter.report(kind, message)
        except Exception:
            logger.exception("Reporter failed (kind=%s)", kind.value)

    def _require_task(self, task_id: str) -> Task:
        task = self.get(task_id)
        if task is None:
            raise ValidationError(f"Tarefa não encontrada: {task_id}", field="task_id")
        return task

    def _is_participant(self, task: Task) -> bool:
        return self.actor.is_boss or self.actor.name in task.assignees

    def _require_participant(self, task: Task, operation: str) -> None:
        if not self._is_participant(task):
            raise PermissionDeniedError(
                "Apenas o gestor ou um responsável pode alterar esta tarefa.",
                actor=self.actor.email,
                operation=operation,
                task_id=task.id,
            )

    @contextlib.contextmanager
    def _tracking(self, task_id: str) -> Iterator[None]:
        self._in_flight[task_id] = self._in_flight.get(task_id, 0) + 1
        try:
            yield
        finally:
            remaining = self._in_flight.get(task_id, 1) - 1
            if remaining > 0:
                self._in_flight[task_id] = remaining
            else:
                self._in_flight.pop(task_id, None)
                self._replay_deferred(task_id)

    async def _run_fanout(self, coro: Awaitable[int]) -> None:
        try:
            sent = await coro
            logger.debug("Fan-out wrote %d notification(s)", sent)
        except Exception:
            logger.exception("Notification fan-out crashed")

    def _insert_sorted(self, task: Task) -> None:
        for i, other in enumerate(self._tasks):
            if task.created_at >= other.created_at:
                self._tasks.insert(i, task)
                return
        self._tasks.append(task)

    def _remove_local(self, task_id: str) -> bool:
        before = len(self._tasks)
        self._tasks = [t for t in self._tasks if t.id != task_id]
        return len(self._tasks) != before

    def _append_comment(self, task_id: str, comment: Comment) -> bool:
        task = self.get(task_id)
        if task is None:
            logger.debug("Comment %s for unknown task %s ignored", comment.id, task_id)
            return False
        if task.has_comment(comment.id):
            return False
        task.comments.append(comment)
        return True

    # ---- operations ----

    async def load(self) -> bool:
        """
        Replace local state with the store's snapshot.

        On failure the previous state is kept. A load that finishes after a
        newer load has started is discarded.
        """
        self._load_generation += 1
        generation = self._load_generation
        self.loading = True
        try:
            rows = await self._store.fetch_tasks()
        except RemoteStoreError as e:
            if generation == self._load_generation:
                self.loading = False
                logger.warning("Task load failed: %s", e.message)
                self._report(FeedbackKind.ERROR, "Erro ao carregar tarefas.")
            return False

        if generation != self._load_generation:
            logger.info("Discarding superseded task load (generation=%s)", generation)
            return False

        tasks: list[Task] = []
        for r in rows:
            try:
                tasks.append(Task.from_row(r))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed task row id=%r", r.get("id") if isinstance(r, dict) else r)
        tasks.sort(key=lambda t: t.created_at, reverse=True)
        self._tasks = tasks
        self.loading = False

        added = self._catalog.observe(t.project for t in tasks)
        logger.info("Loaded %d tasks (%d new project labels)", len(tasks), added)
        return True

    async def create(self, draft: TaskDraft) -> Task | None:
        title = (draft.title or "").strip()
        if not title:
            raise ValidationError("Título é obrigatório.", field="title")

        assignees: list[str] = []
        for name in draft.assignees:
            name = (name or "").strip()
            if name and name not in assignees:
                assignees.append(name)
        if not assignees:
            raise ValidationError("Informe ao menos um responsável.", field="assignees")

        self._fanout.check_recipients(assignees)

        draft = TaskDraft(
            title=title,
            assignees=assignees,
            category=draft.category,
            priority=draft.priority,
            project=draft.project,
            justification=draft.justification,
        )
        insert_row = draft.to_insert_row()

        self._report(FeedbackKind.LOADING, "Salvando demanda...")
        try:
            stored = await self._store.insert_task(insert_row)
        except RemoteStoreError as e:
            logger.warning("Task create failed: %s", e.message)
            self._report(FeedbackKind.ERROR, "Erro ao criar tarefa.")
            return None

        task = Task.from_row({**insert_row, **stored, "comments": []})

        # The change feed may have delivered our own INSERT already.
        existing = self.get(task.id)
        if existing is None:
            self._tasks.insert(0, task)
        else:
            existing.merge_row(stored)
            task = existing

        self._catalog.add(task.project)
        logger.info("Task created id=%s by=%s assignees=%s", task.id, self.actor.email, task.assignees)

        await self._run_fanout(self._fanout.task_created(task, self.actor))
        self._report(FeedbackKind.SUCCESS, "Demanda criada e responsáveis notificados.")
        return task

    async def _update_field(
        self,
        task: Task,
        attr: str,
        new_value: Any,
        column_value: Any,
        error_message: str,
    ) -> bool:
        previous = getattr(task, attr)

        def mutate() -> None:
            setattr(task, attr, new_value)

        def revert() -> None:
            setattr(task, attr, previous)

        with self._tracking(task.id):
            return await apply_optimistic(
                mutate,
                lambda: self._store.update_task(task.id, {attr: column_value}),
                revert,
                on_error=lambda _e: self._report(FeedbackKind.ERROR, error_message),
            )

    async def set_status(self, task_id: str, status: TaskStatus | str) -> bool:
        task = self._require_task(task_id)
        self._require_participant(task, "set_status")
        status = TaskStatus(status)
        if task.status is status:
            return True

        ok = await self._update_field(task, "status", status, status.value, "Erro ao atualizar status.")
        if ok:
            logger.info("Task %s status -> %s", task.id, status.value)
            if status is TaskStatus.DONE:
                self._report(FeedbackKind.SUCCESS, "Tarefa concluída!")
        return ok

    async def toggle_status(self, task_id: str) -> bool:
        task = self._require_task(task_id)
        return await self.set_status(task.id, task.status.toggled())

    async def set_priority(self, task_id: str, priority: Priority | str) -> bool:
        task = self._require_task(task_id)
        self._require_participant(task, "set_priority")
        priority = Priority(priority)
        if task.priority is priority:
            return True

        ok = await self._update_field(
            task, "priority", priority, priority.value, "Erro ao atualizar prioridade."
        )
        if ok:
            logger.info("Task %s priority -> %s", task.id, priority.value)
        return ok

    async def set_progress(self, task_id: str, progress: int) -> bool:
        task = self._require_task(task_id)
        self._require_participant(task, "set_progress")
        if isinstance(progress, bool) or not isinstance(progress, int) or not 0 <= progress <= 100:
            raise ValidationError("O progresso deve ser um inteiro entre 0 e 100.", field="progress")

        previous = task.progress
        if progress == previous:
            return True
        if progress < previous:
            # Advisory only: the update still goes through.
            self._report(
                FeedbackKind.WARNING,
                f"Progresso reduzido de {previous}% para {progress}%. "
                "Justifique a redução em um comentário.",
            )

        ok = await self._update_field(task, "progress", progress, progress, "Erro ao atualizar progresso.")
        if not ok:
            return False
        logger.info("Task %s progress %s -> %s", task.id, previous, progress)

        # Best-effort follow-ups; their failure does not undo the progress change.
        if progress == 100 and task.status is not TaskStatus.DONE:
            await self.set_status(task.id, TaskStatus.DONE)
        elif (
            self.reopen_on_progress_regression
            and progress < 100
            and task.status is TaskStatus.DONE
        ):
            await self.set_status(task.id, TaskStatus.PENDING)
        return True

    async def delete(self, task_id: str) -> bool:
        task = self._require_task(task_id)
        allowed = self.actor.is_boss or (
            self.allow_assignee_delete and self.actor.name in task.assignees
        )
        if not allowed:
            raise PermissionDeniedError(
                "Sem permissão para remover esta tarefa.",
                actor=self.actor.email,
                operation="delete",
                task_id=task.id,
            )

        self._report(FeedbackKind.LOADING, "Removendo tarefa...")
        try:
            await self._store.delete_task(task.id)
        except RemoteStoreError as e:
            logger.warning("Task delete failed id=%s: %s", task.id, e.message)
            self._report(FeedbackKind.ERROR, "Erro ao deletar tarefa.")
            return False

        self._remove_local(task.id)
        self._deferred.pop(task.id, None)
        logger.info("Task deleted id=%s by=%s", task.id, self.actor.email)
        self._report(FeedbackKind.SUCCESS, "Tarefa removida.")
        return True

    async def add_comment(self, task_id: str, text: str) -> Comment | None:
        text = (text or "").strip()
        if not text:
            raise ValidationError("O comentário não pode ser vazio.", field="text")
        task = self._require_task(task_id)

        try:
            row = await self._store.insert_comment(
                {"task_id": task.id, "author": self.actor.name, "text": text}
            )
        except RemoteStoreError as e:
            logger.warning("Comment insert failed task=%s: %s", task.id, e.message)
            self._report(FeedbackKind.ERROR, "Erro ao adicionar comentário.")
            return None

        comment = Comment.from_row({"task_id": task.id, **row})
        self._append_comment(task.id, comment)
        logger.info("Comment %s added to task %s by %s", comment.id, task.id, self.actor.email)

        await self._run_fanout(self._fanout.comment_added(task, comment, self.actor))
        return comment

    # ---- realtime ----

    def merge_remote_event(self, event: ChangeEvent) -> bool:
        """
        Fold one change-feed event into local state. Returns True if state changed.

        Safe to call repeatedly with the same event.
        """
        if event.table == "comments":
            if event.kind is not ChangeKind.INSERT:
                return False
            row = event.new or {}
            if not row.get("id"):
                return False
            comment = Comment.from_row(row)
            return self._append_comment(comment.task_id, comment)

        if event.table != "tasks":
            return False

        row = event.new or event.old or {}
        task_id = str(row.get("id") or "")
        if not task_id:
            return False

        if event.kind is ChangeKind.UPDATE and task_id in self._in_flight:
            self._deferred.setdefault(task_id, []).append(event)
            logger.debug("Buffered UPDATE for task %s (write in flight)", task_id)
            return False

        return self._apply_task_event(event, task_id)

    def _apply_task_event(self, event: ChangeEvent, task_id: str) -> bool:
        if event.kind is ChangeKind.DELETE:
            self._deferred.pop(task_id, None)
            return self._remove_local(task_id)

        row = {k: v for k, v in (event.new or {}).items() if k != "comments"}
        existing = self.get(task_id)

        if event.kind is ChangeKind.INSERT:
            if existing is not None:
                existing.merge_row(row)
                return False
            task = Task.from_row({**row, "comments": []})
            self._insert_sorted(task)
            self._catalog.add(task.project)
            return True

        if existing is None:
            logger.debug("UPDATE for unknown task %s ignored", task_id)
            return False
        existing.merge_row(row)
        return True

    def _replay_deferred(self, task_id: str) -> None:
        events = self._deferred.pop(task_id, [])
        for ev in events:
            self._apply_task_event(ev, task_id)
        if events:
            logger.debug("Replayed %d buffered event(s) for task %s", len(events), task_id)
