# tests/test_repository.py

from __future__ import annotations

import asyncio

import pytest

from demand_board.core.models import Priority, TaskDraft, TaskStatus
from demand_board.core.ports import FeedbackKind
from demand_board.errors import PermissionDeniedError, ValidationError
from demand_board.tasks.fanout import NotificationFanout
from demand_board.tasks.repository import TaskRepository

from .fakes import FakeRemoteStore


@pytest.mark.asyncio
async def test_status_sequence_round_trips(make_repo, store, reporter) -> None:
    row = store.seed_task(title="Deploy bot", assignees=["Narley"])
    repo = make_repo()
    await repo.load()

    assert await repo.set_status(row["id"], TaskStatus.DONE)
    assert repo.get(row["id"]).status is TaskStatus.DONE
    assert store.tasks[row["id"]]["status"] == "DONE"
    assert "Tarefa concluída!" in reporter.of(FeedbackKind.SUCCESS)

    assert await repo.toggle_status(row["id"])
    assert repo.get(row["id"]).status is TaskStatus.PENDING
    assert store.tasks[row["id"]]["status"] == "PENDING"
    assert store.count("update_task") == 2


@pytest.mark.asyncio
async def test_same_status_is_a_noop(make_repo, store) -> None:
    row = store.seed_task()
    repo = make_repo()
    await repo.load()

    assert await repo.set_status(row["id"], TaskStatus.PENDING)
    assert store.count("update_task") == 0


@pytest.mark.asyncio
async def test_progress_rolls_back_exactly_with_one_error(make_repo, store, reporter) -> None:
    row = store.seed_task(progress=40)
    repo = make_repo()
    await repo.load()
    store.fail.add("update_task")

    ok = await repo.set_progress(row["id"], 70)

    assert ok is False
    assert repo.get(row["id"]).progress == 40
    assert store.tasks[row["id"]]["progress"] == 40
    assert len(reporter.errors) == 1
    assert store.count("update_task") == 1


@pytest.mark.asyncio
async def test_local_value_is_visible_while_write_is_in_flight(make_repo, store) -> None:
    row = store.seed_task(priority="BAIXA")
    repo = make_repo()
    await repo.load()
    seen: list[tuple[Priority, bool]] = []
    store.hooks["update_task"] = lambda: seen.append(
        (repo.get(row["id"]).priority, repo.in_flight(row["id"]))
    )

    assert await repo.set_priority(row["id"], Priority.ALTA)

    assert seen == [(Priority.ALTA, True)]
    assert not repo.in_flight(row["id"])


@pytest.mark.asyncio
async def test_unexpected_error_reverts_and_propagates(make_repo, store, reporter) -> None:
    row = store.seed_task(priority="MEDIA")
    repo = make_repo()
    await repo.load()

    def boom() -> None:
        raise RuntimeError("bug")

    store.hooks["update_task"] = boom

    with pytest.raises(RuntimeError):
        await repo.set_priority(row["id"], Priority.ALTA)
    assert repo.get(row["id"]).priority is Priority.MEDIA
    assert reporter.errors == []


@pytest.mark.asyncio
async def test_progress_100_completes_task(make_repo, store) -> None:
    row = store.seed_task(progress=80)
    repo = make_repo()
    await repo.load()

    assert await repo.set_progress(row["id"], 100)

    task = repo.get(row["id"])
    assert task.progress == 100
    assert task.status is TaskStatus.DONE
    assert store.tasks[row["id"]]["status"] == "DONE"
    assert store.count("update_task") == 2


@pytest.mark.asyncio
async def test_progress_regression_does_not_uncomplete_by_default(make_repo, store, reporter) -> None:
    row = store.seed_task(progress=100, status="DONE")
    repo = make_repo()
    await repo.load()

    assert await repo.set_progress(row["id"], 50)

    task = repo.get(row["id"])
    assert task.progress == 50
    assert task.status is TaskStatus.DONE
    warnings = reporter.of(FeedbackKind.WARNING)
    assert len(warnings) == 1
    assert "reduzido" in warnings[0]


@pytest.mark.asyncio
async def test_progress_regression_reopens_when_enabled(make_repo, store) -> None:
    row = store.seed_task(progress=100, status="DONE")
    repo = make_repo(reopen_on_progress_regression=True)
    await repo.load()

    assert await repo.set_progress(row["id"], 60)
    assert repo.get(row["id"]).status is TaskStatus.PENDING
    assert store.tasks[row["id"]]["status"] == "PENDING"


@pytest.mark.asyncio
@pytest.mark.parametrize("value", [-1, 101, 50.5, True, "50"])
async def test_progress_out_of_range_is_rejected(make_repo, store, value) -> None:
    row = store.seed_task(progress=10)
    repo = make_repo()
    await repo.load()
    before = store.remote_calls

    with pytest.raises(ValidationError):
        await repo.set_progress(row["id"], value)
    assert store.remote_calls == before
    assert repo.get(row["id"]).progress == 10


@pytest.mark.asyncio
async def test_load_orders_tasks_and_comments(make_repo, store, catalog) -> None:
    old = store.seed_task(title="old", created_at="2024-01-01T08:00:00+00:00", project="Módulo de Prazos")
    new = store.seed_task(title="new", created_at="2024-03-01T08:00:00+00:00")
    mid = store.seed_task(title="mid", created_at="2024-02-01T08:00:00+00:00")
    store.seed_comment(old["id"], "second", created_at="2024-01-02T10:00:00+00:00")
    store.seed_comment(old["id"], "first", created_at="2024-01-02T09:00:00+00:00")
    repo = make_repo()

    assert await repo.load()

    assert [t.id for t in repo.tasks] == [new["id"], mid["id"], old["id"]]
    assert [c.text for c in repo.get(old["id"]).comments] == ["first", "second"]
    assert "Módulo de Prazos" in catalog


@pytest.mark.asyncio
async def test_load_failure_keeps_previous_state(make_repo, store, reporter) -> None:
    store.seed_task(title="kept")
    repo = make_repo()
    await repo.load()
    store.fail.add("fetch_tasks")

    assert await repo.load() is False
    assert [t.title for t in repo.tasks] == ["kept"]
    assert reporter.errors == ["Erro ao carregar tarefas."]
    assert repo.loading is False


class SlowFirstFetchStore(FakeRemoteStore):
    """The first fetch_tasks call blocks until `release` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()
        self._first = True

    async def fetch_tasks(self):
        if self._first:
            self._first = False
            snapshot = await super().fetch_tasks()
            await self.release.wait()
            return snapshot
        return await super().fetch_tasks()


@pytest.mark.asyncio
async def test_superseded_load_is_discarded(directory, catalog, boss) -> None:
    slow = SlowFirstFetchStore()
    slow.seed_task(title="A")
    repo = TaskRepository(slow, NotificationFanout(slow, directory), catalog, actor=boss)

    first = asyncio.create_task(repo.load())
    await asyncio.sleep(0)
    slow.seed_task(title="B")

    assert await repo.load() is True
    slow.release.set()
    assert await first is False

    assert [t.title for t in repo.tasks] == ["B", "A"]


@pytest.mark.asyncio
async def test_create_requires_title_and_assignees_without_remote_calls(make_repo, store) -> None:
    repo = make_repo()

    with pytest.raises(ValidationError) as exc:
        await repo.create(TaskDraft(title="Something", assignees=[]))
    assert exc.value.field == "assignees"

    with pytest.raises(ValidationError) as exc:
        await repo.create(TaskDraft(title="   ", assignees=["Narley"]))
    assert exc.value.field == "title"

    assert store.remote_calls == 0
    assert repo.tasks == []


@pytest.mark.asyncio
async def test_create_prepends_and_records_project(make_repo, store, reporter, catalog) -> None:
    store.seed_task(title="older")
    repo = make_repo()
    await repo.load()

    task = await repo.create(
        TaskDraft(
            title="  Corrigir bot  ",
            assignees=["Narley", "Narley", "Toni"],
            priority=Priority.ALTA,
            project="Automação do WhatsApp",
        )
    )

    assert task is not None
    assert repo.tasks[0] is task
    assert task.title == "Corrigir bot"
    assert task.assignees == ["Narley", "Toni"]
    assert task.status is TaskStatus.PENDING
    assert task.progress == 0
    assert "Automação do WhatsApp" in catalog
    assert reporter.of(FeedbackKind.SUCCESS) == ["Demanda criada e responsáveis notificados."]


@pytest.mark.asyncio
async def test_create_failure_leaves_state_unchanged(make_repo, store, reporter) -> None:
    repo = make_repo()
    store.fail.add("insert_task")

    task = await repo.create(TaskDraft(title="X", assignees=["Narley"]))

    assert task is None
    assert repo.tasks == []
    assert reporter.errors == ["Erro ao criar tarefa."]
    assert store.notifications == []


@pytest.mark.asyncio
async def test_employee_cannot_touch_tasks_they_are_not_on(make_repo, store, toni) -> None:
    row = store.seed_task(assignees=["Narley"])
    repo = make_repo(actor=toni)
    await repo.load()

    with pytest.raises(PermissionDeniedError):
        await repo.set_status(row["id"], TaskStatus.DONE)
    with pytest.raises(PermissionDeniedError):
        await repo.set_progress(row["id"], 30)
    assert store.count("update_task") == 0


@pytest.mark.asyncio
async def test_delete_is_boss_only_by_default(make_repo, store, narley) -> None:
    row = store.seed_task(assignees=["Narley"])
    repo = make_repo(actor=narley)
    await repo.load()

    with pytest.raises(PermissionDeniedError):
        await repo.delete(row["id"])
    assert store.count("delete_task") == 0

    repo = make_repo(actor=narley, allow_assignee_delete=True)
    await repo.load()
    assert await repo.delete(row["id"])
    assert repo.tasks == []


@pytest.mark.asyncio
async def test_delete_failure_keeps_task(make_repo, store, reporter) -> None:
    row = store.seed_task()
    repo = make_repo()
    await repo.load()
    store.fail.add("delete_task")

    assert await repo.delete(row["id"]) is False
    assert repo.get(row["id"]) is not None
    assert reporter.errors == ["Erro ao deletar tarefa."]


@pytest.mark.asyncio
async def test_add_comment_appends_once(make_repo, store, narley) -> None:
    row = store.seed_task(assignees=["Narley"])
    repo = make_repo(actor=narley)
    await repo.load()

    comment = await repo.add_comment(row["id"], "  Começando hoje  ")

    assert comment is not None
    assert comment.text == "Começando hoje"
    assert comment.author == "Narley"
    assert [c.id for c in repo.get(row["id"]).comments] == [comment.id]

    with pytest.raises(ValidationError):
        await repo.add_comment(row["id"], "   ")


@pytest.mark.asyncio
async def test_comment_failure_reports_once(make_repo, store, reporter) -> None:
    row = store.seed_task()
    repo = make_repo()
    await repo.load()
    store.fail.add("insert_comment")

    assert await repo.add_comment(row["id"], "hello") is None
    assert repo.get(row["id"]).comments == []
    assert reporter.errors == ["Erro ao adicionar comentário."]
    assert store.notifications == []


@pytest.mark.asyncio
async def test_find_accepts_unique_prefix(make_repo, store) -> None:
    a = store.seed_task(id="abc123")
    store.seed_task(id="abd456")
    repo = make_repo()
    await repo.load()

    assert repo.find("abc").id == a["id"]
    assert repo.find("ab") is None
    assert repo.find("") is None


@pytest.mark.asyncio
async def test_load_tolerates_malformed_rows(make_repo, store, reporter) -> None:
    good = store.seed_task(title="Ok", created_at="2024-01-01T10:00:00+00:00")
    odd = store.seed_task(title="Data ruim", created_at="not-a-date")
    store.tasks["broken"] = {"title": "sem id", "created_at": "2024-01-02T00:00:00+00:00"}
    repo = make_repo()

    assert await repo.load() is True

    assert {t.id for t in repo.tasks} == {good["id"], odd["id"]}
    assert repo.loading is False
    assert reporter.errors == []


@pytest.mark.asyncio
async def test_priority_rolls_back_exactly_with_one_error(make_repo, store, reporter) -> None:
    row = store.seed_task(priority="BAIXA")
    repo = make_repo()
    await repo.load()
    store.fail.add("update_task")

    assert await repo.set_priority(row["id"], Priority.ALTA) is False

    assert repo.get(row["id"]).priority is Priority.BAIXA
    assert store.tasks[row["id"]]["priority"] == "BAIXA"
    assert reporter.errors == ["Erro ao atualizar prioridade."]


@pytest.mark.asyncio
async def test_status_change_sends_no_notifications(make_repo, store) -> None:
    row = store.seed_task(assignees=["Narley", "Toni"])
    repo = make_repo()
    await repo.load()

    assert await repo.set_status(row["id"], TaskStatus.DONE)
    assert await repo.set_status(row["id"], TaskStatus.PENDING)

    assert store.count("insert_notification") == 0


@pytest.mark.asyncio
async def test_failed_completion_keeps_progress_100(make_repo, store, reporter) -> None:
    row = store.seed_task(progress=80)
    repo = make_repo()
    await repo.load()
    writes = {"n": 0}

    def fail_second_write() -> None:
        writes["n"] += 1
        if writes["n"] == 2:
            store.fail.add("update_task")

    store.hooks["update_task"] = fail_second_write

    assert await repo.set_progress(row["id"], 100) is True

    task = repo.get(row["id"])
    assert task.progress == 100
    assert task.status is TaskStatus.PENDING
    assert store.tasks[row["id"]]["progress"] == 100
    assert reporter.errors == ["Erro ao atualizar status."]


@pytest.mark.asyncio
async def test_final_status_is_last_requested_despite_failed_write(make_repo, store, reporter) -> None:
    row = store.seed_task()
    repo = make_repo()
    await repo.load()

    assert await repo.set_status(row["id"], TaskStatus.DONE)
    store.fail.add("update_task")
    assert await repo.set_status(row["id"], TaskStatus.PENDING) is False
    assert repo.get(row["id"]).status is TaskStatus.DONE
    store.fail.clear()
    assert await repo.set_status(row["id"], TaskStatus.PENDING)

    assert repo.get(row["id"]).status is TaskStatus.PENDING
    assert store.tasks[row["id"]]["status"] == "PENDING"
    assert len(reporter.errors) == 1
