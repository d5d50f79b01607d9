# tests/test_polling_feed.py

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

import httpx
import pytest

from demand_board.cli.bootstrap import build_store
from demand_board.core.identity import ProjectCatalog
from demand_board.core.models import ChangeEvent, ChangeKind
from demand_board.errors import RemoteStoreError
from demand_board.notifications.inbox import NotificationInbox
from demand_board.store.polling_feed import PollingChangeFeed
from demand_board.store.rest_store import RestRemoteStore
from demand_board.tasks.fanout import NotificationFanout
from demand_board.tasks.realtime import RealtimeRouter
from demand_board.tasks.repository import TaskRepository

from .conftest import BOSS_EMAIL, NARLEY_EMAIL

BASE_URL = "https://db.example.org/rest/v1"


class RestServer:
    """Serves GET /tasks and GET /notifications from mutable lists."""

    def __init__(self) -> None:
        self.tasks: list[dict[str, Any]] = []
        self.notifications: list[dict[str, Any]] = []
        self.status_code = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="unavailable")
        if request.url.path.endswith("/tasks"):
            return httpx.Response(200, json=self.tasks)
        if request.url.path.endswith("/notifications"):
            email = request.url.params["user_email"].removeprefix("eq.")
            return httpx.Response(200, json=[n for n in self.notifications if n["user_email"] == email])
        return httpx.Response(404)

    def add_task(self, task_id: str, **fields: Any) -> dict[str, Any]:
        row = {
            "id": task_id,
            "title": "Tarefa",
            "category": "Dev",
            "priority": "MEDIA",
            "project": "",
            "assignees": ["Narley"],
            "status": "PENDING",
            "progress": 0,
            "justification": "",
            "created_at": f"2024-01-01T09:{len(self.tasks):02d}:00+00:00",
            "comments": [],
        }
        row.update(fields)
        self.tasks.append(row)
        return row

    def add_notification(self, notification_id: str, email: str, title: str) -> None:
        self.notifications.append(
            {
                "id": notification_id,
                "user_email": email,
                "title": title,
                "message": "m",
                "read": False,
                "created_at": "2024-01-02T10:00:00+00:00",
            }
        )


@pytest.fixture()
def server() -> RestServer:
    return RestServer()


@pytest.fixture()
def rest_store(server: RestServer) -> RestRemoteStore:
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(server))
    return RestRemoteStore(BASE_URL, "anon-key", client=client)


def _feed(store: RestRemoteStore, **kwargs: Any) -> tuple[PollingChangeFeed, list[ChangeEvent]]:
    feed = PollingChangeFeed(store, emails=[NARLEY_EMAIL], autostart=False, **kwargs)
    events: list[ChangeEvent] = []
    feed.subscribe(events.append)
    return feed, events


@pytest.mark.asyncio
async def test_first_poll_is_baseline_then_changes_become_events(server, rest_store) -> None:
    server.add_task("t1", title="Existente")
    server.add_notification("n1", NARLEY_EMAIL, "antiga")
    feed, events = _feed(rest_store)

    assert await feed.poll_once() == 0
    assert events == []

    server.add_task("t2", title="Nova", comments=[{"id": "c1", "author": "Boss", "text": "oi"}])
    server.tasks[0]["progress"] = 60
    server.add_notification("n2", NARLEY_EMAIL, "Nova Demanda: Nova")
    server.add_notification("n3", BOSS_EMAIL, "não observada")

    assert await feed.poll_once() == 4

    by_key = {(e.table, e.kind): e for e in events}
    assert by_key[("tasks", ChangeKind.INSERT)].new["title"] == "Nova"
    assert "comments" not in by_key[("tasks", ChangeKind.INSERT)].new
    update = by_key[("tasks", ChangeKind.UPDATE)]
    assert update.new == {"id": "t1", "progress": 60}
    assert update.old == {"progress": 0}
    assert by_key[("comments", ChangeKind.INSERT)].new["task_id"] == "t2"
    assert by_key[("notifications", ChangeKind.INSERT)].new["id"] == "n2"

    # Nothing changed: nothing published.
    assert await feed.poll_once() == 0

    server.tasks.pop(0)
    assert await feed.poll_once() == 1
    assert events[-1].kind is ChangeKind.DELETE
    assert events[-1].old == {"id": "t1"}
    await rest_store.close()


@pytest.mark.asyncio
async def test_poll_failure_raises_and_keeps_snapshot(server, rest_store) -> None:
    server.add_task("t1")
    feed, events = _feed(rest_store)
    await feed.poll_once()

    server.status_code = 503
    with pytest.raises(RemoteStoreError):
        await feed.poll_once()

    server.status_code = 200
    assert await feed.poll_once() == 0
    assert events == []
    await rest_store.close()


@pytest.mark.asyncio
async def test_other_actors_changes_reach_repository_and_inbox(server, rest_store, directory, narley) -> None:
    server.add_task("t1", title="Integração", assignees=["Narley"])
    repo = TaskRepository(rest_store, NotificationFanout(rest_store, directory), ProjectCatalog(), actor=narley)
    inbox = NotificationInbox(rest_store, NARLEY_EMAIL)
    feed = PollingChangeFeed(rest_store, emails=[NARLEY_EMAIL], autostart=False)
    router = RealtimeRouter(feed, repo, inbox)
    router.start()
    await repo.load()
    await inbox.load()
    await feed.poll_once()

    server.tasks[0]["priority"] = "ALTA"
    server.tasks[0]["comments"] = [
        {"id": "c9", "task_id": "t1", "author": "Boss", "text": "urgente", "created_at": "2024-01-02T09:00:00+00:00"}
    ]
    server.add_task("t2", title="Outra")
    server.add_notification("n1", NARLEY_EMAIL, "Novo Comentário em: Integração")
    await feed.poll_once()

    assert repo.get("t1").priority.value == "ALTA"
    assert [c.text for c in repo.get("t1").comments] == ["urgente"]
    assert {t.id for t in repo.tasks} == {"t1", "t2"}
    assert inbox.unread_count == 1

    router.stop()
    assert feed.subscriber_count == 0
    await rest_store.close()


@pytest.mark.asyncio
async def test_loop_runs_while_subscribed(server, rest_store) -> None:
    feed = PollingChangeFeed(rest_store, interval_seconds=0.01)
    events: list[ChangeEvent] = []

    unsubscribe = feed.subscribe(events.append)
    assert feed.running
    await asyncio.sleep(0.05)

    server.add_task("t1")
    for _ in range(100):
        if events:
            break
        await asyncio.sleep(0.01)
    assert [(e.table, e.kind) for e in events] == [("tasks", ChangeKind.INSERT)]

    unsubscribe()
    await asyncio.sleep(0)
    assert not feed.running
    await rest_store.close()


def test_subscribe_outside_event_loop_does_not_start(rest_store) -> None:
    feed = PollingChangeFeed(rest_store)
    feed.subscribe(lambda ev: None)
    assert not feed.running


@pytest.mark.asyncio
async def test_rest_backend_gets_a_polling_feed(directory, tmp_path) -> None:
    settings = SimpleNamespace(
        store_backend="rest",
        store_db_path=tmp_path / "unused.sqlite3",
        rest_url=BASE_URL,
        rest_api_key="anon-key",
        rest_timeout_seconds=5.0,
        rest_poll_seconds=2.0,
        notifications_limit=10,
    )

    store, feed = build_store(settings, directory)

    assert isinstance(feed, PollingChangeFeed)
    assert feed.interval_seconds == 2.0
    assert feed.notifications_limit == 10
    assert sorted(feed.emails) == sorted(i.email for i in directory)
    await store.close()
