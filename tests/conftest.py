# tests/conftest.py

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

from demand_board.auth.session import SessionFile, SessionManager
from demand_board.core.identity import IdentityDirectory, ProjectCatalog
from demand_board.core.models import Role, Session
from demand_board.core.state import AppState
from demand_board.llm.classifier import DemandClassifier
from demand_board.store.feed import LocalChangeFeed
from demand_board.tasks.fanout import NotificationFanout, UnknownRecipientPolicy
from demand_board.tasks.repository import TaskRepository

from .fakes import FakeLLMClient, FakeRemoteStore, RecordingReporter

BOSS_EMAIL = "boss@example.org"
NARLEY_EMAIL = "narley@example.org"
TONI_EMAIL = "toni@example.org"


@pytest.fixture()
def directory() -> IdentityDirectory:
    return IdentityDirectory.from_mapping(
        {
            BOSS_EMAIL: {"name": "Boss", "role": "BOSS"},
            NARLEY_EMAIL: {"name": "Narley", "role": "EMPLOYEE"},
            TONI_EMAIL: {"name": "Toni", "role": "EMPLOYEE"},
        }
    )


@pytest.fixture()
def boss() -> Session:
    return Session(name="Boss", email=BOSS_EMAIL, role=Role.BOSS)


@pytest.fixture()
def narley() -> Session:
    return Session(name="Narley", email=NARLEY_EMAIL, role=Role.EMPLOYEE)


@pytest.fixture()
def toni() -> Session:
    return Session(name="Toni", email=TONI_EMAIL, role=Role.EMPLOYEE)


@pytest.fixture()
def store() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture()
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture()
def catalog() -> ProjectCatalog:
    return ProjectCatalog(["Sistema de Triagem"])


@pytest.fixture()
def make_repo(
    store: FakeRemoteStore,
    directory: IdentityDirectory,
    catalog: ProjectCatalog,
    reporter: RecordingReporter,
    boss: Session,
) -> Callable[..., TaskRepository]:
    """Factory: make_repo(actor=..., policy=..., **repository_kwargs)."""

    def _make(
        actor: Session | None = None,
        policy: UnknownRecipientPolicy = UnknownRecipientPolicy.WARN,
        **kwargs: Any,
    ) -> TaskRepository:
        fanout = NotificationFanout(store, directory, policy=policy)
        return TaskRepository(
            store,
            fanout,
            catalog,
            actor=actor or boss,
            reporter=reporter,
            **kwargs,
        )

    return _make


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the CLI.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        data_dir=tmp_path,
        session_path=tmp_path / "session.json",
        unknown_recipient_policy="warn",
        reopen_on_progress_regression=False,
        allow_assignee_delete=False,
        notifications_limit=20,
        password_min_length=4,
    )


@pytest.fixture()
def llm() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    store: FakeRemoteStore,
    directory: IdentityDirectory,
    catalog: ProjectCatalog,
    reporter: RecordingReporter,
    llm: FakeLLMClient,
) -> AppState:
    """AppState wired with deterministic fakes and an in-process change feed."""
    return AppState(
        settings=settings,
        store=store,
        feed=LocalChangeFeed(),
        directory=directory,
        catalog=catalog,
        sessions=SessionManager(store, directory, SessionFile(settings.session_path)),
        classifier=DemandClassifier(llm),
        reporter=reporter,
    )
