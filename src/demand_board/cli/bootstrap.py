# src/demand_board/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- picks the store backend (local SQLite with an in-process change feed, or a
  PostgREST-compatible HTTP endpoint with a polling change feed),
- wires directory, project catalog, session manager and classifier into AppState.
"""

from __future__ import annotations

import logging

from ..auth.session import SessionFile, SessionManager
from ..config import DEFAULT_DIRECTORY, get_settings
from ..core.identity import IdentityDirectory, ProjectCatalog
from ..core.ports import ChangeFeed, LLMClient, RemoteStore, Reporter
from ..core.state import AppState
from ..errors import ConfigError
from ..llm.classifier import DemandClassifier
from ..llm.client import OpenAICompatibleClient
from ..llm.offline import OfflineLLMClient
from ..store.feed import LocalChangeFeed
from ..store.polling_feed import PollingChangeFeed
from ..store.rest_store import RestRemoteStore
from ..store.sqlite_store import SQLiteRemoteStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.session_path.parent.mkdir(parents=True, exist_ok=True)
    settings.store_db_path.parent.mkdir(parents=True, exist_ok=True)


def build_store(settings, directory: IdentityDirectory) -> tuple[RemoteStore, ChangeFeed | None]:
    backend = str(getattr(settings, "store_backend", "sqlite")).lower()

    if backend == "sqlite":
        feed = LocalChangeFeed()
        store = SQLiteRemoteStore(settings.store_db_path, feed=feed)
        logger.info("Store: sqlite at %s", settings.store_db_path)
        return store, feed

    if backend == "rest":
        if not settings.rest_url:
            raise ConfigError("BOARD_REST_URL is required for the rest backend")
        store = RestRemoteStore(
            settings.rest_url,
            settings.rest_api_key or "",
            timeout=settings.rest_timeout_seconds,
        )
        # Plain HTTP has no push; poll for other actors' changes instead.
        feed = PollingChangeFeed(
            store,
            emails=[i.email for i in directory],
            interval_seconds=getattr(settings, "rest_poll_seconds", 5.0),
            notifications_limit=getattr(settings, "notifications_limit", 20),
        )
        logger.info("Store: rest at %s (polling every %.1fs)", settings.rest_url, feed.interval_seconds)
        return store, feed

    raise ConfigError("Unknown store backend", backend=backend)


def build_directory(settings) -> IdentityDirectory:
    path = getattr(settings, "directory_path", None)
    if path is not None:
        directory = IdentityDirectory.from_json_file(path)
        logger.info("Directory loaded from %s (%d users)", path, len(directory))
        return directory
    return IdentityDirectory.from_mapping(DEFAULT_DIRECTORY)


def build_llm(settings) -> LLMClient:
    try:
        return OpenAICompatibleClient(settings)
    except RuntimeError as e:
        # Fallback for demos / local runs without external services.
        logger.info("Classifier runs offline: %s", e)
        return OfflineLLMClient()


def create_initial_state(*, settings=None, reporter: Reporter | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    directory = build_directory(settings)
    store, feed = build_store(settings, directory)

    state = AppState(
        settings=settings,
        store=store,
        feed=feed,
        directory=directory,
        catalog=ProjectCatalog(settings.projects),
        sessions=SessionManager(
            store,
            directory,
            SessionFile(settings.session_path),
            password_min_length=settings.password_min_length,
        ),
        classifier=DemandClassifier(build_llm(settings)),
        reporter=reporter,
    )
    return state
