# src/demand_board/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- The user allowlist and the initial project list are configuration data.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

ENV_PREFIX = "BOARD"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str], *, sep: str | None = None) -> List[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    if sep is not None:
        return [p.strip() for p in raw.split(sep) if p.strip()]
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


# Built-in allowlist: exactly one BOSS, fixed EMPLOYEEs.
# Override with BOARD_DIRECTORY_PATH (JSON object of the same shape).
DEFAULT_DIRECTORY: Dict[str, Dict[str, str]] = {
    "rodrigo.louzano@example.org": {"name": "Rodrigo Louzano", "role": "BOSS"},
    "narley.sousa@example.org": {"name": "Narley", "role": "EMPLOYEE"},
    "elvertoni.coimbra@example.org": {"name": "Toni", "role": "EMPLOYEE"},
    "luis.lanconi@example.org": {"name": "Luís Gustavo", "role": "EMPLOYEE"},
}

DEFAULT_PROJECTS: List[str] = [
    "Automação do WhatsApp (Em Desenv.)",
    "Sistema de Triagem (Em Desenv.)",
    "Módulo de Prazos (Manutenção)",
]


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    session_path: Path

    # ---- Remote store ----
    store_backend: str  # "sqlite" | "rest"
    store_db_path: Path
    rest_url: str
    rest_api_key: Optional[str]
    rest_timeout_seconds: float
    rest_poll_seconds: float

    # ---- Directory / projects ----
    directory_path: Optional[Path]
    projects: List[str]

    # ---- Policies ----
    unknown_recipient_policy: str
    reopen_on_progress_regression: bool
    allow_assignee_delete: bool
    notifications_limit: int
    password_min_length: int

    # ---- LLM (demand classifier, OpenAI-compatible) ----
    llm_api_key: Optional[str]
    llm_base_url: str
    llm_models: List[str]
    extra_headers: Dict[str, str]

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "demand-board")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/demand_board"))
        session_path = _env_path(_k("SESSION_PATH"), data_dir / "session.json")

        store_backend = _env(_k("STORE_BACKEND"), "sqlite").strip().lower() or "sqlite"
        store_db_path = _env_path(_k("STORE_DB_PATH"), data_dir / "board.sqlite3")
        rest_url = _env(_k("REST_URL"), "").strip()
        rest_api_key = _first_env(_k("REST_API_KEY"), default=None)
        rest_timeout_seconds = _env_float(_k("REST_TIMEOUT_SECONDS"), 15.0)
        rest_poll_seconds = max(0.5, _env_float(_k("REST_POLL_SECONDS"), 5.0))

        raw_directory = _first_env(_k("DIRECTORY_PATH"), default=None)
        directory_path = Path(raw_directory).expanduser() if raw_directory else None
        # Project names contain spaces, so this list is ";"-separated.
        projects = _env_list(_k("PROJECTS"), DEFAULT_PROJECTS, sep=";")

        unknown_recipient_policy = _env(_k("UNKNOWN_RECIPIENT_POLICY"), "warn").strip().lower()
        reopen_on_progress_regression = _env_bool(_k("REOPEN_ON_PROGRESS_REGRESSION"), False)
        allow_assignee_delete = _env_bool(_k("ALLOW_ASSIGNEE_DELETE"), False)
        notifications_limit = max(1, _env_int(_k("NOTIFICATIONS_LIMIT"), 20))
        password_min_length = max(1, _env_int(_k("PASSWORD_MIN_LENGTH"), 4))

        llm_api_key = _first_env(_k("LLM_API_KEY"), "OPENROUTER_API_KEY", "OPENAI_API_KEY", default=None)
        llm_base_url = _env(_k("LLM_BASE_URL"), "https://openrouter.ai/api/v1")
        llm_models = _env_list(
            _k("LLM_MODELS"),
            [
                "google/gemini-2.0-flash-001",
                "qwen/qwen-2.5-72b-instruct:free",
                "deepseek/deepseek-chat-v3-0324:free",
            ],
        )
        extra_headers = {
            "HTTP-Referer": _env(_k("HTTP_REFERER"), "https://example.com"),
            "X-Title": _env(_k("APP_TITLE"), app_name),
        }

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            session_path=session_path,
            store_backend=store_backend,
            store_db_path=store_db_path,
            rest_url=rest_url,
            rest_api_key=rest_api_key,
            rest_timeout_seconds=rest_timeout_seconds,
            rest_poll_seconds=rest_poll_seconds,
            directory_path=directory_path,
            projects=projects,
            unknown_recipient_policy=unknown_recipient_policy,
            reopen_on_progress_regression=reopen_on_progress_regression,
            allow_assignee_delete=allow_assignee_delete,
            notifications_limit=notifications_limit,
            password_min_length=password_min_length,
            llm_api_key=llm_api_key,
            llm_base_url=llm_base_url,
            llm_models=llm_models,
            extra_headers=extra_headers,
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
