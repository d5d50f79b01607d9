# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets (REST API key, LLM API key). Keep them in .env, which is gitignored.

This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "BOARD_APP_NAME": "App display name (default: demand-board).",
    "BOARD_LOG_LEVEL": "Logging level (default: INFO).",
    # Paths (gitignored)
    "BOARD_DATA_DIR": "Local data directory (default: .local/demand_board).",
    "BOARD_SESSION_PATH": "Persisted login session JSON (default: <data_dir>/session.json).",
    "BOARD_STORE_DB_PATH": "SQLite board database (default: <data_dir>/board.sqlite3).",
    # Remote store
    "BOARD_STORE_BACKEND": "'sqlite' (local file with in-process realtime) or 'rest' (hosted REST API).",
    "BOARD_REST_URL": "Base URL of the REST API, e.g. https://<project>.example.co/rest/v1.",
    "BOARD_REST_API_KEY": "API key sent as 'apikey' and bearer token (rest backend only).",
    "BOARD_REST_TIMEOUT_SECONDS": "HTTP timeout for the REST backend (default: 15).",
    "BOARD_REST_POLL_SECONDS": "How often the REST backend is polled for changes made by others (default: 5).",
    # Users / projects
    "BOARD_DIRECTORY_PATH": (
        'JSON file {"email": {"name": ..., "role": "BOSS"|"EMPLOYEE"}} with exactly one BOSS '
        "(default: built-in team)."
    ),
    "BOARD_PROJECTS": "Initial project list, ';'-separated (project names contain spaces).",
    # Policies
    "BOARD_UNKNOWN_RECIPIENT_POLICY": "Assignee without a directory entry: skip | warn | fail (default: warn).",
    "BOARD_REOPEN_ON_PROGRESS_REGRESSION": "Reopen a DONE task when progress drops below 100 (default: false).",
    "BOARD_ALLOW_ASSIGNEE_DELETE": "Let assignees delete their tasks, not only the BOSS (default: false).",
    "BOARD_NOTIFICATIONS_LIMIT": "How many recent notifications the inbox loads (default: 20).",
    "BOARD_PASSWORD_MIN_LENGTH": "Minimum password length on first access (default: 4).",
    # LLM (demand classifier, OpenAI-compatible API)
    "BOARD_LLM_API_KEY": "API key (falls back to OPENROUTER_API_KEY / OPENAI_API_KEY; empty => offline mode).",
    "BOARD_LLM_BASE_URL": "API base URL (default: https://openrouter.ai/api/v1).",
    "BOARD_LLM_MODELS": "Comma/space separated list of models to try in order.",
    "BOARD_LLM_CONNECT_TIMEOUT_SECONDS": "LLM connect timeout (default: 5).",
    "BOARD_LLM_READ_TIMEOUT_SECONDS": "LLM read timeout (default: 60).",
    "BOARD_HTTP_REFERER": "Optional OpenRouter metadata header.",
    "BOARD_APP_TITLE": "Optional OpenRouter metadata header title.",
}
