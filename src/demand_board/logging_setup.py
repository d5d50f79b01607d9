# src/demand_board/logging_setup.py

from __future__ import annotations

import logging
import sys
from collections.abc import Iterable
from pathlib import Path

APP_LOGGER = "demand_board"

# Loggers below these prefixes log every store call and every poll.
CHATTY_APP_LOGGERS: tuple[str, ...] = (
    "demand_board.store.",
)

THIRD_PARTY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "openai")

LOG_FILE_NAME = "board.log"


class _ConsoleNoiseFilter(logging.Filter):
    """
    Make the interactive console usable:
    - allow app logs
    - chatty app loggers only at WARNING+
    - Python warnings (captured as 'py.warnings') and third-party noise only at ERROR+
    """

    def __init__(self, app_logger: str = APP_LOGGER, chatty: Iterable[str] = CHATTY_APP_LOGGERS) -> None:
        super().__init__()
        self.app_prefix = app_logger + "."
        self.chatty = tuple(chatty)

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith(self.app_prefix):
            if name.startswith(self.chatty):
                return record.levelno >= logging.WARNING
            return True

        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/demand_board",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Console handler filtered for interactive use, file handler with everything.

    Call this ONCE, very early (before first logger.info). Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(fmt)
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    fh = logging.FileHandler(str(log_file), encoding="utf-8")
    fh.setLevel(file_level)
    fh.setFormatter(fmt)
    root.addHandler(fh)

    logging.captureWarnings(True)

    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return log_file
