# src/demand_board/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.models import ChangeEvent
from ..core.ports import FeedbackKind
from ..core.state import AppState

logger = logging.getLogger(__name__)

_FEEDBACK_TAGS = {
    FeedbackKind.LOADING: "...",
    FeedbackKind.SUCCESS: "ok",
    FeedbackKind.WARNING: "aviso",
    FeedbackKind.ERROR: "erro",
}


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


class ConsoleReporter:
    """Prints user feedback ("toasts") as timestamped console lines."""

    def __init__(self, *, show_loading: bool = True) -> None:
        self.show_loading = show_loading

    def report(self, kind: FeedbackKind, message: str) -> None:
        if kind is FeedbackKind.LOADING and not self.show_loading:
            return
        _print_ts(f"[{_FEEDBACK_TAGS.get(kind, kind.value)}] {message}")


def _on_remote_change(state: AppState, event: ChangeEvent) -> None:
    # Task and comment changes show up on the next /tasks; notifications interrupt.
    if event.table == "notifications":
        title = str(event.new.get("title") or "")
        _print_ts(f"[notificação] {title}")


def _prompt(state: AppState) -> str:
    s = state.session
    who = s.name if s is not None else "anônimo"
    unread = state.inbox.unread_count if state.inbox is not None else 0
    badge = f" ({unread})" if unread else ""
    return f"{who}{badge}> "


async def _read_line(prompt: str) -> str:
    # input() blocks, so it runs in a worker thread and the event loop keeps
    # delivering change-feed events meanwhile.
    return await asyncio.to_thread(input, prompt)


async def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started.")
    _print_ts("[CONSOLE] Use /help para ver os comandos, /login para entrar e /exit para sair.\n")

    def emit(text: str) -> None:
        # Immediate user-visible feedback for long operations (e.g., classification)
        _print_ts(text)

    while True:
        if state.router is not None and state.router.on_change is None:
            state.router.on_change = lambda ev: _on_remote_change(state, ev)

        try:
            user_input = (await _read_line(_prompt(state))).strip()
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit", "/sair"):
            logger.info("Console exit command received.")
            break

        if not user_input.startswith("/"):
            _print_ts("Comandos começam com /. Use /help.")
            continue

        try:
            cmd_response = await command_registry.handle(state, user_input, emit=emit)
        except Exception:
            logger.exception("Command handler crashed.")
            cmd_response = "Erro interno ao executar o comando."

        if cmd_response is not None:
            _print_ts(cmd_response)
        sys.stdout.flush()

    logger.info("Console connector finished.")
