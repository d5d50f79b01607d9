# src/demand_board/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, restores a persisted session if any,
then runs the console REPL until /exit or EOF.
"""

from __future__ import annotations

import asyncio
import logging

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import ConsoleReporter, run_console_loop
from ..core.state import AppState
from ..errors import BoardError
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


async def _shutdown(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        if state.router is not None:
            state.router.stop()
    except Exception:
        logger.debug("Realtime unsubscribe failed.", exc_info=True)

    try:
        await state.store.close()
    except Exception:
        logger.exception("Store close failed.")


async def _run(state: AppState) -> None:
    session = state.sessions.restore()
    if session is not None:
        # Restored sessions skip the password step; the allowlist is re-checked.
        if state.directory.resolve(session.email) is None:
            logger.warning("Persisted session for %s is no longer allowed", session.email)
            state.sessions.logout()
        else:
            try:
                await state.start_session(session)
            except BoardError:
                logger.exception("Failed to resume session for %s", session.email)

    try:
        await run_console_loop(state)
    finally:
        await _shutdown(state)


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_dir = getattr(settings, "data_dir", ".local/demand_board")
    setup_logging(log_dir=log_dir, console_level=console_level)

    logger.info("Starting %s...", getattr(settings, "app_name", "demand-board"))

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings, reporter=ConsoleReporter())

    try:
        asyncio.run(_run(state))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    finally:
        logger.info("Bye.")


if __name__ == "__main__":
    main()
