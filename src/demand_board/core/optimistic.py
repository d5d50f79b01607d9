# src/demand_board/core/optimistic.py

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..errors import RemoteStoreError

logger = logging.getLogger(__name__)


async def apply_optimistic(
    mutate_local: Callable[[], Any],
    remote_call: Callable[[], Awaitable[Any]],
    revert_local: Callable[[], Any],
    *,
    on_error: Callable[[RemoteStoreError], Any] | None = None,
) -> bool:
    """
    Optimistic update protocol shared by every mutating operation.

    1. mutate_local() runs synchronously, before the first suspend point,
       so the view never renders the stale value while the call is in flight.
    2. remote_call() is awaited.
    3. On RemoteStoreError: revert_local() restores the prior value, on_error()
       is invoked exactly once, and False is returned.
       Any other exception also reverts, then propagates.

    Returns True when the remote write was confirmed.
    """
    mutate_local()
    try:
        await remote_call()
    except RemoteStoreError as e:
        revert_local()
        logger.info("Optimistic update rolled back (%s): %s", e.operation, e.message)
        if on_error is not None:
            on_error(e)
        return False
    except Exception:
        revert_local()
        raise
    return True
