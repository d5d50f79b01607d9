# tests/test_optimistic.py

from __future__ import annotations

import pytest

from demand_board.core.optimistic import apply_optimistic
from demand_board.errors import RemoteStoreError


class Box:
    def __init__(self, value: int) -> None:
        self.value = value


@pytest.mark.asyncio
async def test_success_keeps_local_mutation() -> None:
    box = Box(1)
    errors: list[RemoteStoreError] = []

    async def remote() -> None:
        assert box.value == 2

    ok = await apply_optimistic(
        lambda: setattr(box, "value", 2),
        remote,
        lambda: setattr(box, "value", 1),
        on_error=errors.append,
    )

    assert ok is True
    assert box.value == 2
    assert errors == []


@pytest.mark.asyncio
async def test_store_error_reverts_and_reports_once() -> None:
    box = Box(1)
    errors: list[RemoteStoreError] = []

    async def remote() -> None:
        raise RemoteStoreError("down", operation="update_task", status_code=503)

    ok = await apply_optimistic(
        lambda: setattr(box, "value", 2),
        remote,
        lambda: setattr(box, "value", 1),
        on_error=errors.append,
    )

    assert ok is False
    assert box.value == 1
    assert len(errors) == 1
    assert errors[0].status_code == 503


@pytest.mark.asyncio
async def test_other_errors_revert_and_propagate() -> None:
    box = Box(1)
    errors: list[RemoteStoreError] = []

    async def remote() -> None:
        raise KeyError("bug")

    with pytest.raises(KeyError):
        await apply_optimistic(
            lambda: setattr(box, "value", 2),
            remote,
            lambda: setattr(box, "value", 1),
            on_error=errors.append,
        )

    assert box.value == 1
    assert errors == []
