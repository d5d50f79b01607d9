# tests/test_session.py

from __future__ import annotations

import json

import pytest

from demand_board.auth.session import (
    LoginStep,
    SessionFile,
    SessionManager,
    hash_password,
    verify_password,
)
from demand_board.core.models import Role
from demand_board.errors import AuthError, ValidationError

from .conftest import BOSS_EMAIL, NARLEY_EMAIL


@pytest.fixture()
def manager(store, directory, tmp_path) -> SessionManager:
    return SessionManager(store, directory, SessionFile(tmp_path / "session.json"))


def test_hash_password_is_salted() -> None:
    h1 = hash_password("segredo")
    h2 = hash_password("segredo")

    assert h1 != h2
    assert "segredo" not in h1
    assert verify_password("segredo", h1)
    assert not verify_password("errado", h1)
    assert not verify_password("segredo", "not-a-hash")


@pytest.mark.asyncio
async def test_unknown_email_is_rejected(manager, store) -> None:
    with pytest.raises(AuthError):
        await manager.identify("intruso@example.org")
    with pytest.raises(AuthError):
        await manager.login("intruso@example.org", "x")
    assert store.remote_calls == 0


@pytest.mark.asyncio
async def test_first_access_register_then_login(manager, store, tmp_path) -> None:
    assert await manager.identify(NARLEY_EMAIL) is LoginStep.CREATE_PASSWORD

    session = await manager.register(" Narley@Example.org ", "1234", "1234")

    assert session.name == "Narley"
    assert session.role is Role.EMPLOYEE
    profile = store.profiles[NARLEY_EMAIL]
    assert profile["password_hash"] != "1234"
    assert verify_password("1234", profile["password_hash"])
    assert json.loads((tmp_path / "session.json").read_text("utf-8")) == {
        "name": "Narley",
        "email": NARLEY_EMAIL,
        "role": "EMPLOYEE",
    }

    assert await manager.identify(NARLEY_EMAIL) is LoginStep.PASSWORD
    assert (await manager.login(NARLEY_EMAIL, "1234")).email == NARLEY_EMAIL

    with pytest.raises(AuthError) as exc:
        await manager.login(NARLEY_EMAIL, "4321")
    assert exc.value.message == "Senha incorreta."


@pytest.mark.asyncio
async def test_register_rules(manager) -> None:
    with pytest.raises(ValidationError) as exc:
        await manager.register(BOSS_EMAIL, "123", "123")
    assert exc.value.field == "password"

    with pytest.raises(ValidationError) as exc:
        await manager.register(BOSS_EMAIL, "12345", "54321")
    assert exc.value.field == "confirm"

    with pytest.raises(ValidationError):
        await manager.register(BOSS_EMAIL, "x" * 80, "x" * 80)

    await manager.register(BOSS_EMAIL, "abcd", "abcd")
    with pytest.raises(AuthError):
        await manager.register(BOSS_EMAIL, "abcd", "abcd")


@pytest.mark.asyncio
async def test_login_before_register_is_an_auth_error(manager) -> None:
    with pytest.raises(AuthError):
        await manager.login(NARLEY_EMAIL, "1234")


@pytest.mark.asyncio
async def test_store_failure_becomes_auth_error(manager, store) -> None:
    store.fail.add("fetch_profile")
    with pytest.raises(AuthError):
        await manager.identify(NARLEY_EMAIL)


@pytest.mark.asyncio
async def test_restore_and_logout(store, directory, tmp_path) -> None:
    path = tmp_path / "session.json"
    first = SessionManager(store, directory, SessionFile(path))
    await first.register(BOSS_EMAIL, "abcd", "abcd")

    second = SessionManager(store, directory, SessionFile(path))
    restored = second.restore()
    assert restored is not None
    assert restored.role is Role.BOSS
    assert second.current == restored

    second.logout()
    assert second.current is None
    assert not path.exists()
    assert second.restore() is None


def test_session_file_ignores_garbage(tmp_path) -> None:
    path = tmp_path / "session.json"
    path.write_text("{not json", "utf-8")
    assert SessionFile(path).load() is None

    path.write_text(json.dumps({"name": "x"}), "utf-8")
    assert SessionFile(path).load() is None
