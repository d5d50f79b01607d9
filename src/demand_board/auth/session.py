# src/demand_board/auth/session.py

"""
Login flow and session persistence.

- The allowlist (IdentityDirectory) decides who may log in and with which role.
- Passwords live in the `profiles` table as salted bcrypt hashes.
- First login for an allowlisted email without a profile row creates the password.
- An established session is written to a small JSON file so a restart does not
  force a new login; logout removes it.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
from enum import StrEnum
from pathlib import Path

import bcrypt

from ..core.identity import IdentityDirectory
from ..core.models import Identity, Session
from ..core.ports import RemoteStore
from ..errors import AuthError, RemoteStoreError, ValidationError

logger = logging.getLogger(__name__)

_BCRYPT_MAX_BYTES = 72


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=12)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash or over-long password.
        return False


class LoginStep(StrEnum):
    PASSWORD = "password"
    CREATE_PASSWORD = "create_password"


class SessionFile:
    """The persisted {name, email, role} record."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> Session | None:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text("utf-8"))
            if not isinstance(data, dict):
                return None
            return Session.from_dict(data)
        except (OSError, ValueError, KeyError):
            logger.warning("Ignoring unreadable session file %s", self.path)
            return None

    def save(self, session: Session) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(session.to_dict(), ensure_ascii=False), "utf-8")
        os.replace(tmp, self.path)
        with contextlib.suppress(OSError):
            os.chmod(self.path, 0o600)

    def clear(self) -> None:
        with contextlib.suppress(FileNotFoundError):
            self.path.unlink()


class SessionManager:
    def __init__(
        self,
        store: RemoteStore,
        directory: IdentityDirectory,
        session_file: SessionFile,
        *,
        password_min_length: int = 4,
    ) -> None:
        self._store = store
        self._directory = directory
        self._file = session_file
        self.password_min_length = max(1, int(password_min_length))
        self.current: Session | None = None

    def resolve(self, email: str) -> Identity:
        identity = self._directory.resolve(email)
        if identity is None:
            raise AuthError("E-mail não autorizado.", email=email)
        return identity

    async def _fetch_profile(self, email: str) -> dict | None:
        try:
            return await self._store.fetch_profile(email)
        except RemoteStoreError as e:
            raise AuthError("Erro ao verificar usuário.", email=email) from e

    async def identify(self, email: str) -> LoginStep:
        """Which login step comes next for this email."""
        identity = self.resolve(email)
        profile = await self._fetch_profile(identity.email)
        return LoginStep.PASSWORD if profile else LoginStep.CREATE_PASSWORD

    async def login(self, email: str, password: str) -> Session:
        identity = self.resolve(email)
        profile = await self._fetch_profile(identity.email)
        if not profile:
            raise AuthError("Senha ainda não criada. Use o cadastro.", email=identity.email)

        stored_hash = str(profile.get("password_hash") or "")
        if not stored_hash or not verify_password(password or "", stored_hash):
            logger.info("Login failed for %s (bad password)", identity.email)
            raise AuthError("Senha incorreta.", email=identity.email)

        return self._establish(identity)

    async def register(self, email: str, password: str, confirm: str) -> Session:
        identity = self.resolve(email)
        password = password or ""
        if len(password) < self.password_min_length:
            raise ValidationError(
                f"A senha deve ter pelo menos {self.password_min_length} caracteres.",
                field="password",
            )
        if len(password.encode("utf-8")) > _BCRYPT_MAX_BYTES:
            raise ValidationError("A senha é longa demais.", field="password")
        if password != confirm:
            raise ValidationError("As senhas não coincidem.", field="confirm")

        if await self._fetch_profile(identity.email):
            raise AuthError("Senha já cadastrada para este e-mail.", email=identity.email)

        try:
            await self._store.insert_profile(
                {
                    "email": identity.email,
                    "name": identity.name,
                    "role": identity.role.value,
                    "password_hash": hash_password(password),
                }
            )
        except RemoteStoreError as e:
            raise AuthError("Erro ao criar senha.", email=identity.email) from e

        logger.info("Profile created for %s", identity.email)
        return self._establish(identity)

    def _establish(self, identity: Identity) -> Session:
        session = Session.from_identity(identity)
        self.current = session
        try:
            self._file.save(session)
        except OSError:
            logger.exception("Failed to persist session to %s", self._file.path)
        logger.info("Session established for %s (%s)", session.email, session.role.value)
        return session

    def restore(self) -> Session | None:
        """Reuse a persisted session without re-checking credentials."""
        session = self._file.load()
        if session is not None:
            self.current = session
            logger.info("Session restored for %s", session.email)
        return session

    def logout(self) -> None:
        if self.current is not None:
            logger.info("Logout %s", self.current.email)
        self.current = None
        self._file.clear()
