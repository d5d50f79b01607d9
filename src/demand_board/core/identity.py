# src/demand_board/core/identity.py

"""
Injected configuration objects: the user allowlist and the known-projects list.

Both used to be module-level constants; passing them explicitly lets tests
substitute fixtures and lets deployments load their own directory file.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from typing import Any

from ..errors import ConfigError
from .models import Identity, Role

logger = logging.getLogger(__name__)


class IdentityDirectory:
    """Fixed allowlist keyed by (lower-cased) email, with exactly one BOSS."""

    def __init__(self, identities: Iterable[Identity]) -> None:
        self._by_email: dict[str, Identity] = {}
        for ident in identities:
            email = ident.email.strip().lower()
            if not email:
                raise ConfigError("Directory entry without email", name=ident.name)
            if email in self._by_email:
                raise ConfigError("Duplicate email in directory", email=email)
            self._by_email[email] = Identity(name=ident.name.strip(), email=email, role=ident.role)

        bosses = [i for i in self._by_email.values() if i.is_boss]
        if len(bosses) != 1:
            raise ConfigError("Directory must contain exactly one BOSS", bosses=len(bosses))
        self._boss = bosses[0]

    @classmethod
    def from_mapping(cls, data: Mapping[str, Mapping[str, Any]]) -> IdentityDirectory:
        """Build from {email: {"name": ..., "role": "BOSS"|"EMPLOYEE"}}."""
        out: list[Identity] = []
        for email, entry in data.items():
            try:
                role = Role(str(entry.get("role", "EMPLOYEE")).upper())
            except ValueError as e:
                raise ConfigError("Invalid role in directory", email=email) from e
            out.append(Identity(name=str(entry.get("name") or ""), email=email, role=role))
        return cls(out)

    @classmethod
    def from_json_file(cls, path: str | Path) -> IdentityDirectory:
        path = Path(path)
        try:
            data = json.loads(path.read_text("utf-8"))
        except (OSError, ValueError) as e:
            raise ConfigError("Cannot read directory file", path=str(path)) from e
        if not isinstance(data, dict):
            raise ConfigError("Directory file must hold a JSON object", path=str(path))
        directory = cls.from_mapping(data)
        logger.info("Loaded identity directory from %s (%d users)", path, len(directory))
        return directory

    def __len__(self) -> int:
        return len(self._by_email)

    def __iter__(self) -> Iterator[Identity]:
        return iter(self._by_email.values())

    @property
    def boss(self) -> Identity:
        return self._boss

    def employees(self) -> list[Identity]:
        return [i for i in self._by_email.values() if not i.is_boss]

    def resolve(self, email: str) -> Identity | None:
        return self._by_email.get((email or "").strip().lower())

    def by_name(self, name: str) -> Identity | None:
        wanted = (name or "").strip()
        for ident in self._by_email.values():
            if ident.name == wanted:
                return ident
        return None

    def email_for(self, name: str) -> str | None:
        ident = self.by_name(name)
        return ident.email if ident else None


class ProjectCatalog:
    """
    Known project labels.

    Grows monotonically: projects observed on loaded tasks and manually added
    entries are appended, never pruned. Insertion order is preserved.
    """

    def __init__(self, initial: Iterable[str] = ()) -> None:
        self._names: list[str] = []
        self.observe(initial)

    def add(self, name: str) -> bool:
        name = (name or "").strip()
        if not name or name in self._names:
            return False
        self._names.append(name)
        return True

    def observe(self, names: Iterable[str]) -> int:
        added = 0
        for n in names:
            if self.add(n):
                added += 1
        return added

    @property
    def names(self) -> list[str]:
        return list(self._names)

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __len__(self) -> int:
        return len(self._names)
