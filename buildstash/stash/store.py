"""Stash record storage.

A store keeps the current StashRecord of each build target. Stores only
ever see complete records: ``publish`` replaces the previous record of a
target in one step, so readers observe either the old or the new record.

Stores:
- InMemoryStashStore: process-local dictionary (default)
- SqlStashStore: SQLAlchemy table, survives process restarts
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from pydantic import SecretStr
from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from buildstash.db import get_session
from buildstash.stash.models import StashEntry
from buildstash.types import Fingerprint


@dataclass(frozen=True)
class StashRecord:
    """A staged secret and the fingerprint it was staged under.

    Attributes:
        secret_value: The staged secret.
        staged_under: Fingerprint current when the secret was fetched.
        generation: 0 on first staging, incremented on every replacement.
        staged_at: When the secret was fetched.
    """

    secret_value: SecretStr
    staged_under: Fingerprint
    generation: int
    staged_at: datetime

    def summary(self) -> dict[str, object]:
        """Return a view of the record safe to print."""
        return {
            "staged_under": self.staged_under,
            "generation": self.generation,
            "staged_at": self.staged_at.isoformat(),
        }


class StashStore(Protocol):
    """Keeps the current record of each target."""

    def load(self, target: str) -> StashRecord | None: ...

    def publish(self, target: str, record: StashRecord) -> None: ...

    def discard(self, target: str) -> None: ...

    def targets(self) -> list[str]: ...


class InMemoryStashStore:
    """Process-local store."""

    def __init__(self) -> None:
        self._records: dict[str, StashRecord] = {}
        self._lock = threading.Lock()

    def load(self, target: str) -> StashRecord | None:
        with self._lock:
            return self._records.get(target)

    def publish(self, target: str, record: StashRecord) -> None:
        with self._lock:
            self._records[target] = record

    def discard(self, target: str) -> None:
        with self._lock:
            self._records.pop(target, None)

    def targets(self) -> list[str]:
        with self._lock:
            return sorted(self._records)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops the offset; stored values are always UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlStashStore:
    """Store backed by the ``stash_records`` table.

    Each call runs in its own transaction; ``publish`` merges the complete
    row and commits, so a failed write leaves the previous row in place.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory

    def load(self, target: str) -> StashRecord | None:
        with get_session(self.session_factory) as session:
            entry = session.get(StashEntry, target)
            if entry is None:
                return None
            return StashRecord(
                secret_value=SecretStr(entry.secret_value),
                staged_under=entry.staged_under,
                generation=entry.generation,
                staged_at=_as_utc(entry.staged_at),
            )

    def publish(self, target: str, record: StashRecord) -> None:
        with get_session(self.session_factory) as session:
            session.merge(
                StashEntry(
                    target=target,
                    secret_value=record.secret_value.get_secret_value(),
                    staged_under=record.staged_under,
                    generation=record.generation,
                    staged_at=record.staged_at.astimezone(timezone.utc),
                )
            )

    def discard(self, target: str) -> None:
        with get_session(self.session_factory) as session:
            session.execute(delete(StashEntry).where(StashEntry.target == target))

    def targets(self) -> list[str]:
        with get_session(self.session_factory) as session:
            stmt = select(StashEntry.target).order_by(StashEntry.target)
            return list(session.execute(stmt).scalars().all())


__all__ = [
    "InMemoryStashStore",
    "SqlStashStore",
    "StashRecord",
    "StashStore",
]
