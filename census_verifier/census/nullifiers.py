"""
Nullifier registry: at-most-once counting per (scope, identity).

The only write operation is ``try_consume``, a single atomic
check-and-set. ``is_consumed`` is a read-only peek that lets callers skip
expensive work for obvious replays; it is never authoritative.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from sqlalchemy import (
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    create_engine,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .exceptions import InternalError
from .field import FieldElement, FieldLike

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NullifierKey:
    """Replay key: the scope and the nullifier hash revealed for it."""

    external_nullifier: FieldElement
    nullifier_hash: FieldElement

    @classmethod
    def of(cls, external_nullifier: FieldLike, nullifier_hash: FieldLike) -> "NullifierKey":
        return cls(
            external_nullifier=FieldElement.parse(external_nullifier),
            nullifier_hash=FieldElement.parse(nullifier_hash),
        )

    def __str__(self) -> str:
        return f"{self.external_nullifier}_{self.nullifier_hash}"


@runtime_checkable
class NullifierRegistry(Protocol):
    def try_consume(self, key: NullifierKey) -> bool:
        """Atomically mark ``key`` consumed; False if it already was."""
        ...

    def is_consumed(self, key: NullifierKey) -> bool:
        ...

    def count(self) -> int:
        ...


class MemoryNullifierRegistry:
    """
    In-process registry.

    Durability gap: consumed nullifiers are lost on restart and are not
    shared between instances. Only suitable for a single, non-restarting
    process or for tests.
    """

    durable = False

    def __init__(self) -> None:
        self._consumed: set[str] = set()
        self._lock = threading.Lock()
        logger.warning(
            "Using in-memory nullifier registry: consumed nullifiers do not "
            "survive a restart"
        )

    def try_consume(self, key: NullifierKey) -> bool:
        token = str(key)
        with self._lock:
            if token in self._consumed:
                return False
            self._consumed.add(token)
            return True

    def is_consumed(self, key: NullifierKey) -> bool:
        with self._lock:
            return str(key) in self._consumed

    def count(self) -> int:
        with self._lock:
            return len(self._consumed)


_metadata = MetaData()

consumed_nullifiers = Table(
    "consumed_nullifiers",
    _metadata,
    Column("external_nullifier", String(80), primary_key=True),
    Column("nullifier_hash", String(80), primary_key=True),
    Column("consumed_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
)


class SqlNullifierRegistry:
    """
    Registry backed by a SQL table with a composite primary key.

    ``try_consume`` is one INSERT; the database's uniqueness constraint
    decides the race, so concurrent writers (threads or processes) see
    exactly one winner per key.
    """

    durable = True

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        _metadata.create_all(engine)

    @classmethod
    def from_url(cls, url: str) -> "SqlNullifierRegistry":
        if url.startswith("sqlite:///"):
            db_path = url[len("sqlite:///"):]
            if db_path and db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return cls(create_engine(url))

    def try_consume(self, key: NullifierKey) -> bool:
        stmt = consumed_nullifiers.insert().values(
            external_nullifier=str(key.external_nullifier),
            nullifier_hash=str(key.nullifier_hash),
        )
        try:
            with self._engine.begin() as conn:
                conn.execute(stmt)
        except IntegrityError:
            return False
        except SQLAlchemyError as exc:
            raise InternalError(f"nullifier registry write failed: {exc}") from exc
        return True

    def is_consumed(self, key: NullifierKey) -> bool:
        stmt = select(consumed_nullifiers.c.nullifier_hash).where(
            consumed_nullifiers.c.external_nullifier == str(key.external_nullifier),
            consumed_nullifiers.c.nullifier_hash == str(key.nullifier_hash),
        )
        try:
            with self._engine.connect() as conn:
                return conn.execute(stmt).first() is not None
        except SQLAlchemyError as exc:
            raise InternalError(f"nullifier registry read failed: {exc}") from exc

    def count(self) -> int:
        stmt = select(func.count()).select_from(consumed_nullifiers)
        try:
            with self._engine.connect() as conn:
                return int(conn.execute(stmt).scalar_one())
        except SQLAlchemyError as exc:
            raise InternalError(f"nullifier registry read failed: {exc}") from exc


def registry_from_url(url: str | None) -> NullifierRegistry:
    """
    Build a registry from a URL.

    ``memory://`` (or None) gives the in-process registry; anything else is
    handed to SQLAlchemy.
    """
    if url is None or url in ("", "memory://"):
        return MemoryNullifierRegistry()
    return SqlNullifierRegistry.from_url(url)
