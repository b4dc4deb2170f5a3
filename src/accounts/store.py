from __future__ import annotations

import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import structlog

from pake.errors import StorageError, UserAlreadyRegistered
from pake.record import RegistrationRecord

log = structlog.get_logger(__name__)

LOCK_STRIPES = 64


def _decode(identity: bytes, raw: bytes) -> RegistrationRecord:
    try:
        return RegistrationRecord.from_bytes(raw)
    except ValueError as e:
        raise StorageError(f"Stored record for {identity!r} is corrupt") from e


class CredentialStore(ABC):
    """
    Mapping from user identity to exactly one registration record.

    Implementations are safe to call from several threads; callers never
    need their own locking.
    """

    @abstractmethod
    def insert_if_absent(self, identity: bytes, record: RegistrationRecord) -> None:
        """Store record, or raise UserAlreadyRegistered if identity exists."""

    @abstractmethod
    def lookup(self, identity: bytes) -> RegistrationRecord | None: ...

    @abstractmethod
    def replace(self, identity: bytes, record: RegistrationRecord) -> None:
        """Store record unconditionally (password rotation)."""

    @abstractmethod
    def delete(self, identity: bytes) -> bool: ...

    @abstractmethod
    def count(self) -> int: ...

    def __contains__(self, identity: object) -> bool:
        return isinstance(identity, bytes) and self.lookup(identity) is not None

    def close(self) -> None:
        pass


class MemoryCredentialStore(CredentialStore):
    def __init__(self) -> None:
        self._records: dict[bytes, bytes] = {}
        # identities share a fixed pool of locks
        self._stripes = [threading.Lock() for _ in range(LOCK_STRIPES)]

    def _lock_for(self, identity: bytes) -> threading.Lock:
        return self._stripes[hash(identity) % LOCK_STRIPES]

    def insert_if_absent(self, identity: bytes, record: RegistrationRecord) -> None:
        with self._lock_for(identity):
            if identity in self._records:
                raise UserAlreadyRegistered()
            self._records[identity] = record.to_bytes()

    def lookup(self, identity: bytes) -> RegistrationRecord | None:
        raw = self._records.get(identity)
        return None if raw is None else _decode(identity, raw)

    def replace(self, identity: bytes, record: RegistrationRecord) -> None:
        with self._lock_for(identity):
            self._records[identity] = record.to_bytes()

    def delete(self, identity: bytes) -> bool:
        with self._lock_for(identity):
            return self._records.pop(identity, None) is not None

    def count(self) -> int:
        return len(self._records)


class SqliteCredentialStore(CredentialStore):
    """
    Durable store backed by a single SQLite table. The primary key on
    identity makes insert-if-absent atomic inside the database.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = str(path)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self.path, check_same_thread=False, isolation_level=None)
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS credentials ("
                " identity BLOB PRIMARY KEY,"
                " record BLOB NOT NULL)"
            )
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open credential store {self.path}: {e}") from e
        log.info("credential_store_opened", path=self.path)

    def _run(self, sql: str, params: tuple[object, ...]) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params)
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            log.error("credential_store_error", path=self.path, error=str(e))
            raise StorageError(str(e)) from e

    def _query(self, sql: str, params: tuple[object, ...] = ()) -> list[tuple[Any, ...]]:
        with self._lock:
            return self._run(sql, params).fetchall()

    def _write(self, sql: str, params: tuple[object, ...] = ()) -> int:
        """Run one write statement and return its rowcount."""
        with self._lock:
            return self._run(sql, params).rowcount

    def insert_if_absent(self, identity: bytes, record: RegistrationRecord) -> None:
        try:
            self._write(
                "INSERT INTO credentials (identity, record) VALUES (?, ?)",
                (identity, record.to_bytes()),
            )
        except sqlite3.IntegrityError as e:
            raise UserAlreadyRegistered() from e

    def lookup(self, identity: bytes) -> RegistrationRecord | None:
        rows = self._query("SELECT record FROM credentials WHERE identity = ?", (identity,))
        return _decode(identity, bytes(rows[0][0])) if rows else None

    def replace(self, identity: bytes, record: RegistrationRecord) -> None:
        self._write(
            "INSERT OR REPLACE INTO credentials (identity, record) VALUES (?, ?)",
            (identity, record.to_bytes()),
        )

    def delete(self, identity: bytes) -> bool:
        return self._write("DELETE FROM credentials WHERE identity = ?", (identity,)) == 1

    def count(self) -> int:
        rows = self._query("SELECT COUNT(*) FROM credentials")
        return int(rows[0][0])

    def close(self) -> None:
        with self._lock:
            self._conn.close()
