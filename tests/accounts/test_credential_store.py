import secrets
import sqlite3
import threading
from collections.abc import Iterator
from pathlib import Path

import pytest

from accounts.store import LOCK_STRIPES, CredentialStore, MemoryCredentialStore, SqliteCredentialStore
from pake.errors import StorageError, UserAlreadyRegistered
from pake.record import RegistrationRecord


def make_record() -> RegistrationRecord:
    return RegistrationRecord(
        client_public_key=secrets.token_bytes(32),
        server_public_key=secrets.token_bytes(32),
        envelope=secrets.token_bytes(72),
    )


@pytest.fixture(params=["memory", "sqlite"])  # type: ignore
def credential_store(request: pytest.FixtureRequest, tmp_path: Path) -> Iterator[CredentialStore]:
    store: CredentialStore
    if request.param == "memory":
        store = MemoryCredentialStore()
    else:
        store = SqliteCredentialStore(tmp_path / "credentials.db")
    yield store
    store.close()


class TestCredentialStore:
    def test_insert_and_lookup(self, credential_store: CredentialStore) -> None:
        record = make_record()
        credential_store.insert_if_absent(b"alice", record)
        assert credential_store.lookup(b"alice") == record
        assert b"alice" in credential_store
        assert credential_store.count() == 1

    def test_lookup_missing(self, credential_store: CredentialStore) -> None:
        assert credential_store.lookup(b"nobody") is None
        assert b"nobody" not in credential_store

    def test_duplicate_insert_keeps_original(self, credential_store: CredentialStore) -> None:
        original = make_record()
        credential_store.insert_if_absent(b"alice", original)
        with pytest.raises(UserAlreadyRegistered):
            credential_store.insert_if_absent(b"alice", make_record())
        assert credential_store.lookup(b"alice") == original

    def test_replace(self, credential_store: CredentialStore) -> None:
        credential_store.insert_if_absent(b"alice", make_record())
        updated = make_record()
        credential_store.replace(b"alice", updated)
        assert credential_store.lookup(b"alice") == updated
        assert credential_store.count() == 1

    def test_delete(self, credential_store: CredentialStore) -> None:
        credential_store.insert_if_absent(b"alice", make_record())
        assert credential_store.delete(b"alice") is True
        assert credential_store.delete(b"alice") is False
        assert credential_store.lookup(b"alice") is None
        credential_store.insert_if_absent(b"alice", make_record())

    def test_concurrent_inserts_one_winner(self, credential_store: CredentialStore) -> None:
        records = [make_record() for _ in range(16)]
        winners: list[RegistrationRecord] = []
        losers: list[UserAlreadyRegistered] = []
        barrier = threading.Barrier(len(records))

        def attempt(record: RegistrationRecord) -> None:
            barrier.wait()
            try:
                credential_store.insert_if_absent(b"alice", record)
                winners.append(record)
            except UserAlreadyRegistered as e:
                losers.append(e)

        threads = [threading.Thread(target=attempt, args=(r,)) for r in records]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(winners) == 1
        assert len(losers) == len(records) - 1
        assert credential_store.lookup(b"alice") == winners[0]


class TestCorruption:
    def test_memory_corrupt_record(self) -> None:
        store = MemoryCredentialStore()
        store._records[b"alice"] = b"\x01short"
        with pytest.raises(StorageError):
            store.lookup(b"alice")

    def test_sqlite_corrupt_record(self, tmp_path: Path) -> None:
        path = tmp_path / "credentials.db"
        store = SqliteCredentialStore(path)
        with sqlite3.connect(path) as conn:
            conn.execute("INSERT INTO credentials VALUES (?, ?)", (b"alice", b"\x00"))
        with pytest.raises(StorageError):
            store.lookup(b"alice")
        store.close()


class TestSqlitePersistence:
    def test_survives_reopen(self, tmp_path: Path) -> None:
        path = tmp_path / "credentials.db"
        record = make_record()
        store = SqliteCredentialStore(path)
        store.insert_if_absent(b"alice", record)
        store.close()

        reopened = SqliteCredentialStore(path)
        assert reopened.lookup(b"alice") == record
        with pytest.raises(UserAlreadyRegistered):
            reopened.insert_if_absent(b"alice", make_record())
        reopened.close()

    def test_unopenable_path(self, tmp_path: Path) -> None:
        with pytest.raises(StorageError):
            SqliteCredentialStore(tmp_path / "missing" / "credentials.db")


class TestMemoryLocks:
    def test_lock_pool_is_fixed(self) -> None:
        store = MemoryCredentialStore()
        for i in range(1000):
            identity = f"user{i}".encode()
            store.insert_if_absent(identity, make_record())
            assert store.delete(identity)
        assert len(store._stripes) == LOCK_STRIPES
        assert store.count() == 0

    def test_same_identity_same_lock(self) -> None:
        store = MemoryCredentialStore()
        assert store._lock_for(b"alice") is store._lock_for(b"alice")
