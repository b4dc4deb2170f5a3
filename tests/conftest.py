from collections.abc import Callable, Iterator

import pytest
import structlog

from accounts.sessions import SessionManager
from accounts.store import MemoryCredentialStore
from pake.client import PakeClientEngine
from pake.record import RegistrationRecord
from pake.server import PakeServerEngine
from pake.server_setup import ServerSetup

PASSWORD = "0a1b2-c3d4e-f5g6h-j7k8m-n9pqr-stvwx"
IDENTITY = b"alice"


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)  # type: ignore
def reset_logging() -> Iterator[None]:
    yield
    structlog.reset_defaults()


@pytest.fixture(scope="session")  # type: ignore
def setup() -> ServerSetup:
    return ServerSetup.generate()


@pytest.fixture  # type: ignore
def server_engine(setup: ServerSetup) -> PakeServerEngine:
    return PakeServerEngine(setup)


@pytest.fixture  # type: ignore
def client_engine() -> PakeClientEngine:
    return PakeClientEngine()


@pytest.fixture  # type: ignore
def store() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture  # type: ignore
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture  # type: ignore
def manager(server_engine: PakeServerEngine, store: MemoryCredentialStore, clock: FakeClock) -> SessionManager:
    return SessionManager(server_engine, store, ttl=60.0, purge_batch=2, clock=clock)


@pytest.fixture  # type: ignore
def register(
    client_engine: PakeClientEngine, server_engine: PakeServerEngine
) -> Callable[..., tuple[RegistrationRecord, bytes]]:
    """Run a full registration directly between the two engines."""

    def run(identity: bytes = IDENTITY, password: str = PASSWORD) -> tuple[RegistrationRecord, bytes]:
        request, state = client_engine.start_registration(password, identity)
        response = server_engine.start_registration(request, identity)
        upload, export_key = client_engine.finish_registration(response, state, identity)
        return server_engine.finish_registration(upload, identity), export_key

    return run
