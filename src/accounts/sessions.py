from __future__ import annotations

import secrets
import threading
import time
from collections.abc import Callable
from enum import Enum, IntEnum

import structlog
from pydantic import BaseModel, ConfigDict

from accounts.store import CredentialStore
from pake.errors import AuthError, InvalidCredentials, ProtocolViolation, SessionExpired
from pake.messages import (
    AuthResult,
    CredentialFinalize,
    CredentialRequest,
    ProtocolMessage,
    RegistrationRequest,
    RegistrationUpload,
)
from pake.server import PakeServerEngine, ServerLoginState

log = structlog.get_logger(__name__)

Clock = Callable[[], float]


class SessionState(IntEnum):
    IDLE = 0
    REQUEST_SENT = 1
    RESPONSE_RECEIVED = 2
    FINALIZING = 3
    AUTHENTICATED = 4
    FAILED = 5

    @property
    def terminal(self) -> bool:
        return self in (SessionState.AUTHENTICATED, SessionState.FAILED)


class Purpose(str, Enum):
    REGISTER = "register"
    LOGIN = "login"
    DELETE = "delete"
    REPLACE = "replace"

    @property
    def registers(self) -> bool:
        return self in (Purpose.REGISTER, Purpose.REPLACE)


# message type each purpose accepts in a given state
EXPECTED: dict[bool, dict[SessionState, type[ProtocolMessage]]] = {
    True: {
        SessionState.IDLE: RegistrationRequest,
        SessionState.RESPONSE_RECEIVED: RegistrationUpload,
    },
    False: {
        SessionState.IDLE: CredentialRequest,
        SessionState.RESPONSE_RECEIVED: CredentialFinalize,
    },
}


class Outcome(BaseModel):
    session_id: str
    purpose: Purpose
    identity: bytes
    session_key: bytes | None = None


class NextAction(BaseModel):
    reply: ProtocolMessage | None = None
    outcome: Outcome | None = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def done(self) -> bool:
        return self.outcome is not None


class AuthSession:
    """
    In-flight exchange for one connection. Only the manager mutates it, and
    only while holding its lock.
    """

    def __init__(
        self,
        session_id: str,
        purpose: Purpose,
        created_at: float,
        expires_at: float,
        bound_identity: bytes | None = None,
    ) -> None:
        self.session_id = session_id
        self.purpose = purpose
        self.bound_identity = bound_identity
        self.identity: bytes | None = None
        self.state = SessionState.IDLE
        self.created_at = created_at
        self.expires_at = expires_at
        self.login_state: ServerLoginState | None = None
        self.lock = threading.Lock()

    def __repr__(self) -> str:
        return f"AuthSession({self.session_id}, {self.purpose.value}, {self.state.name})"

    def transition(self, new_state: SessionState) -> None:
        if self.state.terminal or new_state <= self.state:
            raise ProtocolViolation(f"Illegal transition {self.state.name} -> {new_state.name}")
        self.state = new_state

    def fail(self) -> None:
        if not self.state.terminal:
            self.state = SessionState.FAILED
        self.wipe()

    def wipe(self) -> None:
        if self.login_state is not None:
            self.login_state.wipe()
            self.login_state = None


class SessionManager:
    """
    Table of in-flight exchanges, advanced one message at a time.

    The table lock is only held to look sessions up or remove them; message
    processing runs under the per-session lock so sessions progress
    independently.
    """

    def __init__(
        self,
        engine: PakeServerEngine,
        store: CredentialStore,
        ttl: float = 60.0,
        purge_batch: int = 256,
        clock: Clock = time.monotonic,
    ) -> None:
        self.engine = engine
        self.store = store
        self.ttl = ttl
        self.purge_batch = purge_batch
        self._clock = clock
        self._sessions: dict[str, AuthSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, purpose: Purpose = Purpose.LOGIN, bound_identity: bytes | None = None) -> AuthSession:
        if purpose is Purpose.REPLACE and bound_identity is None:
            raise ValueError("A replace session must be bound to an authenticated identity")
        now = self._clock()
        session = AuthSession(
            session_id=secrets.token_hex(16),
            purpose=purpose,
            created_at=now,
            expires_at=now + self.ttl,
            bound_identity=bound_identity,
        )
        with self._lock:
            self._sessions[session.session_id] = session
        log.debug("session_created", session_id=session.session_id, purpose=purpose.value)
        return session

    def get(self, session_id: str) -> AuthSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionExpired()
        return session

    def discard(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            with session.lock:
                session.fail()

    def advance(self, session_id: str, message: ProtocolMessage) -> NextAction:
        session = self.get(session_id)
        with session.lock:
            now = self._clock()
            if session.state.terminal:
                raise SessionExpired("Session has already completed")
            if now >= session.expires_at:
                session.fail()
                raise SessionExpired()

            expected = EXPECTED[session.purpose.registers].get(session.state)
            try:
                if expected is None or not isinstance(message, expected):
                    raise ProtocolViolation(
                        f"Unexpected {type(message).__name__} in state {session.state.name}"
                    )
                action = self._dispatch(session, message)
            except AuthError as e:
                session.fail()
                self._log_failure(session, e)
                raise
            except Exception:
                session.fail()
                raise

            session.expires_at = now + self.ttl
            return action

    def _dispatch(self, session: AuthSession, message: ProtocolMessage) -> NextAction:
        if isinstance(message, RegistrationRequest):
            return self._registration_request(session, message)
        if isinstance(message, RegistrationUpload):
            return self._registration_upload(session, message)
        if isinstance(message, CredentialRequest):
            return self._credential_request(session, message)
        if isinstance(message, CredentialFinalize):
            return self._credential_finalize(session, message)
        raise ProtocolViolation(f"Unhandled message {type(message).__name__}")

    def _registration_request(self, session: AuthSession, request: RegistrationRequest) -> NextAction:
        if session.bound_identity is not None and request.identity != session.bound_identity:
            raise ProtocolViolation("Re-registration must keep the authenticated identity")
        session.identity = request.identity
        session.transition(SessionState.REQUEST_SENT)
        response = self.engine.start_registration(request, request.identity)
        session.transition(SessionState.RESPONSE_RECEIVED)
        return NextAction(reply=response)

    def _registration_upload(self, session: AuthSession, upload: RegistrationUpload) -> NextAction:
        if session.identity is None:
            raise ProtocolViolation("Upload before registration request")
        session.transition(SessionState.FINALIZING)
        record = self.engine.finish_registration(upload, session.identity)
        # the only write on the registration path, with a complete record
        if session.purpose is Purpose.REPLACE:
            self.store.replace(session.identity, record)
        else:
            self.store.insert_if_absent(session.identity, record)
        session.transition(SessionState.AUTHENTICATED)
        log.info("registration_complete", session_id=session.session_id, purpose=session.purpose.value)
        return NextAction(
            reply=AuthResult(),
            outcome=Outcome(session_id=session.session_id, purpose=session.purpose, identity=session.identity),
        )

    def _credential_request(self, session: AuthSession, request: CredentialRequest) -> NextAction:
        session.identity = request.identity
        session.transition(SessionState.REQUEST_SENT)
        record = self.store.lookup(request.identity)
        response, session.login_state = self.engine.start_login(request, request.identity, record)
        session.transition(SessionState.RESPONSE_RECEIVED)
        return NextAction(reply=response)

    def _credential_finalize(self, session: AuthSession, finalize: CredentialFinalize) -> NextAction:
        if session.identity is None or session.login_state is None:
            raise ProtocolViolation("Finalize before credential request")
        session.transition(SessionState.FINALIZING)
        session_key, confirmation = self.engine.finish_login(finalize, session.login_state)
        session.login_state = None
        if session.purpose is Purpose.DELETE:
            self.store.delete(session.identity)
        session.transition(SessionState.AUTHENTICATED)
        log.info("login_complete", session_id=session.session_id, purpose=session.purpose.value)
        return NextAction(
            reply=confirmation,
            outcome=Outcome(
                session_id=session.session_id,
                purpose=session.purpose,
                identity=session.identity,
                session_key=session_key,
            ),
        )

    def _log_failure(self, session: AuthSession, error: AuthError) -> None:
        if isinstance(error, InvalidCredentials):
            # no identity: a log line must not tell real and unknown users apart
            log.info("session_failed", session_id=session.session_id, error=type(error).__name__)
        else:
            log.warning(
                "session_failed",
                session_id=session.session_id,
                purpose=session.purpose.value,
                error=type(error).__name__,
                detail=str(error),
            )

    def purge_expired(self) -> int:
        """
        Drop sessions past their deadline. Ids are snapshotted first and then
        removed in batches so the table lock is never held for a full scan.
        Sessions busy advancing are skipped and picked up by a later sweep.
        """
        with self._lock:
            ids = list(self._sessions)

        removed = 0
        for start in range(0, len(ids), self.purge_batch):
            now = self._clock()
            with self._lock:
                for session_id in ids[start:start + self.purge_batch]:
                    session = self._sessions.get(session_id)
                    if session is None or session.expires_at > now:
                        continue
                    if not session.lock.acquire(blocking=False):
                        continue
                    try:
                        del self._sessions[session_id]
                        session.fail()
                    finally:
                        session.lock.release()
                    removed += 1
        if removed:
            log.debug("sessions_purged", count=removed, remaining=len(self._sessions))
        return removed
