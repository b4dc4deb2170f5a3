from __future__ import annotations

from typing import TypeVar

import structlog

from crypto_utils import SecretBuffer
from pake.client import PakeClientEngine
from pake.errors import ProtocolViolation, error_for_status
from pake.messages import (
    AuthResult,
    CredentialResponse,
    ProtocolMessage,
    RegistrationResponse,
)
from network.transport import Transport

log = structlog.get_logger(__name__)

M = TypeVar("M", bound=ProtocolMessage)


class AuthClient:
    """Runs client exchanges over an already connected transport."""

    def __init__(self, engine: PakeClientEngine, transport: Transport) -> None:
        self.engine = engine
        self.transport = transport

    async def _expect(self, message_type: type[M]) -> M:
        message = await self.transport.receive_message()
        if isinstance(message, AuthResult) and message_type is not AuthResult:
            # the server aborted the exchange and told us why
            raise error_for_status(message.status)
        if not isinstance(message, message_type):
            raise ProtocolViolation(f"Expected {message_type.__name__}, got {type(message).__name__}")
        return message

    async def _verdict(self) -> None:
        result = await self._expect(AuthResult)
        if not result.ok:
            raise error_for_status(result.status)

    async def register(self, identity: bytes, password: bytes | str | SecretBuffer) -> bytes:
        """Register identity; returns the export key."""
        request, state = self.engine.start_registration(password, identity)
        await self.transport.send_message(request)
        response = await self._expect(RegistrationResponse)
        upload, export_key = self.engine.finish_registration(response, state, identity)
        await self.transport.send_message(upload)
        await self._verdict()
        log.info("registered")
        return export_key

    async def login(self, identity: bytes, password: bytes | str | SecretBuffer) -> bytes:
        """Authenticate identity; returns the session key."""
        request, state = self.engine.start_login(password, identity)
        await self.transport.send_message(request)
        response = await self._expect(CredentialResponse)
        session_key, finalize = self.engine.finish_login(response, state, identity)
        await self.transport.send_message(finalize)
        await self._verdict()
        log.info("authenticated")
        return session_key

    async def delete(self, identity: bytes, password: bytes | str | SecretBuffer) -> None:
        """Authenticate against a /delete endpoint; the server drops the record."""
        await self.login(identity, password)

    async def rotate(
        self,
        identity: bytes,
        old_password: bytes | str | SecretBuffer,
        new_password: bytes | str | SecretBuffer,
    ) -> bytes:
        """Log in with the old password, then replace the record; returns the new export key."""
        await self.login(identity, old_password)
        return await self.register(identity, new_password)
