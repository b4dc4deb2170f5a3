from __future__ import annotations

import asyncio
import contextlib

import structlog
from websockets.asyncio.server import ServerConnection, serve

from accounts.config import ServerConfig
from accounts.sessions import Outcome, Purpose, SessionManager
from pake.errors import AuthError, SessionExpired, TransportError
from pake.messages import AuthResult
from network.transport import MAX_FRAME_SIZE, Transport, WebSocketTransport

log = structlog.get_logger(__name__)

ROUTES: dict[str, Purpose] = {
    "/register": Purpose.REGISTER,
    "/login": Purpose.LOGIN,
    "/delete": Purpose.DELETE,
}
ROTATE_ROUTE = "/rotate"


class AuthServer:
    """
    Drives SessionManager over transports: one session per exchange, each
    message handed to advance() as it arrives.
    """

    def __init__(self, manager: SessionManager, config: ServerConfig) -> None:
        self.manager = manager
        self.config = config

    async def handle(
        self, transport: Transport, purpose: Purpose, bound_identity: bytes | None = None
    ) -> Outcome | None:
        """
        Run one exchange to completion. Returns the outcome on success and
        None on failure; failures other than transport loss are reported to
        the peer with an AuthResult before returning.
        """
        session = self.manager.create(purpose, bound_identity)
        try:
            while True:
                try:
                    message = await asyncio.wait_for(transport.receive_message(), self.config.session_ttl)
                except asyncio.TimeoutError:
                    raise SessionExpired("No message within the session TTL") from None
                action = self.manager.advance(session.session_id, message)
                if action.reply is not None:
                    await transport.send_message(action.reply)
                if action.outcome is not None:
                    return action.outcome
        except TransportError as e:
            log.info("connection_lost", session_id=session.session_id, error=str(e))
            return None
        except AuthError as e:
            with contextlib.suppress(TransportError):
                await transport.send_message(AuthResult(status=e.status))
            return None
        finally:
            self.manager.discard(session.session_id)

    async def rotate(self, transport: Transport) -> Outcome | None:
        """Log in, then re-register the same identity on the same connection."""
        login = await self.handle(transport, Purpose.LOGIN)
        if login is None:
            return None
        return await self.handle(transport, Purpose.REPLACE, bound_identity=login.identity)

    async def serve_connection(self, transport: Transport, path: str) -> Outcome | None:
        try:
            if path == ROTATE_ROUTE:
                return await self.rotate(transport)
            purpose = ROUTES.get(path)
            if purpose is None:
                log.warning("unknown_route", path=path)
                return None
            return await self.handle(transport, purpose)
        finally:
            await transport.close()

    async def _on_websocket(self, connection: ServerConnection) -> None:
        await self.serve_connection(WebSocketTransport(connection), connection.request.path)

    async def purge_loop(self) -> None:
        while True:
            await asyncio.sleep(min(self.config.purge_interval, self.config.session_ttl))
            self.manager.purge_expired()

    async def serve_forever(self) -> None:
        purger = asyncio.create_task(self.purge_loop())
        try:
            async with serve(
                self._on_websocket, self.config.host, self.config.port, max_size=MAX_FRAME_SIZE
            ) as server:
                log.info("server_listening", host=self.config.host, port=self.config.port)
                await server.serve_forever()
        finally:
            purger.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await purger
