import asyncio
import unittest

from network.transport import memory_pipe
from pake.errors import ProtocolViolation, TransportError
from pake.messages import AuthResult


class TestMemoryTransport(unittest.TestCase):
    def test_ordered_delivery(self) -> None:
        async def scenario() -> list[bytes]:
            client, server = memory_pipe()
            for chunk in (b"one", b"two", b"three"):
                await client.send(chunk)
            return [await server.receive() for _ in range(3)]

        self.assertEqual(asyncio.run(scenario()), [b"one", b"two", b"three"])

    def test_messages(self) -> None:
        async def scenario() -> object:
            client, server = memory_pipe()
            await server.send_message(AuthResult(status=0x04))
            return await client.receive_message()

        self.assertEqual(asyncio.run(scenario()), AuthResult(status=0x04))

    def test_malformed_message(self) -> None:
        async def scenario() -> None:
            client, server = memory_pipe()
            await client.send(b"\x99")
            await server.receive_message()

        with self.assertRaises(ProtocolViolation):
            asyncio.run(scenario())

    def test_peer_close_wakes_receiver(self) -> None:
        async def scenario() -> None:
            client, server = memory_pipe()
            pending = asyncio.create_task(server.receive())
            await asyncio.sleep(0)
            await client.close()
            await pending

        with self.assertRaises(TransportError):
            asyncio.run(scenario())

    def test_send_after_close(self) -> None:
        async def scenario() -> None:
            client, server = memory_pipe()
            await server.close()
            await client.send(b"late")

        with self.assertRaises(TransportError):
            asyncio.run(scenario())

    def test_close_is_idempotent(self) -> None:
        async def scenario() -> bool:
            client, _ = memory_pipe()
            await client.close()
            await client.close()
            return client.closed

        self.assertTrue(asyncio.run(scenario()))
