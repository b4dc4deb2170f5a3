import secrets
import unittest

from parameterized import parameterized

from pake.errors import ProtocolViolation
from pake.messages import (
    AuthResult,
    CredentialFinalize,
    CredentialRequest,
    CredentialResponse,
    ProtocolMessage,
    RegistrationRequest,
    RegistrationResponse,
    RegistrationUpload,
)
from pake.record import RECORD_VERSION, RegistrationRecord


def rand(n: int) -> bytes:
    return secrets.token_bytes(n)


SAMPLES = [
    ("registration_request", RegistrationRequest(identity=b"alice", blinded_element=rand(32))),
    ("registration_response", RegistrationResponse(evaluated_element=rand(32), server_public_key=rand(32))),
    ("registration_upload", RegistrationUpload(client_public_key=rand(32), envelope=rand(72))),
    (
        "credential_request",
        CredentialRequest(
            identity=b"alice",
            blinded_element=rand(32),
            client_nonce=rand(32),
            client_ephemeral_public=rand(32),
        ),
    ),
    (
        "credential_response",
        CredentialResponse(
            evaluated_element=rand(32),
            server_nonce=rand(32),
            server_ephemeral_public=rand(32),
            server_public_key=rand(32),
            envelope=rand(72),
            server_mac=rand(64),
        ),
    ),
    ("credential_finalize", CredentialFinalize(client_mac=rand(64))),
    ("auth_result_ok", AuthResult()),
    ("auth_result_error", AuthResult(status=0x01)),
]


class TestMessageEncoding(unittest.TestCase):
    @parameterized.expand(SAMPLES)
    def test_round_trip(self, _name: str, message: ProtocolMessage) -> None:
        encoded = message.to_bytes()
        self.assertEqual(encoded[0], message.TAG)
        self.assertEqual(ProtocolMessage.from_bytes(encoded), message)

    @parameterized.expand(SAMPLES)
    def test_truncated(self, _name: str, message: ProtocolMessage) -> None:
        with self.assertRaises(ProtocolViolation):
            ProtocolMessage.from_bytes(message.to_bytes()[:-1])

    @parameterized.expand(SAMPLES)
    def test_trailing_bytes(self, _name: str, message: ProtocolMessage) -> None:
        with self.assertRaises(ProtocolViolation):
            ProtocolMessage.from_bytes(message.to_bytes() + b"\x00")

    def test_registration_request_layout(self) -> None:
        element = rand(32)
        encoded = RegistrationRequest(identity=b"bob", blinded_element=element).to_bytes()
        self.assertEqual(encoded, b"\x01\x00\x03bob" + element)

    def test_preamble_excludes_mac(self) -> None:
        _, response = SAMPLES[4]
        assert isinstance(response, CredentialResponse)
        self.assertEqual(response.preamble_bytes() + response.server_mac, response.to_bytes())

    @parameterized.expand([
        ("empty", b""),
        ("unknown_tag", b"\x42" + bytes(64)),
        ("empty_identity", b"\x01\x00\x00" + bytes(32)),
        ("short_element", b"\x02" + bytes(63)),
    ])
    def test_malformed(self, _name: str, data: bytes) -> None:
        with self.assertRaises(ProtocolViolation):
            ProtocolMessage.from_bytes(data)

    def test_messages_are_immutable(self) -> None:
        message = CredentialFinalize(client_mac=rand(64))
        with self.assertRaises(ValueError):
            message.client_mac = rand(64)  # type: ignore

    def test_auth_result_ok(self) -> None:
        self.assertTrue(AuthResult().ok)
        self.assertFalse(AuthResult(status=0x04).ok)


class TestRegistrationRecord(unittest.TestCase):
    def setUp(self) -> None:
        self.record = RegistrationRecord(client_public_key=rand(32), server_public_key=rand(32), envelope=rand(72))

    def test_round_trip(self) -> None:
        encoded = self.record.to_bytes()
        self.assertEqual(encoded[0], RECORD_VERSION)
        self.assertEqual(RegistrationRecord.from_bytes(encoded), self.record)

    def test_newer_versions_readable(self) -> None:
        encoded = bytes([RECORD_VERSION + 1]) + self.record.to_bytes()[1:] + b"future field"
        self.assertEqual(RegistrationRecord.from_bytes(encoded), self.record)

    @parameterized.expand([
        ("version_zero", lambda raw: b"\x00" + raw[1:]),
        ("truncated", lambda raw: raw[:40]),
        ("empty", lambda raw: b""),
    ])
    def test_rejects(self, _name: str, mangle: object) -> None:
        assert callable(mangle)
        with self.assertRaises(ValueError):
            RegistrationRecord.from_bytes(mangle(self.record.to_bytes()))
