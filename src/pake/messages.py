from __future__ import annotations

from typing import Annotated, Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field

from crypto_utils import ELEMENT_SIZE, MAC_SIZE, NONCE_SIZE
from pake.errors import STATUS_OK, ProtocolViolation
from util import ByteReader, encode_vector

MAX_IDENTITY_SIZE = 255
MAX_ENVELOPE_SIZE = 1024

# Layout marker for a u16 length-prefixed field
VARIABLE = None

Identity = Annotated[bytes, Field(min_length=1, max_length=MAX_IDENTITY_SIZE)]
Element = Annotated[bytes, Field(min_length=ELEMENT_SIZE, max_length=ELEMENT_SIZE)]
Nonce = Annotated[bytes, Field(min_length=NONCE_SIZE, max_length=NONCE_SIZE)]
Mac = Annotated[bytes, Field(min_length=MAC_SIZE, max_length=MAC_SIZE)]
Envelope = Annotated[bytes, Field(min_length=1, max_length=MAX_ENVELOPE_SIZE)]


class ProtocolMessage(BaseModel):
    """
    Base of every wire message.

    A message is encoded as a one-byte tag followed by the fields named in
    LAYOUT, in order. Fixed-size fields are written raw; VARIABLE fields carry
    a big-endian u16 length prefix.
    """

    TAG: ClassVar[int]
    LAYOUT: ClassVar[tuple[tuple[str, int | None], ...]]

    model_config = ConfigDict(frozen=True)

    def _encode_fields(self, layout: tuple[tuple[str, int | None], ...] | None = None) -> bytes:
        out = b""
        for name, size in layout if layout is not None else self.LAYOUT:
            value: bytes = getattr(self, name)
            out += encode_vector(value) if size is VARIABLE else value
        return out

    @classmethod
    def _decode_fields(cls, reader: ByteReader) -> dict[str, Any]:
        return {
            name: reader.take_vector() if size is VARIABLE else reader.take(size)
            for name, size in cls.LAYOUT
        }

    def to_bytes(self) -> bytes:
        return bytes([self.TAG]) + self._encode_fields()

    @staticmethod
    def from_bytes(data: bytes) -> ProtocolMessage:
        if not data:
            raise ProtocolViolation("Empty message")
        cls = MESSAGE_TYPES.get(data[0])
        if cls is None:
            raise ProtocolViolation(f"Unknown message tag {data[0]:#04x}")

        reader = ByteReader(data[1:])
        try:
            fields = cls._decode_fields(reader)
            reader.expect_end()
            return cls(**fields)
        except ValueError as e:
            # pydantic.ValidationError is a ValueError too
            raise ProtocolViolation(f"Malformed {cls.__name__}") from e


class RegistrationRequest(ProtocolMessage):
    """Client -> server: identity and the blinded password element"""

    TAG = 0x01
    LAYOUT = (("identity", VARIABLE), ("blinded_element", ELEMENT_SIZE))

    identity: Identity
    blinded_element: Element


class RegistrationResponse(ProtocolMessage):
    """Server -> client: OPRF evaluation and the server's static public key"""

    TAG = 0x02
    LAYOUT = (("evaluated_element", ELEMENT_SIZE), ("server_public_key", ELEMENT_SIZE))

    evaluated_element: Element
    server_public_key: Element


class RegistrationUpload(ProtocolMessage):
    """Client -> server: client's static public key and its sealed envelope"""

    TAG = 0x03
    LAYOUT = (("client_public_key", ELEMENT_SIZE), ("envelope", VARIABLE))

    client_public_key: Element
    envelope: Envelope


class CredentialRequest(ProtocolMessage):
    """Client -> server: blinded element plus the client's AKE share"""

    TAG = 0x04
    LAYOUT = (
        ("identity", VARIABLE),
        ("blinded_element", ELEMENT_SIZE),
        ("client_nonce", NONCE_SIZE),
        ("client_ephemeral_public", ELEMENT_SIZE),
    )

    identity: Identity
    blinded_element: Element
    client_nonce: Nonce
    client_ephemeral_public: Element


class CredentialResponse(ProtocolMessage):
    """Server -> client: OPRF evaluation, envelope and the server's AKE share"""

    TAG = 0x05
    LAYOUT = (
        ("evaluated_element", ELEMENT_SIZE),
        ("server_nonce", NONCE_SIZE),
        ("server_ephemeral_public", ELEMENT_SIZE),
        ("server_public_key", ELEMENT_SIZE),
        ("envelope", VARIABLE),
        ("server_mac", MAC_SIZE),
    )

    evaluated_element: Element
    server_nonce: Nonce
    server_ephemeral_public: Element
    server_public_key: Element
    envelope: Envelope
    server_mac: Mac

    def preamble_bytes(self) -> bytes:
        """Encoding of every field the server MAC covers"""
        return bytes([self.TAG]) + self._encode_fields(self.LAYOUT[:-1])


class CredentialFinalize(ProtocolMessage):
    """Client -> server: key confirmation cA"""

    TAG = 0x06
    LAYOUT = (("client_mac", MAC_SIZE),)

    client_mac: Mac


class AuthResult(ProtocolMessage):
    """Server -> client: final verdict of an exchange"""

    TAG = 0x07
    LAYOUT = ()

    status: int = Field(default=STATUS_OK, ge=0, le=0xFF)

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    def _encode_fields(self, layout: tuple[tuple[str, int | None], ...] | None = None) -> bytes:
        return bytes([self.status])

    @classmethod
    def _decode_fields(cls, reader: ByteReader) -> dict[str, Any]:
        return {"status": reader.take_byte()}


MESSAGE_TYPES: dict[int, type[ProtocolMessage]] = {
    cls.TAG: cls
    for cls in (
        RegistrationRequest,
        RegistrationResponse,
        RegistrationUpload,
        CredentialRequest,
        CredentialResponse,
        CredentialFinalize,
        AuthResult,
    )
}
