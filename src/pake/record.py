from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from crypto_utils import ELEMENT_SIZE
from pake.messages import Element, Envelope
from util import ByteReader, encode_vector

RECORD_VERSION = 1


class RegistrationRecord(BaseModel):
    """
    Per-user password file kept by the server.

    Serialized as version || client_public_key || server_public_key ||
    u16 len || envelope. Bytes after the envelope belong to later versions
    and are ignored when reading.
    """

    client_public_key: Element
    server_public_key: Element
    envelope: Envelope

    model_config = ConfigDict(frozen=True)

    def to_bytes(self) -> bytes:
        return (
            bytes([RECORD_VERSION])
            + self.client_public_key
            + self.server_public_key
            + encode_vector(self.envelope)
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> RegistrationRecord:
        reader = ByteReader(data)
        version = reader.take_byte()
        if version < RECORD_VERSION:
            raise ValueError(f"Unsupported record version {version}")
        return cls(
            client_public_key=reader.take(ELEMENT_SIZE),
            server_public_key=reader.take(ELEMENT_SIZE),
            envelope=reader.take_vector(),
        )
