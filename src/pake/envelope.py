from enum import Enum

from nacl import pwhash
from nacl.exceptions import CryptoError
from nacl.secret import SecretBox
from nacl.utils import random as random_bytes

from crypto_utils import SCALAR_SIZE, Element, Scalar, hkdf_expand, hkdf_extract, scalar_mult_base
from pake.errors import InvalidCredentials
from util import encode_vector

EXPORT_KEY_SIZE = 64
ENVELOPE_SIZE = SecretBox.NONCE_SIZE + SecretBox.MACBYTES + SCALAR_SIZE


class Ksf(str, Enum):
    """Key stretching applied to the OPRF output before deriving envelope keys"""

    IDENTITY = "identity"
    ARGON2ID = "argon2id"


def stretch(oprf_output: bytes, ksf: Ksf) -> bytes:
    if ksf is Ksf.IDENTITY:
        return oprf_output
    salt = bytes([0] * pwhash.argon2id.SALTBYTES)  # the OPRF output is already unique per user
    result: bytes = pwhash.argon2id.kdf(
        len(oprf_output),
        oprf_output,
        salt,
        opslimit=pwhash.argon2id.OPSLIMIT_INTERACTIVE,
        memlimit=pwhash.argon2id.MEMLIMIT_INTERACTIVE,
    )
    return result


def randomized_password(oprf_output: bytes, ksf: Ksf) -> bytes:
    return hkdf_extract(b"", oprf_output + stretch(oprf_output, ksf))


def _info(label: bytes, server_public_key: Element, identity: bytes) -> bytes:
    return label + encode_vector(server_public_key) + encode_vector(identity)


def export_key(rwd: bytes, server_public_key: Element, identity: bytes) -> bytes:
    return hkdf_expand(rwd, _info(b"ExportKey", server_public_key, identity), EXPORT_KEY_SIZE)


def _seal_key(rwd: bytes, server_public_key: Element, identity: bytes) -> bytes:
    return hkdf_expand(rwd, _info(b"EnvelopeKey", server_public_key, identity), SecretBox.KEY_SIZE)


def seal(rwd: bytes, server_public_key: Element, identity: bytes, client_private_key: Scalar) -> bytes:
    """
    Encrypt the client's static private key under a key only the password
    holder can derive. The server key and identity are bound into the key so
    an envelope cannot be replayed against another server or account.
    """
    box = SecretBox(_seal_key(rwd, server_public_key, identity))
    return bytes(box.encrypt(client_private_key, random_bytes(SecretBox.NONCE_SIZE)))


def open_envelope(rwd: bytes, server_public_key: Element, identity: bytes, envelope: bytes) -> tuple[Scalar, Element]:
    box = SecretBox(_seal_key(rwd, server_public_key, identity))
    try:
        private_key: Scalar = box.decrypt(envelope)
        public_key = scalar_mult_base(private_key)
    except CryptoError as e:
        raise InvalidCredentials() from e
    return private_key, public_key


def fake_envelope(seed: bytes, identity: bytes) -> bytes:
    """Deterministic stand-in with the exact size of a real envelope"""
    return hkdf_expand(seed, b"FakeEnvelope" + encode_vector(identity), ENVELOPE_SIZE)
