from typing import TypeAlias

from cryptography.hazmat.primitives import constant_time, hashes
from cryptography.hazmat.primitives import hmac as crypto_hmac
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand
from nacl.encoding import RawEncoder
from nacl.exceptions import CryptoError
from nacl.hash import sha512
import pysodium

MAC: TypeAlias = bytes
Nonce: TypeAlias = bytes
Scalar: TypeAlias = bytes
Element: TypeAlias = bytes
SymmetricKey: TypeAlias = bytes

ELEMENT_SIZE = 32
SCALAR_SIZE = 32
HASH_SIZE = 64
MAC_SIZE = 64
NONCE_SIZE = 32


class SecretBuffer:
    """
    Mutable holder for secret bytes that is overwritten with zeros on exit.

    Use as a context manager or call wipe() explicitly; reading a wiped
    buffer raises ValueError so a cleared secret can never be used by accident.
    """

    def __init__(self, data: bytes | bytearray | str) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._buf = bytearray(data)
        self._wiped = False

    def __enter__(self) -> "SecretBuffer":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.wipe()

    def __len__(self) -> int:
        return len(self._buf)

    def __repr__(self) -> str:
        return f"SecretBuffer(<{len(self._buf)} bytes{', wiped' if self._wiped else ''}>)"

    @property
    def wiped(self) -> bool:
        return self._wiped

    def reveal(self) -> bytes:
        if self._wiped:
            raise ValueError("Secret has already been wiped")
        return bytes(self._buf)

    def wipe(self) -> None:
        for i in range(len(self._buf)):
            self._buf[i] = 0
        self._wiped = True


def hash(data: bytes) -> bytes:
    return sha512(data, encoder=RawEncoder)  # type: ignore


def hmac(payload: bytes, key: bytes) -> MAC:
    h = crypto_hmac.HMAC(key, hashes.SHA512())
    h.update(payload)
    return h.finalize()


def mac_equal(expected: MAC, received: MAC) -> bool:
    return constant_time.bytes_eq(expected, received)


def hkdf_extract(salt: bytes, ikm: bytes) -> bytes:
    # RFC 5869: an absent salt is a string of HashLen zeros
    return hmac(ikm, salt or bytes(HASH_SIZE))


def hkdf_expand(prk: bytes, info: bytes, length: int) -> bytes:
    return HKDFExpand(algorithm=hashes.SHA512(), length=length, info=info).derive(prk)


def expand_label(secret: bytes, label: bytes, context: bytes, length: int) -> bytes:
    info = (
        length.to_bytes(2, "big")
        + len(b"OPAQUE-" + label).to_bytes(1, "big") + b"OPAQUE-" + label
        + len(context).to_bytes(1, "big") + context
    )
    return hkdf_expand(secret, info, length)


def random_scalar() -> Scalar:
    scalar: Scalar = pysodium.crypto_core_ristretto255_scalar_random()
    return scalar


def derive_scalar(seed: bytes, info: bytes) -> Scalar:
    """
    Deterministically map a seed to a non-zero scalar
    """
    counter = 0
    while True:
        wide = hkdf_expand(seed, info + counter.to_bytes(1, "big"), 64)
        scalar: Scalar = pysodium.crypto_core_ristretto255_scalar_reduce(wide)
        if any(scalar):
            return scalar
        counter += 1


def invert_scalar(scalar: Scalar) -> Scalar:
    try:
        inverse: Scalar = pysodium.crypto_core_ristretto255_scalar_invert(scalar)
    except ValueError as e:
        raise CryptoError("Scalar has no inverse") from e
    return inverse


def hash_to_group(data: bytes, dst: bytes) -> Element:
    uniform = hash(len(dst).to_bytes(1, "big") + dst + data)
    element: Element = pysodium.crypto_core_ristretto255_from_hash(uniform)
    return element


def is_valid_element(element: bytes) -> bool:
    if len(element) != ELEMENT_SIZE:
        return False
    return bool(pysodium.crypto_core_ristretto255_is_valid_point(bytes(element)))


def scalar_mult(scalar: Scalar, element: Element) -> Element:
    if not is_valid_element(element):
        raise CryptoError("Not a valid ristretto255 element")
    try:
        product: Element = pysodium.crypto_scalarmult_ristretto255(scalar, element)
    except ValueError as e:
        # libsodium refuses a result equal to the identity element
        raise CryptoError("Scalar multiplication failed") from e
    return product


def scalar_mult_base(scalar: Scalar) -> Element:
    try:
        element: Element = pysodium.crypto_scalarmult_ristretto255_base(scalar)
    except ValueError as e:
        raise CryptoError("Scalar multiplication failed") from e
    return element


def generate_keypair() -> tuple[Scalar, Element]:
    private = random_scalar()
    return private, scalar_mult_base(private)


def derive_keypair(seed: bytes, info: bytes) -> tuple[Scalar, Element]:
    private = derive_scalar(seed, info)
    return private, scalar_mult_base(private)


def diffie_hellman(private: Scalar, peer_public: Element) -> bytes:
    return scalar_mult(private, peer_public)
