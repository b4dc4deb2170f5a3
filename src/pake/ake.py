from crypto_utils import (
    HASH_SIZE,
    MAC,
    Element,
    Scalar,
    diffie_hellman,
    expand_label,
    hash,
    hkdf_extract,
    hmac,
)
from pake.messages import CredentialRequest, CredentialResponse
from util import encode_vector

PROTOCOL_LABEL = b"OPAQUEv1-"
SESSION_KEY_SIZE = HASH_SIZE


class KeySet:
    """Keys derived from the 3DH transcript"""

    def __init__(self, session_key: bytes, km2: bytes, km3: bytes):
        self.session_key = session_key  # Shared session key
        self.km2 = km2  # Server MAC key
        self.km3 = km3  # Client MAC key


def create_preamble(
    context: bytes,
    client_identity: bytes,
    request: CredentialRequest,
    server_identity: bytes,
    response: CredentialResponse,
) -> bytes:
    """
    Transcript both parties authenticate (RFC 9807 Section 6.4.1)

    preamble = "OPAQUEv1-" || len(context) || context
             || len(client_identity) || client_identity
             || ke1
             || len(server_identity) || server_identity
             || ke2 without the server MAC
    """
    return (
        PROTOCOL_LABEL
        + encode_vector(context)
        + encode_vector(client_identity)
        + request.to_bytes()
        + encode_vector(server_identity)
        + response.preamble_bytes()
    )


def client_ikm(
    client_private: Scalar, client_ephemeral: Scalar, server_public: Element, server_ephemeral_public: Element
) -> bytes:
    return (
        diffie_hellman(client_ephemeral, server_ephemeral_public)
        + diffie_hellman(client_ephemeral, server_public)
        + diffie_hellman(client_private, server_ephemeral_public)
    )


def server_ikm(
    server_private: Scalar, server_ephemeral: Scalar, client_public: Element, client_ephemeral_public: Element
) -> bytes:
    return (
        diffie_hellman(server_ephemeral, client_ephemeral_public)
        + diffie_hellman(server_private, client_ephemeral_public)
        + diffie_hellman(server_ephemeral, client_public)
    )


def derive_keys(ikm: bytes, preamble: bytes) -> KeySet:
    """
    DeriveKeys from RFC 9807 Section 6.4.2
    """
    prk = hkdf_extract(b"", ikm)
    preamble_hash = hash(preamble)
    handshake_secret = expand_label(prk, b"HandshakeSecret", preamble_hash, HASH_SIZE)
    session_key = expand_label(prk, b"SessionKey", preamble_hash, SESSION_KEY_SIZE)
    return KeySet(
        session_key=session_key,
        km2=expand_label(handshake_secret, b"ServerMAC", b"", HASH_SIZE),
        km3=expand_label(handshake_secret, b"ClientMAC", b"", HASH_SIZE),
    )


def server_mac(keys: KeySet, preamble: bytes) -> MAC:
    return hmac(hash(preamble), keys.km2)


def client_mac(keys: KeySet, preamble: bytes, server_mac_value: MAC) -> MAC:
    return hmac(hash(preamble + server_mac_value), keys.km3)
