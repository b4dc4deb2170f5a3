from crypto_utils import (
    Element,
    Scalar,
    derive_scalar,
    hash,
    hash_to_group,
    invert_scalar,
    random_scalar,
    scalar_mult,
)
from util import encode_vector

CONTEXT = b"OPRFV1-\x00-ristretto255-SHA512"
HASH_TO_GROUP_DST = b"HashToGroup-" + CONTEXT


def derive_key(oprf_seed: bytes, identity: bytes) -> Scalar:
    """
    Per-identity OPRF key derived from the server-wide seed, so the server
    keeps a single long-term secret (RFC 9807 Section 4.1.2, DeriveKeyPair)
    """
    return derive_scalar(oprf_seed, b"OprfKey" + encode_vector(identity))


def blind(password: bytes) -> tuple[Scalar, Element]:
    """
    Blind(input) from RFC 9497 Section 3.3.1: returns the blinding scalar and
    blind * HashToGroup(input)
    """
    r = random_scalar()
    return r, scalar_mult(r, hash_to_group(password, HASH_TO_GROUP_DST))


def evaluate(key: Scalar, blinded_element: Element) -> Element:
    return scalar_mult(key, blinded_element)


def finalize(password: bytes, blind_scalar: Scalar, evaluated_element: Element) -> bytes:
    """
    Finalize from RFC 9497 Section 3.3.1: unblind the evaluation and hash it
    together with the input
    """
    unblinded = scalar_mult(invert_scalar(blind_scalar), evaluated_element)
    return hash(encode_vector(password) + encode_vector(unblinded) + b"Finalize")
