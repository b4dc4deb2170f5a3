from __future__ import annotations

import secrets

from nacl.exceptions import CryptoError
from pydantic import BaseModel, ConfigDict

from crypto_utils import (
    MAC_SIZE,
    NONCE_SIZE,
    SecretBuffer,
    derive_keypair,
    generate_keypair,
    is_valid_element,
    mac_equal,
)
from pake import ake, envelope, oprf
from pake.client import DEFAULT_CONTEXT
from pake.envelope import ENVELOPE_SIZE
from pake.errors import InvalidCredentials, ProtocolViolation
from pake.messages import (
    AuthResult,
    CredentialFinalize,
    CredentialRequest,
    CredentialResponse,
    RegistrationRequest,
    RegistrationResponse,
    RegistrationUpload,
)
from pake.record import RegistrationRecord
from pake.server_setup import ServerSetup
from util import encode_vector


class ServerLoginState(BaseModel):
    expected_client_mac: SecretBuffer
    session_key: SecretBuffer
    genuine: bool
    consumed: bool = False

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def wipe(self) -> None:
        self.expected_client_mac.wipe()
        self.session_key.wipe()


class PakeServerEngine:
    """
    Server half of registration and login. It never sees the password and
    never touches storage: records go in and out as values.
    """

    def __init__(self, setup: ServerSetup, context: bytes = DEFAULT_CONTEXT) -> None:
        self.setup = setup
        self.context = context
        self.public_key = setup.public_key

    def _evaluate(self, identity: bytes, blinded_element: bytes) -> bytes:
        key = oprf.derive_key(self.setup.oprf_seed, identity)
        try:
            return oprf.evaluate(key, blinded_element)
        except CryptoError as e:
            raise ProtocolViolation("Blinded element is not a valid group element") from e

    def fake_record(self, identity: bytes) -> RegistrationRecord:
        """
        Record served for identities that are not registered. It depends only
        on the identity and the server setup, so repeated logins for the same
        unknown name see the same envelope, just as they would for a real user.
        """
        seed = self.setup.fake_record_seed
        _, client_public = derive_keypair(seed, b"FakeClientKey" + encode_vector(identity))
        return RegistrationRecord(
            client_public_key=client_public,
            server_public_key=self.public_key,
            envelope=envelope.fake_envelope(seed, identity),
        )

    def start_registration(self, request: RegistrationRequest, identity: bytes) -> RegistrationResponse:
        return RegistrationResponse(
            evaluated_element=self._evaluate(identity, request.blinded_element),
            server_public_key=self.public_key,
        )

    def finish_registration(self, upload: RegistrationUpload, identity: bytes) -> RegistrationRecord:
        if len(upload.envelope) != ENVELOPE_SIZE:
            raise ProtocolViolation(f"Envelope must be {ENVELOPE_SIZE} bytes")
        # the all-zero encoding is the identity element
        if not is_valid_element(upload.client_public_key) or not any(upload.client_public_key):
            raise ProtocolViolation("Client public key is not a valid group element")
        return RegistrationRecord(
            client_public_key=upload.client_public_key,
            server_public_key=self.public_key,
            envelope=upload.envelope,
        )

    def start_login(
        self, request: CredentialRequest, identity: bytes, record: RegistrationRecord | None
    ) -> tuple[CredentialResponse, ServerLoginState]:
        """
        Build the credential response. A missing record takes exactly the same
        path as a present one, with a fabricated record in its place.
        """
        fake = self.fake_record(identity)
        genuine = record is not None
        if record is None:
            record = fake

        evaluated = self._evaluate(identity, request.blinded_element)
        ephemeral_private, ephemeral_public = generate_keypair()
        unsigned = CredentialResponse(
            evaluated_element=evaluated,
            server_nonce=secrets.token_bytes(NONCE_SIZE),
            server_ephemeral_public=ephemeral_public,
            server_public_key=self.public_key,
            envelope=record.envelope,
            server_mac=bytes(MAC_SIZE),
        )

        with SecretBuffer(ephemeral_private) as ephemeral:
            try:
                ikm = ake.server_ikm(
                    self.setup.private_key,
                    ephemeral.reveal(),
                    record.client_public_key,
                    request.client_ephemeral_public,
                )
            except CryptoError as e:
                raise ProtocolViolation("Client ephemeral key is not a valid group element") from e

        preamble = ake.create_preamble(self.context, identity, request, self.public_key, unsigned)
        keys = ake.derive_keys(ikm, preamble)
        server_mac = ake.server_mac(keys, preamble)
        response = unsigned.model_copy(update={"server_mac": server_mac})

        state = ServerLoginState(
            expected_client_mac=SecretBuffer(ake.client_mac(keys, preamble, server_mac)),
            session_key=SecretBuffer(keys.session_key),
            genuine=genuine,
        )
        return response, state

    def finish_login(self, finalize: CredentialFinalize, state: ServerLoginState) -> tuple[bytes, AuthResult]:
        if state.consumed:
            raise ProtocolViolation("Server login state has already been used")
        state.consumed = True
        try:
            matches = mac_equal(state.expected_client_mac.reveal(), finalize.client_mac)
            if not (matches and state.genuine):
                raise InvalidCredentials()
            return state.session_key.reveal(), AuthResult()
        finally:
            state.wipe()
