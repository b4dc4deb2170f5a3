from __future__ import annotations

import secrets

from nacl.exceptions import CryptoError
from pydantic import BaseModel, ConfigDict

from crypto_utils import NONCE_SIZE, SecretBuffer, generate_keypair, mac_equal
from pake import ake, envelope, oprf
from pake.envelope import Ksf
from pake.errors import InvalidCredentials, ProtocolViolation
from pake.messages import (
    CredentialFinalize,
    CredentialRequest,
    CredentialResponse,
    RegistrationRequest,
    RegistrationResponse,
    RegistrationUpload,
)

DEFAULT_CONTEXT = b"opaque-auth"


class ClientState(BaseModel):
    """
    Secret continuation of an exchange. Every secret lives in a SecretBuffer
    that is wiped once the state is consumed, whether or not finishing succeeds.
    """

    password: SecretBuffer
    blind: SecretBuffer
    identity: bytes
    consumed: bool = False

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def consume(self) -> None:
        if self.consumed:
            raise ProtocolViolation("Client state has already been used")
        self.consumed = True

    def wipe(self) -> None:
        for value in self.__dict__.values():
            if isinstance(value, SecretBuffer):
                value.wipe()


class ClientRegState(ClientState):
    request: RegistrationRequest


class ClientLoginState(ClientState):
    request: CredentialRequest
    ephemeral_private: SecretBuffer


class PakeClientEngine:
    def __init__(self, ksf: Ksf = Ksf.IDENTITY, context: bytes = DEFAULT_CONTEXT) -> None:
        self.ksf = ksf
        self.context = context

    def _blind(self, password: bytes | str | SecretBuffer) -> tuple[SecretBuffer, SecretBuffer, bytes]:
        if not isinstance(password, SecretBuffer):
            password = SecretBuffer(password)
        blind, blinded_element = oprf.blind(password.reveal())
        return password, SecretBuffer(blind), blinded_element

    def _randomized_password(self, state: ClientState, evaluated_element: bytes) -> SecretBuffer:
        try:
            output = oprf.finalize(state.password.reveal(), state.blind.reveal(), evaluated_element)
        except CryptoError as e:
            raise ProtocolViolation("Server returned an invalid evaluated element") from e
        finally:
            state.password.wipe()
            state.blind.wipe()
        return SecretBuffer(envelope.randomized_password(output, self.ksf))

    def start_registration(
        self, password: bytes | str | SecretBuffer, identity: bytes
    ) -> tuple[RegistrationRequest, ClientRegState]:
        secret, blind, blinded_element = self._blind(password)
        request = RegistrationRequest(identity=identity, blinded_element=blinded_element)
        return request, ClientRegState(password=secret, blind=blind, identity=identity, request=request)

    def finish_registration(
        self, response: RegistrationResponse, state: ClientRegState, identity: bytes
    ) -> tuple[RegistrationUpload, bytes]:
        """
        Seal a fresh static key pair into the envelope. Returns the upload and
        the export key, which stays on the client.
        """
        state.consume()
        try:
            if identity != state.identity:
                raise ProtocolViolation("Identity differs from the one registration started with")
            with self._randomized_password(state, response.evaluated_element) as rwd:
                client_private, client_public = generate_keypair()
                sealed = envelope.seal(rwd.reveal(), response.server_public_key, identity, client_private)
                export_key = envelope.export_key(rwd.reveal(), response.server_public_key, identity)
            return RegistrationUpload(client_public_key=client_public, envelope=sealed), export_key
        finally:
            state.wipe()

    def start_login(
        self, password: bytes | str | SecretBuffer, identity: bytes
    ) -> tuple[CredentialRequest, ClientLoginState]:
        secret, blind, blinded_element = self._blind(password)
        ephemeral_private, ephemeral_public = generate_keypair()
        request = CredentialRequest(
            identity=identity,
            blinded_element=blinded_element,
            client_nonce=secrets.token_bytes(NONCE_SIZE),
            client_ephemeral_public=ephemeral_public,
        )
        state = ClientLoginState(
            password=secret,
            blind=blind,
            identity=identity,
            request=request,
            ephemeral_private=SecretBuffer(ephemeral_private),
        )
        return request, state

    def finish_login(
        self, response: CredentialResponse, state: ClientLoginState, identity: bytes
    ) -> tuple[bytes, CredentialFinalize]:
        """
        Recover the static key from the envelope, run 3DH and check the server
        MAC. Returns the session key and the client's key confirmation.
        """
        state.consume()
        try:
            if identity != state.identity:
                raise ProtocolViolation("Identity differs from the one login started with")
            with self._randomized_password(state, response.evaluated_element) as rwd:
                client_private, _ = envelope.open_envelope(
                    rwd.reveal(), response.server_public_key, identity, response.envelope
                )

            with SecretBuffer(client_private) as private:
                try:
                    ikm = ake.client_ikm(
                        private.reveal(),
                        state.ephemeral_private.reveal(),
                        response.server_public_key,
                        response.server_ephemeral_public,
                    )
                except CryptoError as e:
                    raise InvalidCredentials() from e

            preamble = ake.create_preamble(
                self.context, identity, state.request, response.server_public_key, response
            )
            keys = ake.derive_keys(ikm, preamble)
            if not mac_equal(ake.server_mac(keys, preamble), response.server_mac):
                raise InvalidCredentials()

            finalize = CredentialFinalize(client_mac=ake.client_mac(keys, preamble, response.server_mac))
            return keys.session_key, finalize
        finally:
            state.wipe()
