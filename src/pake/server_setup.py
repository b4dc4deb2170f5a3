from __future__ import annotations

import os
import secrets
from pathlib import Path

import structlog
from nacl.exceptions import CryptoError
from pydantic import BaseModel, ConfigDict, Field

from crypto_utils import HASH_SIZE, SCALAR_SIZE, is_valid_element, random_scalar, scalar_mult_base
from pake.errors import StorageError
from util import ByteReader

SETUP_VERSION = 1

log = structlog.get_logger(__name__)


class ServerSetup(BaseModel):
    """
    Long-term server secrets: the global OPRF seed from which per-user OPRF
    keys are derived, the static AKE key pair, and the seed used to fabricate
    records for unknown users.
    """

    oprf_seed: bytes = Field(..., min_length=HASH_SIZE, max_length=HASH_SIZE)
    private_key: bytes = Field(..., min_length=SCALAR_SIZE, max_length=SCALAR_SIZE)
    fake_record_seed: bytes = Field(..., min_length=HASH_SIZE, max_length=HASH_SIZE)

    model_config = ConfigDict(frozen=True)

    @property
    def public_key(self) -> bytes:
        return scalar_mult_base(self.private_key)

    @classmethod
    def generate(cls) -> ServerSetup:
        return cls(
            oprf_seed=secrets.token_bytes(HASH_SIZE),
            private_key=random_scalar(),
            fake_record_seed=secrets.token_bytes(HASH_SIZE),
        )

    def to_bytes(self) -> bytes:
        return bytes([SETUP_VERSION]) + self.oprf_seed + self.private_key + self.fake_record_seed

    @classmethod
    def from_bytes(cls, data: bytes) -> ServerSetup:
        reader = ByteReader(data)
        version = reader.take_byte()
        if version != SETUP_VERSION:
            raise ValueError(f"Unsupported server setup version {version}")
        setup = cls(
            oprf_seed=reader.take(HASH_SIZE),
            private_key=reader.take(SCALAR_SIZE),
            fake_record_seed=reader.take(HASH_SIZE),
        )
        try:
            valid = is_valid_element(setup.public_key)
        except CryptoError:
            valid = False
        if not valid:
            raise ValueError("Server private key does not yield a valid public key")
        return setup

    @classmethod
    def load_or_create(cls, path: Path) -> ServerSetup:
        """
        Read the setup from path, creating it with owner-only permissions on
        first start. A setup that exists but cannot be parsed is never replaced.
        """
        try:
            if path.exists():
                return cls.from_bytes(path.read_bytes())

            setup = cls.generate()
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(setup.to_bytes())
            log.info("server_setup_created", path=str(path))
            return setup
        except OSError as e:
            raise StorageError(f"Cannot access server setup at {path}: {e}") from e
        except ValueError as e:
            raise StorageError(f"Corrupt server setup at {path}") from e
