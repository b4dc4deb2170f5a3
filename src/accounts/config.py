from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Self

from pydantic import BaseModel, ConfigDict, Field

from pake.envelope import Ksf

ENV_PREFIX = "OPAQUE_AUTH_"


class BaseConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: object) -> Self:
        """
        Build the config from OPAQUE_AUTH_<FIELD> variables. Explicit
        overrides (usually CLI flags) win; None overrides are ignored.
        """
        environ = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for name in cls.model_fields:
            key = ENV_PREFIX + name.upper()
            if key in environ:
                values[name] = environ[key]
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class PolicyConfig(BaseConfig):
    groups: int = Field(default=6, ge=1, le=32)
    group_size: int = Field(default=5, ge=1, le=32)
    min_entropy_bits: float = Field(default=80.0, gt=0)


class ServerConfig(BaseConfig):
    host: str = "127.0.0.1"
    port: int = Field(default=6969, ge=0, le=65535)
    session_ttl: float = Field(default=60.0, gt=0)
    purge_interval: float = Field(default=5.0, gt=0)
    purge_batch: int = Field(default=256, ge=1)
    store_path: Path | None = None
    setup_path: Path = Path("server_setup.bin")
    log_level: str = "info"


class ClientConfig(BaseConfig):
    url: str = "ws://127.0.0.1:6969"
    ksf: Ksf = Ksf.IDENTITY
    timeout: float = Field(default=30.0, gt=0)
    log_level: str = "warning"
