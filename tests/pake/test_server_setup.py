import os
import stat
from pathlib import Path

import pytest

from crypto_utils import is_valid_element
from pake.errors import StorageError
from pake.server_setup import SETUP_VERSION, ServerSetup


class TestServerSetup:
    def test_round_trip(self) -> None:
        setup = ServerSetup.generate()
        restored = ServerSetup.from_bytes(setup.to_bytes())
        assert restored == setup
        assert is_valid_element(restored.public_key)

    def test_generate_is_random(self) -> None:
        assert ServerSetup.generate().oprf_seed != ServerSetup.generate().oprf_seed

    def test_unknown_version(self) -> None:
        raw = ServerSetup.generate().to_bytes()
        with pytest.raises(ValueError):
            ServerSetup.from_bytes(bytes([SETUP_VERSION + 1]) + raw[1:])

    def test_zero_private_key_rejected(self) -> None:
        raw = ServerSetup.generate().to_bytes()
        with pytest.raises(ValueError):
            ServerSetup.from_bytes(raw[:65] + bytes(32) + raw[97:])

    def test_created_on_first_start(self, tmp_path: Path) -> None:
        path = tmp_path / "setup.bin"
        created = ServerSetup.load_or_create(path)
        assert path.exists()
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert ServerSetup.load_or_create(path) == created

    def test_corrupt_file_is_kept(self, tmp_path: Path) -> None:
        path = tmp_path / "setup.bin"
        path.write_bytes(b"\x01garbage")
        with pytest.raises(StorageError):
            ServerSetup.load_or_create(path)
        assert path.read_bytes() == b"\x01garbage"

    def test_unwritable_location(self, tmp_path: Path) -> None:
        with pytest.raises(StorageError):
            ServerSetup.load_or_create(tmp_path / "missing" / "setup.bin")
