MAX_VECTOR_LENGTH = 0xFFFF


def encode_vector(data: bytes) -> bytes:
    """Prefix data with its length as a big-endian u16."""
    if len(data) > MAX_VECTOR_LENGTH:
        raise ValueError(f"Field too long: {len(data)} > {MAX_VECTOR_LENGTH}")
    return len(data).to_bytes(2, "big") + data


class ByteReader:
    """
    Sequential reader over a byte string.

    Raises ValueError whenever the input is shorter than a read requires.
    """

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._offset = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def take(self, n: int) -> bytes:
        if n > self.remaining:
            raise ValueError(f"Truncated input: wanted {n} bytes, {self.remaining} left")
        chunk = self._data[self._offset:self._offset + n]
        self._offset += n
        return chunk

    def take_byte(self) -> int:
        return self.take(1)[0]

    def take_vector(self) -> bytes:
        length = int.from_bytes(self.take(2), "big")
        return self.take(length)

    def expect_end(self) -> None:
        if self.remaining:
            raise ValueError(f"Unexpected {self.remaining} trailing bytes")
