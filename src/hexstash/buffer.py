"""In-memory byte content of the active file."""

from __future__ import annotations

from collections.abc import Iterable

from hexstash.errors import InvalidValue, OutOfRange


class ByteBuffer:
    """Mutable, fixed-length byte sequence. Single writer, no copy-on-write."""

    __slots__ = ("_data",)

    def __init__(self, data: bytes | bytearray | Iterable[int] = b"") -> None:
        self._data = bytearray(data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"ByteBuffer(length={len(self._data)})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ByteBuffer):
            return self._data == other._data
        if isinstance(other, (bytes, bytearray)):
            return self._data == other
        return NotImplemented

    @property
    def length(self) -> int:
        return len(self._data)

    def _check(self, address: int) -> None:
        if not 0 <= address < len(self._data):
            raise OutOfRange(address, len(self._data))

    def read(self, address: int) -> int:
        self._check(address)
        return self._data[address]

    def write(self, address: int, value: int) -> None:
        self._check(address)
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 255:
            raise InvalidValue(value)
        self._data[address] = value

    def slice(self, start: int, stop: int) -> bytes:
        """Return a copy of [start, stop), clipped to the buffer."""
        return bytes(self._data[max(start, 0) : max(stop, 0)])

    def to_bytes(self) -> bytes:
        return bytes(self._data)
