"""Windowed view over a byte buffer: offset math, row generation, formatting.

Everything here is a pure function of its arguments. The only state is the
small ``ViewportState`` record the session keeps between events.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterator
from dataclasses import dataclass

BYTES_PER_ROW = 16
VISIBLE_ROWS = 20

ByteReader = Callable[[int], int]


@dataclass
class ViewportState:
    offset_row: int = 0
    bytes_per_row: int = BYTES_PER_ROW
    visible_rows: int = VISIBLE_ROWS


# ── Offset math ────────────────────────────────────────────────────


def total_rows(length: int, bytes_per_row: int = BYTES_PER_ROW) -> int:
    return math.ceil(length / bytes_per_row) if length > 0 else 0


def ensure_visible(
    active_address: int,
    offset_row: int,
    bytes_per_row: int = BYTES_PER_ROW,
    visible_rows: int = VISIBLE_ROWS,
) -> int:
    """Return the offset row that keeps ``active_address`` on screen.

    The caller clamps ``active_address`` into the buffer first.
    """
    active_row = active_address // bytes_per_row
    if active_row < offset_row:
        return active_row
    if active_row >= offset_row + visible_rows:
        return active_row - visible_rows + 1
    return offset_row


def max_scroll_offset(total: int, visible_rows: int = VISIBLE_ROWS) -> int:
    return max(0, total - visible_rows + 1)


def scroll_by(
    delta: int,
    offset_row: int,
    total: int,
    visible_rows: int = VISIBLE_ROWS,
) -> int:
    """Shift the window by ``delta`` rows, clamped to the scrollable range."""
    return max(0, min(offset_row + delta, max_scroll_offset(total, visible_rows)))


# ── Rows ───────────────────────────────────────────────────────────


def byte_to_char(value: int | None) -> str:
    """ASCII column glyph: printable characters as-is, others as '.'."""
    if value is None:
        return " "
    if 32 <= value <= 126:
        return chr(value)
    return "."


def format_address(address: int) -> str:
    return f"{address:08x}"


@dataclass(frozen=True)
class Row:
    start_address: int
    slots: tuple[int | None, ...]

    def addresses(self) -> range:
        return range(self.start_address, self.start_address + len(self.slots))

    def hex_cells(self) -> list[str]:
        return [f"{b:02x}" if b is not None else "" for b in self.slots]

    def ascii(self, sep: str = "") -> str:
        return sep.join(byte_to_char(b) for b in self.slots)

    def to_dict(self) -> dict:
        return {
            "address": format_address(self.start_address),
            "start": self.start_address,
            "bytes": list(self.slots),
            "hex": self.hex_cells(),
            "ascii": self.ascii(),
        }


class RowWindow:
    """Restartable, finite iterable over the rows visible at ``offset_row``.

    Slots past the end of the buffer are ``None`` so renderers can leave
    them blank instead of showing zeros.
    """

    def __init__(
        self,
        offset_row: int,
        visible_rows: int,
        length: int,
        bytes_per_row: int,
        reader: ByteReader,
    ) -> None:
        self.offset_row = offset_row
        self.visible_rows = visible_rows
        self.length = length
        self.bytes_per_row = bytes_per_row
        self._reader = reader

    def __iter__(self) -> Iterator[Row]:
        for i in range(self.visible_rows):
            start = (self.offset_row + i) * self.bytes_per_row
            if start >= self.length:
                break
            slots = tuple(
                self._reader(addr) if addr < self.length else None
                for addr in range(start, start + self.bytes_per_row)
            )
            yield Row(start, slots)


def rows_to_render(
    offset_row: int,
    visible_rows: int,
    length: int,
    bytes_per_row: int,
    reader: ByteReader,
) -> RowWindow:
    return RowWindow(offset_row, visible_rows, length, bytes_per_row, reader)


# ── Display helpers ────────────────────────────────────────────────


def visible_range_text(
    offset_row: int,
    length: int,
    bytes_per_row: int = BYTES_PER_ROW,
    visible_rows: int = VISIBLE_ROWS,
) -> str:
    start = offset_row * bytes_per_row
    end = min((offset_row + visible_rows) * bytes_per_row, length)
    return f"Showing bytes {start} to {end} of {length}"


def format_bytes(size: int) -> str:
    """Human-readable size: '0 Bytes', '512 Bytes', '1.5 KB', '2 MB'."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    i = 0
    while size >= 1024 ** (i + 1) and i < len(units) - 1:
        i += 1
    text = f"{size / 1024**i:.2f}".rstrip("0").rstrip(".")
    return f"{text} {units[i]}"
