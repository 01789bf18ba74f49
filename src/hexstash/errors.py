"""Exception taxonomy shared by the buffer, store and storage layers."""

from __future__ import annotations


class HexstashError(Exception):
    """Base class for all hexstash errors."""


# ── Precondition violations ────────────────────────────────────────


class OutOfRange(HexstashError, IndexError):
    def __init__(self, address: int, length: int) -> None:
        super().__init__(f"address 0x{address:x} outside buffer of {length} bytes")
        self.address = address
        self.length = length


class InvalidValue(HexstashError, ValueError):
    def __init__(self, value: object) -> None:
        super().__init__(f"byte value {value!r} not in [0, 255]")
        self.value = value


# ── Storage substrate ──────────────────────────────────────────────


class StorageError(HexstashError):
    """The key-value substrate refused an operation."""


class QuotaExceeded(StorageError):
    def __init__(self, needed: int, quota: int) -> None:
        super().__init__(f"storage quota exceeded ({needed} > {quota} chars)")
        self.needed = needed
        self.quota = quota


# ── Chunked store ──────────────────────────────────────────────────


class StoreError(HexstashError):
    """A named persistence failure reported to the caller."""

    def __init__(self, name: str, detail: str = "") -> None:
        self.name = name
        self.detail = detail
        super().__init__(f"{self.label}: {name}" + (f" ({detail})" if detail else ""))

    label = "Store error"


class NotFound(StoreError):
    label = "File not found"


class Corrupted(StoreError):
    label = "File corrupted"


class WriteFailed(StoreError):
    label = "Error saving file"
