"""Single-byte edit state machine layered on ByteBuffer."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from hexstash.buffer import ByteBuffer

_log = logging.getLogger(__name__)

HEX_DIGITS = frozenset("0123456789abcdefABCDEF")
MAX_PENDING = 2


class EditState(enum.Enum):
    IDLE = "idle"
    EDITING = "editing"


@dataclass(frozen=True)
class Accepted:
    """The intent was applied. ``address`` is the next active address on commit."""

    address: int | None = None

    def __bool__(self) -> bool:
        return True


@dataclass(frozen=True)
class Rejected:
    """The intent was ignored; nothing changed."""

    reason: str

    def __bool__(self) -> bool:
        return False


EditResult = Accepted | Rejected


class EditSession:
    def __init__(self, buffer: ByteBuffer) -> None:
        self.buffer = buffer
        self.state = EditState.IDLE
        self.target_address: int | None = None
        self.pending_text = ""

    @property
    def editing(self) -> bool:
        return self.state is EditState.EDITING

    def begin(self, address: int) -> None:
        """Idle/Editing -> Editing(address). Raises OutOfRange for bad addresses."""
        value = self.buffer.read(address)
        self.state = EditState.EDITING
        self.target_address = address
        self.pending_text = f"{value:02x}"

    def type_char(self, ch: str) -> EditResult:
        if not self.editing:
            return Rejected("not editing")
        if len(ch) != 1 or ch not in HEX_DIGITS:
            return Rejected(f"not a hex digit: {ch!r}")
        if len(self.pending_text) >= MAX_PENDING:
            return Rejected("value already has two digits")
        self.pending_text += ch
        return Accepted()

    def backspace(self) -> EditResult:
        if not self.editing:
            return Rejected("not editing")
        if not self.pending_text:
            return Rejected("nothing to delete")
        self.pending_text = self.pending_text[:-1]
        return Accepted()

    def clear(self) -> EditResult:
        if not self.editing:
            return Rejected("not editing")
        self.pending_text = ""
        return Accepted()

    def commit(self) -> EditResult:
        """Write the pending value and return the next active address.

        An unparseable value leaves the session in Editing so the user can
        correct it; the buffer is not touched.
        """
        if not self.editing or self.target_address is None:
            return Rejected("not editing")
        try:
            value = int(self.pending_text, 16)
        except ValueError:
            return Rejected(f"invalid hex value: {self.pending_text!r}")
        if not 0 <= value <= 255:
            return Rejected(f"value out of range: {self.pending_text!r}")

        address = self.target_address
        self.buffer.write(address, value)
        _log.debug("wrote 0x%02x at 0x%08x", value, address)
        self._reset()
        return Accepted(min(address + 1, len(self.buffer) - 1))

    def cancel(self) -> None:
        self._reset()

    def _reset(self) -> None:
        self.state = EditState.IDLE
        self.target_address = None
        self.pending_text = ""
