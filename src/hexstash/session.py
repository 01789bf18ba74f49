"""The active editing session: one file, its viewport, its edit state.

All intents run to completion synchronously and report back through
``Session.status``. Store and validation failures become status text; they
never propagate out of the session.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from hexstash.buffer import ByteBuffer
from hexstash.edit import Accepted, EditResult, EditSession, Rejected
from hexstash.errors import Corrupted, NotFound, StorageError, StoreError
from hexstash.store import DEFAULT_MIME_TYPE, ChunkedStore, FileRecord
from hexstash.viewport import (
    BYTES_PER_ROW,
    VISIBLE_ROWS,
    RowWindow,
    ViewportState,
    ensure_visible,
    format_address,
    rows_to_render,
    scroll_by,
    total_rows,
    visible_range_text,
)

_log = logging.getLogger(__name__)

APP_NAME = "hexstash"
READY_MESSAGE = f"{APP_NAME} ready. Type 'help' for commands."
HELP_TEXT = "Commands: load <file>, save, edit <address>, list, delete <file>, exit, help, ?"
BAD_ADDRESS_TEXT = "Invalid address format. Use hexadecimal (e.g., 0x100 or 100)"

Opener = Callable[[str], bytes | None]


def parse_hex_address(text: str) -> int | None:
    """Parse '100', '0x100' or '0X1f'. Returns None for anything else."""
    s = text.strip()
    if s[:2].lower() == "0x":
        s = s[2:]
    if not s or any(ch not in "0123456789abcdefABCDEF" for ch in s):
        return None
    return int(s, 16)


class Session:
    def __init__(
        self,
        store: ChunkedStore,
        bytes_per_row: int = BYTES_PER_ROW,
        visible_rows: int = VISIBLE_ROWS,
        opener: Opener | None = None,
    ) -> None:
        self.store = store
        self.opener = opener
        self.viewport = ViewportState(0, bytes_per_row, visible_rows)
        self.buffer: ByteBuffer | None = None
        self.record: FileRecord | None = None
        self.edit: EditSession | None = None
        self.active_address = 0
        self.status = READY_MESSAGE
        self.history: list[str] = []
        self._history_index = -1
        self.exit_requested = False

    # ── State ──────────────────────────────────────────────────────

    @property
    def loaded(self) -> bool:
        return self.buffer is not None

    @property
    def editing(self) -> bool:
        return self.edit is not None and self.edit.editing

    @property
    def mode(self) -> str:
        return "EDIT" if self.editing else "VIEW"

    @property
    def length(self) -> int:
        return len(self.buffer) if self.buffer is not None else 0

    def _set_status(self, text: str) -> str:
        self.status = text
        return text

    def _reveal(self) -> None:
        vp = self.viewport
        if self.length == 0:
            vp.offset_row = 0
            return
        vp.offset_row = ensure_visible(
            self.active_address, vp.offset_row, vp.bytes_per_row, vp.visible_rows
        )

    def _install(self, data: bytes, record: FileRecord) -> None:
        self.buffer = ByteBuffer(data)
        self.record = record
        self.edit = EditSession(self.buffer)
        self.active_address = 0
        self.viewport.offset_row = 0

    # ── File intents ───────────────────────────────────────────────

    def open_file(
        self,
        name: str,
        data: bytes | bytearray,
        size: int | None = None,
        last_modified: int | None = None,
        mime_type: str | None = None,
        record_history: bool = True,
    ) -> bool:
        """Accept a buffer from an upload or file picker."""
        if not data:
            self._set_status(f"Cannot load empty file: {name}")
            return False
        record = FileRecord(
            name=name,
            size=size if size is not None else len(data),
            last_modified=last_modified if last_modified is not None else int(time.time() * 1000),
            mime_type=mime_type or DEFAULT_MIME_TYPE,
        )
        self._install(bytes(data), record)
        _log.info("opened %s (%d bytes)", name, len(data))
        if record_history:
            self.add_history(f"load {name}")
        self._set_status(f"{name} ({record.size} bytes)")
        return True

    def save(self) -> bool:
        if self.buffer is None or self.record is None:
            self._set_status("No file loaded")
            return False
        name = self.record.name
        try:
            record = self.store.save(name, self.buffer.to_bytes(), self.record.mime_type)
        except StoreError as e:
            _log.error("save failed: %s", e)
            self._set_status(f"Error saving file: {name}")
            return False
        self.record = record
        self._set_status(f"File saved: {name}")
        return True

    def load_saved(self, name: str) -> bool:
        try:
            data, record = self.store.load(name)
        except NotFound:
            self._set_status(f"File not found: {name}")
            return False
        except Corrupted as e:
            _log.warning("%s", e)
            self._set_status(f"File corrupted: {name}")
            return False
        if not data:
            self._set_status(f"Cannot load empty file: {name}")
            return False
        if record is None:
            record = FileRecord(name, len(data), int(time.time() * 1000))
        self._install(data, record)
        self._set_status(f"Loaded saved file: {name} ({len(data)} bytes)")
        return True

    def delete_saved(self, name: str) -> bool:
        try:
            self.store.delete(name)
        except StoreError as e:
            _log.error("delete failed: %s", e)
            self._set_status(f"Error deleting file: {name}")
            return False
        self._set_status(f"File deleted: {name}")
        return True

    def saved_files(self, quiet: bool = False) -> list[FileRecord]:
        """Saved records; on failure an empty list. ``quiet`` only logs the failure."""
        try:
            return self.store.list()
        except (StoreError, StorageError) as e:
            _log.error("listing failed: %s", e)
            if not quiet:
                self._set_status("Error listing saved files")
            return []

    # ── Navigation intents ─────────────────────────────────────────

    def set_active_address(self, address: int) -> None:
        """Move the cursor, clamped to the buffer.

        Moving away from the byte being edited drops the pending value.
        """
        if self.buffer is None:
            return
        address = max(0, min(address, self.length - 1))
        if self.edit is not None and self.editing and self.edit.target_address != address:
            self.edit.cancel()
        self.active_address = address
        self._reveal()

    def move(self, delta: int) -> None:
        self.set_active_address(self.active_address + delta)

    def scroll(self, delta: int) -> int:
        vp = self.viewport
        vp.offset_row = scroll_by(
            delta, vp.offset_row, total_rows(self.length, vp.bytes_per_row), vp.visible_rows
        )
        return vp.offset_row

    def enter_edit_mode(self, address: int | None = None) -> bool:
        if self.buffer is None or self.edit is None:
            self._set_status("No file loaded")
            return False
        if address is None:
            address = self.active_address
        if not 0 <= address < self.length:
            self._set_status(f"Address out of range: 0x{format_address(address)}")
            return False
        self.active_address = address
        self._reveal()
        self.edit.begin(address)
        self._set_status(f"Editing at address: 0x{format_address(address)}")
        return True

    def append_hex_digit(self, ch: str) -> EditResult:
        if self.edit is None:
            return Rejected("no file loaded")
        return self.edit.type_char(ch)

    def backspace(self) -> EditResult:
        if self.edit is None:
            return Rejected("no file loaded")
        return self.edit.backspace()

    def commit(self) -> EditResult:
        if self.edit is None or self.buffer is None:
            return Rejected("no file loaded")
        target = self.edit.target_address
        result = self.edit.commit()
        if isinstance(result, Accepted) and target is not None:
            value = self.buffer.read(target)
            self.active_address = result.address if result.address is not None else target
            self._reveal()
            self._set_status(f"Wrote 0x{value:02x} at 0x{format_address(target)}")
        elif isinstance(result, Rejected):
            self._set_status(f"Edit not applied: {result.reason}")
        return result

    def cancel(self) -> None:
        if self.edit is not None and self.editing:
            self.edit.cancel()
            self._set_status("Edit cancelled")

    # ── Rendering ──────────────────────────────────────────────────

    def rows(self) -> RowWindow:
        vp = self.viewport
        reader = self.buffer.read if self.buffer is not None else (lambda _addr: 0)
        return rows_to_render(vp.offset_row, vp.visible_rows, self.length, vp.bytes_per_row, reader)

    def range_text(self) -> str:
        vp = self.viewport
        return visible_range_text(vp.offset_row, self.length, vp.bytes_per_row, vp.visible_rows)

    def snapshot(self) -> dict[str, Any]:
        vp = self.viewport
        return {
            "file": self.record.to_dict() if self.record else None,
            "length": self.length,
            "activeAddress": self.active_address,
            "mode": self.mode,
            "pending": self.edit.pending_text if self.editing and self.edit else None,
            "offsetRow": vp.offset_row,
            "bytesPerRow": vp.bytes_per_row,
            "visibleRows": vp.visible_rows,
            "totalRows": total_rows(self.length, vp.bytes_per_row),
            "range": self.range_text(),
            "status": self.status,
            "rows": [row.to_dict() for row in self.rows()],
        }

    # ── Command line ───────────────────────────────────────────────

    def add_history(self, command: str) -> None:
        self.history.append(command)
        self._history_index = -1

    def history_prev(self) -> str | None:
        """Step back through history (newest first). None when exhausted."""
        if self._history_index >= len(self.history) - 1:
            return None
        self._history_index += 1
        return self.history[len(self.history) - 1 - self._history_index]

    def history_next(self) -> str:
        """Step forward through history. Returns '' past the newest entry."""
        if self._history_index > 0:
            self._history_index -= 1
            return self.history[len(self.history) - 1 - self._history_index]
        self._history_index = -1
        return ""

    def execute(self, command: str) -> str:
        """Run one text command and return the resulting status line."""
        raw = command.strip()
        if not raw:
            return self.status
        self.add_history(raw)

        verb, _, arg = raw.partition(" ")
        verb = verb.lower()
        arg = arg.strip()

        if verb == "help" and not arg:
            return self._set_status(HELP_TEXT)
        if verb in ("?", "check") and not arg:
            return self._set_status(self._check_text())
        if verb in ("exit", "quit") and not arg:
            self.exit_requested = True
            return self._set_status(f"Thank you for using {APP_NAME}.")
        if verb == "save" and not arg:
            self.save()
            return self.status
        if verb in ("list", "ls") and not arg:
            records = self.saved_files()
            if not records:
                return self._set_status("No saved files")
            names = ", ".join(f"{r.name} ({r.size} bytes)" for r in records)
            return self._set_status(f"Saved files: {names}")
        if verb == "load" and arg:
            self._load_command(arg)
            return self.status
        if verb == "delete" and arg:
            self.delete_saved(arg)
            return self.status
        if verb == "edit" and arg:
            address = parse_hex_address(arg)
            if address is None:
                return self._set_status(BAD_ADDRESS_TEXT)
            self.enter_edit_mode(address)
            return self.status
        return self._set_status(f"Unknown command: {raw}. Type 'help' for available commands.")

    def _check_text(self) -> str:
        name = self.record.name if self.record else "None"
        mode = "Edit" if self.editing else "View"
        return f"Current file: {name} | Size: {self.length} bytes | Editor mode: {mode}"

    def _load_command(self, name: str) -> None:
        try:
            in_store = self.store.exists(name)
        except StorageError as e:
            _log.error("store lookup failed: %s", e)
            in_store = False
        if in_store or self.opener is None:
            self.load_saved(name)
            return
        try:
            data = self.opener(name)
        except OSError as e:
            _log.warning("cannot open %s: %s", name, e)
            data = None
        if data is None:
            self._set_status(f"File not found: {name}")
            return
        self.open_file(name, data, record_history=False)
