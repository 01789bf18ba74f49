"""Chunked persistence of byte buffers in a size-limited text key-value store.

Layout per file name::

    hexfile_chunks_<name>        number of chunks, decimal
    hexfile_chunk_<name>_<i>     base64 of raw bytes [i*CHUNK_SIZE, (i+1)*CHUNK_SIZE)
    hexfile_metadata_<name>      JSON {name, size, lastModified, type}
    hexfile_pending_<name>       present while a journaled save is in flight

Writes are sequential and not transactional: a failure part way through a
save leaves the entries already written in place.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import time
from collections.abc import Iterator
from dataclasses import dataclass

from hexstash.errors import Corrupted, NotFound, StorageError, WriteFailed
from hexstash.storage import StoragePort

_log = logging.getLogger(__name__)

CHUNK_SIZE = 100 * 1024
DEFAULT_MIME_TYPE = "application/octet-stream"

_COUNT_PREFIX = "hexfile_chunks_"
_CHUNK_PREFIX = "hexfile_chunk_"
_META_PREFIX = "hexfile_metadata_"
_PENDING_PREFIX = "hexfile_pending_"


def count_key(name: str) -> str:
    return f"{_COUNT_PREFIX}{name}"


def chunk_key(name: str, index: int) -> str:
    return f"{_CHUNK_PREFIX}{name}_{index}"


def meta_key(name: str) -> str:
    return f"{_META_PREFIX}{name}"


def pending_key(name: str) -> str:
    return f"{_PENDING_PREFIX}{name}"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class FileRecord:
    name: str
    size: int
    last_modified: int
    mime_type: str = DEFAULT_MIME_TYPE

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "size": self.size,
            "lastModified": self.last_modified,
            "type": self.mime_type,
        }

    @classmethod
    def from_json(cls, raw: str, name: str | None = None) -> FileRecord:
        """Parse a metadata entry. ``name`` (from the key) wins over the body."""
        doc = json.loads(raw)
        if not isinstance(doc, dict):
            raise ValueError("metadata is not an object")
        return cls(
            name=name if name is not None else str(doc["name"]),
            size=int(doc.get("size", 0)),
            last_modified=int(doc.get("lastModified", 0)),
            mime_type=str(doc.get("type") or DEFAULT_MIME_TYPE),
        )


def split_chunks(data: bytes, chunk_size: int = CHUNK_SIZE) -> Iterator[str]:
    """Yield base64 text for consecutive slices of at most ``chunk_size`` bytes."""
    view = memoryview(data)
    for i in range(0, len(view), chunk_size):
        yield base64.b64encode(view[i : i + chunk_size]).decode("ascii")


def join_chunks(chunks: list[str]) -> bytes:
    """Decode chunks back to bytes.

    Each chunk carries its own base64 padding, so chunks are decoded one at
    a time rather than as a single concatenated string.
    """
    return b"".join(base64.b64decode(c, validate=True) for c in chunks)


class ChunkedStore:
    def __init__(
        self,
        port: StoragePort,
        chunk_size: int = CHUNK_SIZE,
        journal: bool = False,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.port = port
        self.chunk_size = chunk_size
        self.journal = journal

    # ── Save ───────────────────────────────────────────────────────

    def save(
        self,
        name: str,
        data: bytes | bytearray,
        mime_type: str = DEFAULT_MIME_TYPE,
    ) -> FileRecord:
        """Persist ``data`` under ``name``. Raises WriteFailed on any storage error."""
        chunks = list(split_chunks(bytes(data), self.chunk_size))
        record = FileRecord(name, len(data), _now_ms(), mime_type)
        step = "start"
        try:
            old_count = self._stored_chunk_count(name)
            if self.journal:
                step = "journal"
                self.port.set(pending_key(name), str(len(chunks)))
            step = "count"
            self.port.set(count_key(name), str(len(chunks)))
            for i, chunk in enumerate(chunks):
                step = f"chunk {i}"
                self.port.set(chunk_key(name, i), chunk)
            step = "metadata"
            self.port.set(meta_key(name), record.to_json())
            step = "stale chunks"
            for i in range(len(chunks), old_count):
                self.port.remove(chunk_key(name, i))
            if self.journal:
                step = "journal clear"
                self.port.remove(pending_key(name))
        except StorageError as e:
            _log.error("save of %s failed at %s: %s", name, step, e)
            raise WriteFailed(name, f"{step}: {e}") from e
        _log.debug("saved %s: %d bytes in %d chunks", name, len(data), len(chunks))
        return record

    # ── Load ───────────────────────────────────────────────────────

    def chunk_count(self, name: str) -> int | None:
        raw = self.port.get(count_key(name))
        if raw is None:
            return None
        try:
            count = int(raw, 10)
        except ValueError as e:
            raise Corrupted(name, f"bad chunk count {raw!r}") from e
        if count < 0:
            raise Corrupted(name, f"bad chunk count {raw!r}")
        return count

    def load(self, name: str) -> tuple[bytes, FileRecord | None]:
        """Reconstruct the bytes saved under ``name``.

        Returns the data and its metadata record, which is None when the
        metadata entry is missing or unreadable.
        """
        try:
            count = self.chunk_count(name)
            if count is None:
                raise NotFound(name)
            if self.journal and self.port.get(pending_key(name)) is not None:
                raise Corrupted(name, "interrupted save")

            chunks: list[str] = []
            for i in range(count):
                chunk = self.port.get(chunk_key(name, i))
                if chunk is None:
                    raise Corrupted(name, f"missing chunk {i} of {count}")
                chunks.append(chunk)
            record = self._read_record(name)
        except StorageError as e:
            raise Corrupted(name, str(e)) from e

        try:
            data = join_chunks(chunks)
        except (binascii.Error, ValueError) as e:
            raise Corrupted(name, f"undecodable chunk data: {e}") from e

        if record is not None and record.size != len(data):
            raise Corrupted(name, f"size mismatch: metadata {record.size}, decoded {len(data)}")
        if record is None:
            _log.warning("loaded %s without metadata", name)
        return data, record

    def _read_record(self, name: str) -> FileRecord | None:
        raw = self.port.get(meta_key(name))
        if raw is None:
            return None
        try:
            return FileRecord.from_json(raw, name)
        except (ValueError, KeyError, TypeError) as e:
            _log.warning("unreadable metadata for %s: %s", name, e)
            return None

    # ── Delete / list ──────────────────────────────────────────────

    def delete(self, name: str) -> None:
        """Remove every entry for ``name``. Deleting a missing name is a no-op."""
        try:
            raw = self.port.get(count_key(name))
            if raw is not None:
                try:
                    count = int(raw, 10)
                except ValueError:
                    count = self._scan_chunk_count(name)
                for i in range(count):
                    self.port.remove(chunk_key(name, i))
            self.port.remove(meta_key(name))
            self.port.remove(count_key(name))
            self.port.remove(pending_key(name))
        except StorageError as e:
            raise WriteFailed(name, f"delete: {e}") from e
        _log.debug("deleted %s", name)

    def _stored_chunk_count(self, name: str) -> int:
        try:
            count = self.chunk_count(name)
        except Corrupted:
            return self._scan_chunk_count(name)
        return count or 0

    def _scan_chunk_count(self, name: str) -> int:
        prefix = f"{_CHUNK_PREFIX}{name}_"
        indexes = [
            int(k[len(prefix) :])
            for k in self.port.keys()
            if k.startswith(prefix) and k[len(prefix) :].isdigit()
        ]
        return max(indexes) + 1 if indexes else 0

    def list(self) -> list[FileRecord]:
        """One record per metadata entry. Chunk sets are not checked."""
        records: list[FileRecord] = []
        for key in self.port.keys():
            if not key.startswith(_META_PREFIX):
                continue
            name = key[len(_META_PREFIX) :]
            raw = self.port.get(key)
            if raw is None:
                continue
            try:
                records.append(FileRecord.from_json(raw, name))
            except (ValueError, KeyError, TypeError) as e:
                _log.warning("skipping unreadable metadata %s: %s", key, e)
        records.sort(key=lambda r: r.name)
        return records

    def exists(self, name: str) -> bool:
        return self.port.get(count_key(name)) is not None
