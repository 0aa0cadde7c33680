from __future__ import annotations

import threading
from typing import BinaryIO, List

from relic.payload.definitions import MAX_OFFSET
from relic.payload.errors import PayloadIOError, ShortReadError, SourceRangeError

# largest single read; a bogus length fails short instead of allocating it up front
_READ_CHUNK_SIZE = 16 * 1024 * 1024


class SharedPayloadReader:
    """One payload stream shared by every extraction worker.

    The stream has a single cursor, so each read is a (seek, read) pair performed
    under one lock. The lock is never held while the caller decodes or writes.
    """

    def __init__(self, stream: BinaryIO, data_offset: int):
        self._stream = stream
        self._data_offset = data_offset
        self._lock = threading.Lock()

    @property
    def data_offset(self) -> int:
        return self._data_offset

    def read(self, offset: int, size: int) -> bytes:
        """Read exactly ``size`` bytes at absolute ``offset``."""
        if offset < 0 or size < 0 or offset + size > MAX_OFFSET:
            raise SourceRangeError(offset, size)
        with self._lock:
            try:
                self._stream.seek(offset)
                buffer = self._read_upto(size)
            except (OSError, OverflowError, ValueError) as e:
                raise PayloadIOError(
                    f"Unable to read {size} bytes at offset {offset}: {e}"
                ) from e
        if len(buffer) != size:
            raise ShortReadError(offset, len(buffer), size)
        return buffer

    def _read_upto(self, size: int) -> bytes:
        chunks: List[bytes] = []
        remaining = size
        while remaining > 0:
            chunk = self._stream.read(min(remaining, _READ_CHUNK_SIZE))
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def read_data(self, data_offset: int, size: int) -> bytes:
        """Read an operation blob; ``data_offset`` is relative to the data section."""
        return self.read(self._data_offset + data_offset, size)


__all__ = ["SharedPayloadReader"]
