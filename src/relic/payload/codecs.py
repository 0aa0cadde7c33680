from __future__ import annotations

import bz2
import lzma
from typing import Iterator, Sequence, Tuple

from relic.payload.definitions import OperationType
from relic.payload.errors import CodecError, FormatError
from relic.payload.serialization import extent_to_range
from relic.payload.update_metadata import Extent

Write = Tuple[int, bytes]

_ZERO_CHUNK_SIZE = 1024 * 1024


def decompress(op_type: OperationType, buffer: bytes) -> bytes:
    """Decode a whole REPLACE* blob; nothing is returned until the full stream is decoded."""
    if op_type == OperationType.REPLACE:
        return buffer
    try:
        if op_type == OperationType.REPLACE_BZ:
            return bz2.decompress(buffer)
        if op_type == OperationType.REPLACE_XZ:
            return lzma.decompress(buffer, format=lzma.FORMAT_XZ)
    except (OSError, ValueError, EOFError, lzma.LZMAError) as e:
        raise CodecError(f"Unable to decompress {op_type.name} data: {e}") from e
    raise CodecError(f"{op_type.name} is not a compressed operation")


def _zero_fill(
    extents: Sequence[Extent], block_size: int, chunk_size: int
) -> Iterator[Write]:
    for extent in extents:
        offset, length = extent_to_range(extent, block_size)
        end = offset + length
        while offset < end:
            size = min(chunk_size, end - offset)
            yield offset, bytes(size)
            offset += size


def _replace(
    op_type: OperationType, buffer: bytes, extent: Extent, block_size: int
) -> Iterator[Write]:
    offset, _ = extent_to_range(extent, block_size)
    yield offset, decompress(op_type, buffer)


def render(
    op_type: int,
    buffer: bytes,
    dst_extents: Sequence[Extent],
    block_size: int,
    chunk_size: int = _ZERO_CHUNK_SIZE,
) -> Iterator[Write]:
    """Dispatch an operation to its codec.

    Returns an iterator of the ``(offset, data)`` writes the operation makes to its
    partition image. REPLACE* operations write their decoded data at the first
    destination extent; ZERO fills every destination extent and ignores ``buffer``.

    Raises UnsupportedOperationError for any other type before anything is decoded.
    """
    kind = OperationType.from_raw(op_type)
    if kind == OperationType.ZERO:
        return _zero_fill(dst_extents, block_size, chunk_size)
    if len(dst_extents) == 0:
        raise FormatError(f"{kind.name} operation has no destination extent")
    return _replace(kind, buffer, dst_extents[0], block_size)


__all__ = ["Write", "decompress", "render"]
