"""Readers for the payload preamble and manifest.

Layout (big-endian)::

    0    4   magic (b"CrAU")
    4    8   major version
    12   8   manifest size
    20   4   metadata signature size
    24   ..  manifest, metadata signature, then the data section
"""

from __future__ import annotations

import struct
from collections import Counter
from dataclasses import dataclass
from typing import Any, BinaryIO, ClassVar, Dict, Iterator, Optional, Sequence, Tuple

from google.protobuf.message import DecodeError

from relic.payload.definitions import (
    OperationType,
    PAYLOAD_MAGIC,
    PAYLOAD_VERSION,
    FULL_PAYLOAD_MINOR_VERSION,
    MAX_OFFSET,
)
from relic.payload.errors import (
    MagicMismatchError,
    VersionMismatchError,
    InvalidLengthError,
    TruncatedReadError,
    ManifestDecodeError,
    DeltaPayloadError,
    ExtentOverflowError,
)
from relic.payload.update_metadata import (
    DeltaArchiveManifest,
    PartitionUpdate,
    Extent,
)


def _read_exact(stream: BinaryIO, size: int, name: str) -> bytes:
    buffer = stream.read(size)
    if len(buffer) != size:
        raise TruncatedReadError(name, len(buffer), size)
    return buffer


@dataclass(frozen=True, slots=True)
class PayloadHeader:
    magic: bytes
    version: int
    manifest_size: int
    metadata_signature_size: int

    SIZE: ClassVar[int] = 24

    @property
    def manifest_offset(self) -> int:
        return self.SIZE

    @property
    def data_offset(self) -> int:
        """Absolute offset of the data section; operation offsets are relative to this."""
        return self.SIZE + self.manifest_size + self.metadata_signature_size


class PayloadHeaderSerializer:
    _MAGIC_LAYOUT = struct.Struct(">4s")
    _LAYOUT = struct.Struct(">QQI")

    @classmethod
    def read(cls, stream: BinaryIO) -> PayloadHeader:
        """Read and validate the preamble, leaving the stream at the manifest.

        The magic word is validated before anything else is read.
        """
        (magic,) = cls._MAGIC_LAYOUT.unpack(
            _read_exact(stream, cls._MAGIC_LAYOUT.size, "Payload Header")
        )
        if magic != PAYLOAD_MAGIC:
            raise MagicMismatchError(magic, PAYLOAD_MAGIC)

        buffer = _read_exact(stream, cls._LAYOUT.size, "Payload Header")
        version, manifest_size, signature_size = cls._LAYOUT.unpack(buffer)
        if version != PAYLOAD_VERSION:
            raise VersionMismatchError(version, PAYLOAD_VERSION)
        if manifest_size <= 0:
            raise InvalidLengthError("manifest size", manifest_size)
        if signature_size <= 0:
            raise InvalidLengthError("metadata signature size", signature_size)
        return PayloadHeader(magic, version, manifest_size, signature_size)

    @classmethod
    def write(cls, stream: BinaryIO, header: PayloadHeader) -> int:
        buffer = cls._MAGIC_LAYOUT.pack(header.magic) + cls._LAYOUT.pack(
            header.version, header.manifest_size, header.metadata_signature_size
        )
        return stream.write(buffer)


class ManifestSerializer:
    @staticmethod
    def parse(buffer: bytes) -> DeltaArchiveManifest:
        manifest = DeltaArchiveManifest()
        try:
            manifest.ParseFromString(buffer)
        except DecodeError as e:
            raise ManifestDecodeError(f"Unable to parse manifest: {e}") from e
        if manifest.block_size <= 0:
            raise InvalidLengthError("block size", manifest.block_size)
        if manifest.minor_version != FULL_PAYLOAD_MINOR_VERSION:
            raise DeltaPayloadError(manifest.minor_version)
        return manifest

    @classmethod
    def read(cls, stream: BinaryIO, header: PayloadHeader) -> DeltaArchiveManifest:
        """Read exactly ``header.manifest_size`` bytes from the current position."""
        buffer = _read_exact(stream, header.manifest_size, "Manifest")
        return cls.parse(buffer)


@dataclass(frozen=True, slots=True)
class Payload:
    """A parsed payload; read-only and shared by every extraction worker."""

    header: PayloadHeader
    manifest: DeltaArchiveManifest

    @property
    def data_offset(self) -> int:
        return self.header.data_offset

    @property
    def block_size(self) -> int:
        return self.manifest.block_size

    @property
    def partitions(self) -> Sequence[PartitionUpdate]:
        return self.manifest.partitions

    def iter_partitions(
        self, names: Optional[Sequence[str]] = None
    ) -> Iterator[PartitionUpdate]:
        """Partitions selected by ``names``; all named partitions if ``names`` is empty.

        Partitions without a name are always skipped.
        """
        wanted = set(names) if names else None
        for partition in self.manifest.partitions:
            if not partition.partition_name:
                continue
            if wanted is not None and partition.partition_name not in wanted:
                continue
            yield partition

    def info_tree(self) -> Dict[str, Any]:
        """
        Get a dictionary of the payload's metadata; the header, manifest and each partition

        :rtype: Dict[str,Any]
        :returns: A dictionary describing the payload and its partitions
        """
        manifest = self.manifest
        partitions = []
        for partition in manifest.partitions:
            op_counts = Counter(
                OperationType.name_of(op.type) or str(op.type)
                for op in partition.operations
            )
            info = partition.new_partition_info
            partitions.append(
                {
                    "name": partition.partition_name,
                    "size": info.size,
                    "hash": info.hash.hex(),
                    "operations": len(partition.operations),
                    "operation_types": dict(op_counts),
                }
            )
        return {
            "header": self.header,
            "data_offset": self.data_offset,
            "block_size": manifest.block_size,
            "minor_version": manifest.minor_version,
            "max_timestamp": manifest.max_timestamp,
            "partial_update": manifest.partial_update,
            "security_patch_level": manifest.security_patch_level,
            "partitions": partitions,
        }


def read_payload(stream: BinaryIO) -> Payload:
    """Parse the header and manifest from a stream positioned at the payload start."""
    header = PayloadHeaderSerializer.read(stream)
    manifest = ManifestSerializer.read(stream, header)
    return Payload(header, manifest)


def extent_to_range(extent: Extent, block_size: int) -> Tuple[int, int]:
    """Absolute ``(offset, length)`` in the output image covered by ``extent``."""
    offset = extent.start_block * block_size
    length = extent.num_blocks * block_size
    if offset + length > MAX_OFFSET:
        raise ExtentOverflowError(extent.start_block, extent.num_blocks, block_size)
    return offset, length


__all__ = [
    "PayloadHeader",
    "PayloadHeaderSerializer",
    "ManifestSerializer",
    "Payload",
    "read_payload",
    "extent_to_range",
]
