"""Definitions shared by the payload parser, extractor and CLI."""

from __future__ import annotations

from enum import IntEnum
from typing import Optional

from relic.core.serialization import MagicWord

from relic.payload.errors import UnsupportedOperationError

PAYLOAD_MAGIC = b"CrAU"
MAGIC_WORD = MagicWord(PAYLOAD_MAGIC, name="Payload Magic Word")

# Brillo major payload version; the only one carrying a metadata signature length
PAYLOAD_VERSION = 2
FULL_PAYLOAD_MINOR_VERSION = 0
DEFAULT_BLOCK_SIZE = 4096

PAYLOAD_FILENAME = "payload.bin"
ZIP_MAGIC = b"PK"

# Largest offset a seek can reach (signed 64 bit)
MAX_OFFSET = 2**63 - 1


class OperationType(IntEnum):
    """Install operation types as numbered in ``update_metadata.proto``.

    Only the first four members listed here can be extracted from a full payload;
    the rest are kept so errors can name what they refused.
    """

    REPLACE = 0
    REPLACE_BZ = 1
    REPLACE_XZ = 8
    ZERO = 6
    MOVE = 2
    BSDIFF = 3
    SOURCE_COPY = 4
    SOURCE_BSDIFF = 5
    DISCARD = 7
    PUFFDIFF = 9
    BROTLI_BSDIFF = 10
    ZUCCHINI = 11
    LZ4DIFF_BSDIFF = 12
    LZ4DIFF_PUFFDIFF = 13
    ZSTD = 14

    @classmethod
    def name_of(cls, value: int) -> Optional[str]:
        try:
            return cls(value).name
        except ValueError:
            return None

    @classmethod
    def from_raw(cls, value: int) -> OperationType:
        """Classify a raw wire value, rejecting anything a full payload extractor cannot apply."""
        if value not in SUPPORTED_OPERATIONS:
            raise UnsupportedOperationError(value, cls.name_of(value))
        return cls(value)


SUPPORTED_OPERATIONS = frozenset(
    [
        OperationType.REPLACE,
        OperationType.REPLACE_BZ,
        OperationType.REPLACE_XZ,
        OperationType.ZERO,
    ]
)


class ExtractionState(IntEnum):
    IDLE = 0
    HEADER_PARSED = 1
    MANIFEST_PARSED = 2
    EXTRACTING = 3
    DONE = 4
    ABORTED = 5


__all__ = [
    "PAYLOAD_MAGIC",
    "MAGIC_WORD",
    "PAYLOAD_VERSION",
    "FULL_PAYLOAD_MINOR_VERSION",
    "DEFAULT_BLOCK_SIZE",
    "PAYLOAD_FILENAME",
    "ZIP_MAGIC",
    "MAX_OFFSET",
    "OperationType",
    "SUPPORTED_OPERATIONS",
    "ExtractionState",
]
