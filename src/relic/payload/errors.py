"""Errors raised while reading or extracting an OTA payload.

Every error is fatal to an extraction run; nothing here is retried.
"""
from __future__ import annotations

from typing import Optional, Any

from relic.core.errors import RelicToolError


class PayloadError(RelicToolError):
    """Base class for every payload error."""


class FormatError(PayloadError):
    """The payload header or manifest is malformed."""


class UnsupportedError(PayloadError):
    """The payload is well formed, but uses a variant this tool cannot extract."""


class PayloadIOError(PayloadError):
    """Seeking, reading or writing the source or an output sink failed."""


class CodecError(PayloadError):
    """A compressed operation blob could not be decompressed."""


class MismatchError(PayloadError):
    """A value read from the payload did not match the expected value."""

    def __init__(
        self,
        name: str,
        received: Optional[Any] = None,
        expected: Optional[Any] = None,
    ):
        super().__init__()
        self.name = name
        self.received = received
        self.expected = expected

    def __str__(self) -> str:
        return f"Unexpected {self.name}; got {self.received!r}, expected {self.expected!r}!"


class MagicMismatchError(MismatchError, FormatError):
    def __init__(
        self, received: Optional[bytes] = None, expected: Optional[bytes] = None
    ):
        super().__init__("Magic Word", received, expected)


class VersionMismatchError(MismatchError, FormatError, UnsupportedError):
    """Major format version differs from the one supported version.

    Both a format and an unsupported error; callers may catch either.
    """

    def __init__(self, received: Optional[int] = None, expected: Optional[int] = None):
        super().__init__("Payload Version", received, expected)


class InvalidLengthError(FormatError):
    def __init__(self, name: str, value: int):
        super().__init__()
        self.name = name
        self.value = value

    def __str__(self) -> str:
        return f"Invalid {self.name} ({self.value}); must be greater than 0!"


class TruncatedReadError(MismatchError, FormatError):
    """Fewer bytes were available than the header declared."""

    def __init__(self, name: str, received: int, expected: int):
        super().__init__(name, received, expected)

    def __str__(self) -> str:
        return f"Truncated {self.name}; read {self.received} of {self.expected} bytes!"


class ManifestDecodeError(FormatError):
    pass


class ExtentOverflowError(FormatError):
    def __init__(self, start_block: int, num_blocks: int, block_size: int):
        super().__init__()
        self.start_block = start_block
        self.num_blocks = num_blocks
        self.block_size = block_size

    def __str__(self) -> str:
        return (
            f"Extent (start_block={self.start_block}, num_blocks={self.num_blocks})"
            f" with block size {self.block_size} exceeds the largest seekable offset!"
        )


class SourceRangeError(FormatError):
    def __init__(self, offset: int, size: int):
        super().__init__()
        self.offset = offset
        self.size = size

    def __str__(self) -> str:
        return (
            f"Operation data (offset={self.offset}, length={self.size})"
            f" exceeds the largest seekable offset!"
        )


class PayloadNotFoundError(FormatError):
    def __init__(self, container: str, entry: str):
        super().__init__()
        self.container = container
        self.entry = entry

    def __str__(self) -> str:
        return f"'{self.entry}' not found in '{self.container}'"


class InvalidContainerError(FormatError):
    def __init__(self, container: str, reason: str):
        super().__init__()
        self.container = container
        self.reason = reason

    def __str__(self) -> str:
        return f"'{self.container}' is not a readable zip archive: {self.reason}"


class DeltaPayloadError(UnsupportedError):
    def __init__(self, minor_version: int):
        super().__init__()
        self.minor_version = minor_version

    def __str__(self) -> str:
        return (
            f"Delta payloads are not supported (minor version {self.minor_version});"
            " only full payloads (minor version 0) can be extracted!"
        )


class UnsupportedOperationError(UnsupportedError):
    def __init__(self, op_type: int, op_name: Optional[str] = None):
        super().__init__()
        self.op_type = op_type
        self.op_name = op_name

    def __str__(self) -> str:
        if self.op_name is None:
            return f"Unsupported operation type: {self.op_type}"
        return f"Unsupported operation type: {self.op_type} ({self.op_name})"


class ShortReadError(MismatchError, PayloadIOError):
    def __init__(self, offset: int, received: int, expected: int):
        super().__init__("Read", received, expected)
        self.offset = offset

    def __str__(self) -> str:
        return (
            f"Short read at offset {self.offset};"
            f" got {self.received} of {self.expected} bytes!"
        )


class HashMismatchError(MismatchError, FormatError):
    pass


class Sha256MismatchError(HashMismatchError):
    pass


__all__ = [
    "PayloadError",
    "FormatError",
    "UnsupportedError",
    "PayloadIOError",
    "CodecError",
    "MismatchError",
    "MagicMismatchError",
    "VersionMismatchError",
    "InvalidLengthError",
    "TruncatedReadError",
    "ManifestDecodeError",
    "ExtentOverflowError",
    "SourceRangeError",
    "PayloadNotFoundError",
    "InvalidContainerError",
    "DeltaPayloadError",
    "UnsupportedOperationError",
    "ShortReadError",
    "HashMismatchError",
    "Sha256MismatchError",
]
