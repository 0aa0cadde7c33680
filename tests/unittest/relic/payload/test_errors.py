from typing import Optional

import pytest

from relic.payload.errors import (
    MagicMismatchError,
    VersionMismatchError,
    InvalidLengthError,
    TruncatedReadError,
    ExtentOverflowError,
    SourceRangeError,
    InvalidContainerError,
    PayloadNotFoundError,
    DeltaPayloadError,
    UnsupportedOperationError,
    ShortReadError,
    Sha256MismatchError,
    FormatError,
    UnsupportedError,
    PayloadIOError,
    PayloadError,
)


@pytest.mark.parametrize("received", [None, b"Good"])
@pytest.mark.parametrize("expected", [None, b"Bad"])
def test_magic_mismatch_error(received: Optional[bytes], expected: Optional[bytes]):
    # Ensure init does not raise error
    err = MagicMismatchError(received, expected)
    assert isinstance(str(err), str)
    assert isinstance(err, FormatError)


@pytest.mark.parametrize("received", [None, 1])
@pytest.mark.parametrize("expected", [None, 2])
def test_version_mismatch_error(received: Optional[int], expected: Optional[int]):
    err = VersionMismatchError(received, expected)
    assert isinstance(err, FormatError)
    assert isinstance(err, UnsupportedError)
    assert "Payload Version" in str(err)


def test_invalid_length_error():
    err = InvalidLengthError("manifest size", 0)
    assert "manifest size" in str(err)
    assert "(0)" in str(err)


def test_truncated_read_error():
    err = TruncatedReadError("Manifest", 3, 10)
    assert str(err) == "Truncated Manifest; read 3 of 10 bytes!"


def test_extent_overflow_error():
    err = ExtentOverflowError(2**62, 4, 4096)
    assert str(2**62) in str(err)
    assert "4096" in str(err)


def test_payload_not_found_error():
    err = PayloadNotFoundError("ota.zip", "payload.bin")
    assert str(err) == "'payload.bin' not found in 'ota.zip'"
    assert isinstance(err, FormatError)


def test_delta_payload_error():
    err = DeltaPayloadError(7)
    assert "minor version 7" in str(err)
    assert isinstance(err, UnsupportedError)


@pytest.mark.parametrize(
    ["op_type", "op_name", "expected"],
    [
        (4, "SOURCE_COPY", "Unsupported operation type: 4 (SOURCE_COPY)"),
        (99, None, "Unsupported operation type: 99"),
    ],
)
def test_unsupported_operation_error(op_type: int, op_name: Optional[str], expected: str):
    err = UnsupportedOperationError(op_type, op_name)
    assert str(err) == expected


def test_short_read_error():
    err = ShortReadError(100, 2, 8)
    assert isinstance(err, PayloadIOError)
    assert not isinstance(err, FormatError)
    assert str(err) == "Short read at offset 100; got 2 of 8 bytes!"


def test_sha256_mismatch_error():
    err = Sha256MismatchError("Operation Data", b"\x00", b"\x01")
    assert isinstance(err, PayloadError)
    assert "Operation Data" in str(err)


def test_source_range_error():
    err = SourceRangeError(2**64 - 1, 16)
    assert isinstance(err, FormatError)
    assert str(2**64 - 1) in str(err)


def test_invalid_container_error():
    err = InvalidContainerError("ota.zip", "File is not a zip file")
    assert isinstance(err, FormatError)
    assert str(err) == "'ota.zip' is not a readable zip archive: File is not a zip file"
