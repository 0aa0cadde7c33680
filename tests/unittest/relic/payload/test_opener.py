import zipfile
from io import BytesIO

import pytest

from relic.payload.errors import FormatError, InvalidContainerError, PayloadNotFoundError
from relic.payload.opener import is_zip, open_payload
from relic.payload.serialization import read_payload
from tests.payload_builder import build_multi_partition_payload
from tests.util import TempFileHandle

_PAYLOAD = build_multi_partition_payload(8675309).build()


def _write_zip(path: str, entries: dict) -> None:
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, data in entries.items():
            archive.writestr(name, data)


@pytest.mark.parametrize(
    ["buffer", "expected"],
    [(b"PK\x03\x04", True), (b"CrAU", False), (b"P", False), (b"", False)],
)
def test_is_zip(buffer: bytes, expected: bool):
    stream = BytesIO(b"??" + buffer)
    stream.seek(2)
    assert is_zip(stream) == expected
    assert stream.tell() == 2


def test_open_bare_payload():
    with TempFileHandle() as h:
        h.write_bytes(_PAYLOAD)
        with open_payload(h.path) as payload:
            assert payload.tell() == 0
            assert payload.read() == _PAYLOAD


def test_open_zipped_payload():
    with TempFileHandle(".zip") as h:
        _write_zip(h.path, {"META-INF/com/android/metadata": b"ota", "payload.bin": _PAYLOAD})
        with open_payload(h.path) as payload:
            assert payload.tell() == 0
            parsed = read_payload(payload)
            assert [p.partition_name for p in parsed.iter_partitions()] == [
                "boot",
                "system",
                "vendor",
            ]


def test_open_zipped_payload_custom_entry():
    with TempFileHandle(".zip") as h:
        _write_zip(h.path, {"nested/update.bin": _PAYLOAD})
        with open_payload(h.path, entry="nested/update.bin") as payload:
            assert payload.read() == _PAYLOAD


def test_zip_without_payload():
    with TempFileHandle(".zip") as h:
        _write_zip(h.path, {"care_map.pb": b"\x00"})
        with pytest.raises(PayloadNotFoundError):
            with open_payload(h.path):
                pass


def test_corrupt_zip():
    with TempFileHandle(".zip") as h:
        h.write_bytes(b"PK\x03\x04 this is not a zip")
        with pytest.raises(InvalidContainerError) as excinfo:
            with open_payload(h.path):
                pass
        assert isinstance(excinfo.value, FormatError)
        assert excinfo.value.container == h.path
