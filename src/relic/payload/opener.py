"""Locates the raw payload inside an input file.

OTA packages usually ship ``payload.bin`` inside a zip archive; bare payloads are
used as they are.
"""

from __future__ import annotations

import logging
import tempfile
from contextlib import contextmanager
from typing import BinaryIO, Generator, Any, Optional

from fs.errors import CreateFailed
from fs.tools import copy_file_data
from fs.zipfs import ReadZipFS
from relic.core.logmsg import BraceMessage

from relic.payload.definitions import PAYLOAD_FILENAME, ZIP_MAGIC
from relic.payload.errors import InvalidContainerError, PayloadNotFoundError


def is_zip(stream: BinaryIO) -> bool:
    """Peek at the first bytes of ``stream``; the position is restored."""
    jump_back = stream.tell()
    try:
        return stream.read(len(ZIP_MAGIC)) == ZIP_MAGIC
    finally:
        stream.seek(jump_back)


@contextmanager
def _extract_entry(
    path: str, entry: str, logger: logging.Logger
) -> Generator[BinaryIO, Any, None]:
    logger.info(BraceMessage("Searching for `{0}` in `{1}`...", entry, path))
    try:
        zip_fs = ReadZipFS(path)
    except CreateFailed as e:
        raise InvalidContainerError(path, str(e)) from e
    with zip_fs:
        if not zip_fs.isfile(entry):
            raise PayloadNotFoundError(path, entry)
        # zip members are not efficiently seekable; spool the payload to disk first
        with tempfile.TemporaryFile() as spool:
            with zip_fs.openbin(entry) as member:
                copy_file_data(member, spool)
            spool.seek(0)
            logger.info(BraceMessage("`{0}` found, extracting...", entry))
            yield spool  # type: ignore


@contextmanager
def open_payload(
    path: str,
    entry: str = PAYLOAD_FILENAME,
    logger: Optional[logging.Logger] = None,
) -> Generator[BinaryIO, Any, None]:
    """Open ``path`` as a readable, seekable payload stream positioned at byte 0.

    If ``path`` is a zip archive, the ``entry`` member is used instead.
    """
    logger = logger or logging.getLogger(__name__)
    with open(path, "rb") as handle:
        if not is_zip(handle):
            yield handle
            return
    with _extract_entry(path, entry, logger) as payload:
        yield payload


__all__ = ["is_zip", "open_payload"]
