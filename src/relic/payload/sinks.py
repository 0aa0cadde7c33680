"""Output sinks; one randomly-writable image per partition."""

from __future__ import annotations

from typing import BinaryIO, Protocol

from fs.base import FS

IMAGE_SUFFIX = ".img"


class PartitionSink(Protocol):
    def open(self, partition_name: str) -> BinaryIO:
        """Create (or truncate) the image for a partition, opened for seek + write."""
        raise NotImplementedError


def image_name(partition_name: str) -> str:
    return f"{partition_name}{IMAGE_SUFFIX}"


class FSPartitionSink:
    """Writes ``<partition>.img`` files to the root of a PyFilesystem2 filesystem."""

    def __init__(self, filesystem: FS):
        self._fs = filesystem

    @property
    def filesystem(self) -> FS:
        return self._fs

    def open(self, partition_name: str) -> BinaryIO:
        return self._fs.openbin(image_name(partition_name), "w+")  # type: ignore


__all__ = ["IMAGE_SUFFIX", "PartitionSink", "image_name", "FSPartitionSink"]
