"""Protobuf schema of the payload manifest.

A subset of AOSP's ``update_metadata.proto`` (package ``chromeos_update_engine``),
built at import time in a private descriptor pool rather than shipped as generated
``_pb2`` code. Field numbers and wire types match the upstream schema; fields the
extractor never looks at are omitted and survive parsing as unknown fields.

Two deliberate deviations from upstream:
    ``InstallOperation.type`` is declared ``uint32`` instead of a closed proto2 enum,
    so unknown operation types reach the extractor (and are reported) instead of
    being silently dropped by the parser.
    ``PartitionUpdate.partition_name`` is optional instead of required, so a manifest
    with an unnamed partition parses and that partition is skipped.
"""

from __future__ import annotations

from typing import Optional, Type

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import Message

_PACKAGE = "chromeos_update_engine"

_F = descriptor_pb2.FieldDescriptorProto
_OPTIONAL = _F.LABEL_OPTIONAL
_REPEATED = _F.LABEL_REPEATED


def _add_field(
    message: descriptor_pb2.DescriptorProto,
    name: str,
    number: int,
    field_type: int,
    label: int = _OPTIONAL,
    type_name: Optional[str] = None,
    default: Optional[str] = None,
) -> None:
    field = message.field.add(name=name, number=number, type=field_type, label=label)
    if type_name is not None:
        field.type_name = f".{_PACKAGE}.{type_name}"
    if default is not None:
        field.default_value = default


def _build_file_descriptor() -> descriptor_pb2.FileDescriptorProto:
    proto = descriptor_pb2.FileDescriptorProto(
        name="relic/payload/update_metadata.proto",
        package=_PACKAGE,
        syntax="proto2",
    )

    extent = proto.message_type.add(name="Extent")
    _add_field(extent, "start_block", 1, _F.TYPE_UINT64)
    _add_field(extent, "num_blocks", 2, _F.TYPE_UINT64)

    partition_info = proto.message_type.add(name="PartitionInfo")
    _add_field(partition_info, "size", 1, _F.TYPE_UINT64)
    _add_field(partition_info, "hash", 2, _F.TYPE_BYTES)

    operation = proto.message_type.add(name="InstallOperation")
    _add_field(operation, "type", 1, _F.TYPE_UINT32)
    _add_field(operation, "data_offset", 2, _F.TYPE_UINT64)
    _add_field(operation, "data_length", 3, _F.TYPE_UINT64)
    _add_field(operation, "src_extents", 4, _F.TYPE_MESSAGE, _REPEATED, "Extent")
    _add_field(operation, "src_length", 5, _F.TYPE_UINT64)
    _add_field(operation, "dst_extents", 6, _F.TYPE_MESSAGE, _REPEATED, "Extent")
    _add_field(operation, "dst_length", 7, _F.TYPE_UINT64)
    _add_field(operation, "data_sha256_hash", 8, _F.TYPE_BYTES)
    _add_field(operation, "src_sha256_hash", 9, _F.TYPE_BYTES)

    partition = proto.message_type.add(name="PartitionUpdate")
    _add_field(partition, "partition_name", 1, _F.TYPE_STRING)
    _add_field(partition, "run_postinstall", 2, _F.TYPE_BOOL)
    _add_field(partition, "postinstall_path", 3, _F.TYPE_STRING)
    _add_field(partition, "filesystem_type", 4, _F.TYPE_STRING)
    _add_field(partition, "old_partition_info", 6, _F.TYPE_MESSAGE, type_name="PartitionInfo")
    _add_field(partition, "new_partition_info", 7, _F.TYPE_MESSAGE, type_name="PartitionInfo")
    _add_field(partition, "operations", 8, _F.TYPE_MESSAGE, _REPEATED, "InstallOperation")
    _add_field(partition, "version", 17, _F.TYPE_STRING)

    manifest = proto.message_type.add(name="DeltaArchiveManifest")
    _add_field(manifest, "block_size", 3, _F.TYPE_UINT32, default="4096")
    _add_field(manifest, "signatures_offset", 4, _F.TYPE_UINT64)
    _add_field(manifest, "signatures_size", 5, _F.TYPE_UINT64)
    _add_field(manifest, "minor_version", 12, _F.TYPE_UINT32, default="0")
    _add_field(manifest, "partitions", 13, _F.TYPE_MESSAGE, _REPEATED, "PartitionUpdate")
    _add_field(manifest, "max_timestamp", 14, _F.TYPE_INT64)
    _add_field(manifest, "partial_update", 16, _F.TYPE_BOOL)
    _add_field(manifest, "security_patch_level", 18, _F.TYPE_STRING)

    return proto


_POOL = descriptor_pool.DescriptorPool()
DESCRIPTOR = _POOL.AddSerializedFile(_build_file_descriptor().SerializeToString())


def _message_class(name: str) -> Type[Message]:
    return message_factory.GetMessageClass(
        _POOL.FindMessageTypeByName(f"{_PACKAGE}.{name}")
    )


Extent = _message_class("Extent")
PartitionInfo = _message_class("PartitionInfo")
InstallOperation = _message_class("InstallOperation")
PartitionUpdate = _message_class("PartitionUpdate")
DeltaArchiveManifest = _message_class("DeltaArchiveManifest")

__all__ = [
    "DESCRIPTOR",
    "Extent",
    "PartitionInfo",
    "InstallOperation",
    "PartitionUpdate",
    "DeltaArchiveManifest",
]
