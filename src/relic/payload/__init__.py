"""
Extracts partition images from Android OTA (A/B) full payloads.
"""
from relic.payload.definitions import MAGIC_WORD, OperationType, ExtractionState
from relic.payload.extractor import ExtractorConfig, ExtractionStats, PayloadExtractor
from relic.payload.opener import open_payload
from relic.payload.serialization import Payload, PayloadHeader, read_payload
from relic.payload.sinks import FSPartitionSink

__version__ = "1.0.0"

__all__ = [
    "MAGIC_WORD",
    "OperationType",
    "ExtractionState",
    "ExtractorConfig",
    "ExtractionStats",
    "PayloadExtractor",
    "open_payload",
    "Payload",
    "PayloadHeader",
    "read_payload",
    "FSPartitionSink",
]
