"""Parallel extraction of partition images from a full OTA payload.

Each selected partition is extracted by a single worker which applies that
partition's operations strictly in order (later operations may overwrite bytes
written by earlier ones). Workers share one payload stream through a
:class:`SharedPayloadReader`; every output image is owned by exactly one worker.

The first failing worker aborts the run: pending partitions are cancelled,
running ones stop before their next operation, and the error is re-raised.
Images already (partially) written are left as they are.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import (
    Any,
    BinaryIO,
    Callable,
    Generator,
    Generic,
    List,
    Optional,
    Sequence,
    TypeAlias,
    TypeVar,
)

from fs.errors import FSError
from relic.core.logmsg import BraceMessage

from relic.payload.codecs import render
from relic.payload.definitions import ExtractionState, OperationType
from relic.payload.errors import PayloadError, PayloadIOError
from relic.payload.hashtools import sha256
from relic.payload.serialization import (
    Payload,
    PayloadHeaderSerializer,
    ManifestSerializer,
)
from relic.payload.sinks import PartitionSink, image_name
from relic.payload.source import SharedPayloadReader
from relic.payload.update_metadata import PartitionUpdate, InstallOperation

ProgressCallback: TypeAlias = Callable[[int, int], None]

_TIn = TypeVar("_TIn")
_TOut = TypeVar("_TOut")


class FakeLogger:
    def __getattr__(self, name: Any) -> Any:
        def faker(*args: Any, **kwargs: Any) -> Any:
            return self

        return faker


@dataclass(slots=True)
class ExtractorConfig:
    num_workers: int
    logger: Optional[logging.Logger] = None
    verify_hashes: bool = False
    verbose: bool = False
    chunk_size: int = 1024 * 1024  # largest single zero-fill write


@dataclass(slots=True)
class Result(Generic[_TIn, _TOut]):
    input: _TIn
    output: _TOut | None = None
    errors: List[str | Exception] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    @classmethod
    def create_error(cls, input: _TIn, *errors: str | Exception) -> Result[_TIn, _TOut]:
        return cls(input=input, output=None, errors=list(errors))


@dataclass(slots=True)
class PartitionStats:
    name: str
    operations: int = 0
    written_bytes: int = 0
    image_size: int = 0


@dataclass(slots=True)
class ExtractionTimings:
    parsing_payload: float = 0
    extracting: float = 0

    @property
    def total_time(self) -> float:
        return self.parsing_payload + self.extracting


@dataclass(slots=True)
class ExtractionStats:
    total_partitions: int = 0
    extracted_partitions: int = 0
    failed_partitions: int = 0
    cancelled_partitions: int = 0
    partitions: List[PartitionStats] = field(default_factory=list)
    timings: ExtractionTimings = field(default_factory=ExtractionTimings)

    @property
    def written_bytes(self) -> int:
        return sum(p.written_bytes for p in self.partitions)


class PartitionExtractor:
    """Materializes one partition image per call to :meth:`extract`.

    Safe to share between workers; per-partition state lives on the stack.
    """

    def __init__(
        self,
        payload: Payload,
        reader: SharedPayloadReader,
        sink: PartitionSink,
        config: ExtractorConfig,
        cancel: Optional[threading.Event] = None,
    ):
        self._payload = payload
        self._reader = reader
        self._sink = sink
        self._verify = config.verify_hashes
        self._chunk_size = config.chunk_size
        self._cancel = cancel or threading.Event()
        self.logger = config.logger or logging.getLogger(__name__)
        self.verbose_logger = self.logger if config.verbose else FakeLogger()

    def extract(self, partition: PartitionUpdate) -> Result[PartitionUpdate, PartitionStats]:
        """Never raises; failures are returned as a result with errors.

        A result with neither output nor errors means the run was cancelled first.
        """
        try:
            stats = self._extract(partition)
        except Exception as e:
            return Result.create_error(partition, e)
        return Result(partition, stats)

    @contextmanager
    def _open(self, name: str) -> Generator[BinaryIO, Any, None]:
        try:
            handle = self._sink.open(name)
        except (OSError, FSError) as e:
            error = PayloadIOError(f"Unable to create `{image_name(name)}`: {e}")
            error.add_note(f"while extracting partition '{name}'")
            raise error from e
        with handle:
            yield handle

    def _extract(self, partition: PartitionUpdate) -> Optional[PartitionStats]:
        name = partition.partition_name
        stats = PartitionStats(name)
        self.verbose_logger.info(
            BraceMessage(
                "Extracting `{0}` ({1} operations)", name, len(partition.operations)
            )
        )
        with self._open(name) as out:
            image_end = 0
            for index, op in enumerate(partition.operations):
                if self._cancel.is_set():
                    self.logger.debug(
                        BraceMessage("Stopping `{0}` before operation {1}", name, index)
                    )
                    return None
                try:
                    end, written = self._apply(out, op)
                except PayloadError as e:
                    e.add_note(self._describe(name, index, op))
                    raise
                image_end = max(image_end, end)
                stats.operations += 1
                stats.written_bytes += written
            stats.image_size = self._pad(out, name, image_end)
        self.logger.info(BraceMessage("`{0}` extracted", image_name(name)))
        return stats

    def _describe(self, name: str, index: int, op: InstallOperation) -> str:
        return (
            f"while extracting partition '{name}', operation #{index}"
            f" (type={op.type}, source offset={self._payload.data_offset + op.data_offset},"
            f" data length={op.data_length})"
        )

    def _apply(self, out: BinaryIO, op: InstallOperation) -> tuple[int, int]:
        kind = OperationType.from_raw(op.type)
        if kind == OperationType.ZERO:
            buffer = b""
        else:
            buffer = self._reader.read_data(op.data_offset, op.data_length)
            if self._verify and op.data_sha256_hash:
                sha256().validate(buffer, op.data_sha256_hash, name="Operation Data")

        end = written = 0
        for offset, data in render(
            kind, buffer, op.dst_extents, self._payload.block_size, self._chunk_size
        ):
            try:
                out.seek(offset)
                out.write(data)
            except (OSError, FSError) as e:
                raise PayloadIOError(
                    f"Unable to write {len(data)} bytes at offset {offset}: {e}"
                ) from e
            end = max(end, offset + len(data))
            written += len(data)

        if kind != OperationType.ZERO:
            # the image spans the whole destination extent, even if the data is short
            extent = op.dst_extents[0]
            extent_end = (extent.start_block + extent.num_blocks) * self._payload.block_size
            end = max(end, extent_end)
        return end, written

    @staticmethod
    def _pad(out: BinaryIO, name: str, image_end: int) -> int:
        """Grow the image to ``image_end``; never shrinks it."""
        try:
            out.seek(0, os.SEEK_END)
            size = out.tell()
            if size < image_end:
                out.seek(image_end - 1)
                out.write(b"\0")
                size = image_end
        except OSError as e:
            raise PayloadIOError(f"Unable to resize `{image_name(name)}`: {e}") from e
        return size


class PayloadExtractor:
    """Parses a payload and extracts its partitions in parallel.

    An extractor runs once: ``IDLE -> HEADER_PARSED -> MANIFEST_PARSED -> EXTRACTING -> DONE``;
    any error moves it to ``ABORTED`` and propagates.
    """

    def __init__(self, config: ExtractorConfig):
        self._config = config
        self.logger = config.logger or logging.getLogger(__name__)
        self.verbose_logger = self.logger if config.verbose else FakeLogger()
        self.num_workers = config.num_workers
        if self.num_workers <= 0:
            self.logger.error(
                f"# of workers ({config.num_workers}) invalid, defaulting to 1"
            )
            self.num_workers = 1
        self.state = ExtractionState.IDLE
        self.stats = ExtractionStats()

    def extract(
        self,
        stream: BinaryIO,
        sink: PartitionSink,
        partitions: Optional[Sequence[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ExtractionStats:
        """Extract partitions from a payload stream positioned at its first byte.

        Args:
            stream: Readable, seekable payload
            sink: Creates one output per partition name
            partitions: Names to extract; None or empty extracts every named partition
            on_progress: Optional callback (finished, total); called once per
                selected partition, cancelled ones included

        Returns:
            Extraction statistics
        """
        try:
            with self._timer() as timer:
                payload = self._parse(stream)
                self.stats.timings.parsing_payload = timer()
            selected = self._select(payload, partitions)
            self.state = ExtractionState.EXTRACTING
            with self._timer() as timer:
                self._run(payload, stream, sink, selected, on_progress)
                self.stats.timings.extracting = timer()
        except BaseException:
            self.state = ExtractionState.ABORTED
            raise
        self.state = ExtractionState.DONE
        self._print_summary()
        return self.stats

    def _parse(self, stream: BinaryIO) -> Payload:
        self.verbose_logger.info("Parsing payload...")
        header = PayloadHeaderSerializer.read(stream)
        self.state = ExtractionState.HEADER_PARSED
        self.verbose_logger.info(
            BraceMessage(
                "version: {0}, manifest length: {1}, metadata signature length: {2}",
                header.version,
                header.manifest_size,
                header.metadata_signature_size,
            )
        )
        manifest = ManifestSerializer.read(stream, header)
        self.state = ExtractionState.MANIFEST_PARSED
        return Payload(header, manifest)

    def _select(
        self, payload: Payload, names: Optional[Sequence[str]]
    ) -> List[PartitionUpdate]:
        selected = list(payload.iter_partitions(names))
        if names:
            found = {p.partition_name for p in selected}
            for name in names:
                if name not in found:
                    self.logger.warning(
                        BraceMessage("Partition `{0}` not found in payload", name)
                    )
        self.verbose_logger.info(
            BraceMessage(
                "Selected {0} of {1} partitions",
                len(selected),
                len(payload.partitions),
            )
        )
        self.stats.total_partitions = len(selected)
        return selected

    def _run(
        self,
        payload: Payload,
        stream: BinaryIO,
        sink: PartitionSink,
        selected: Sequence[PartitionUpdate],
        on_progress: Optional[ProgressCallback],
    ) -> None:
        if len(selected) == 0:
            self.logger.info("No partitions to extract")
            return

        cancel = threading.Event()
        reader = SharedPayloadReader(stream, payload.data_offset)
        extractor = PartitionExtractor(payload, reader, sink, self._config, cancel)
        first_error: Optional[Exception] = None
        total = len(selected)

        self.verbose_logger.info(f"Using {self.num_workers} workers")
        with ThreadPoolExecutor(max_workers=self.num_workers) as executor:
            futures = [executor.submit(extractor.extract, p) for p in selected]
            for finished, future in enumerate(as_completed(futures), start=1):
                if future.cancelled():
                    self.stats.cancelled_partitions += 1
                    if on_progress is not None:
                        on_progress(finished, total)
                    continue
                result = future.result()
                if result.has_errors:
                    self.stats.failed_partitions += 1
                    for error in result.errors:
                        self.logger.error(
                            BraceMessage(
                                "Failed to extract `{0}`: {1}",
                                result.input.partition_name,
                                error,
                            )
                        )
                    if first_error is None:
                        first_error = self._as_exception(result.errors[0])
                        cancel.set()
                        for pending in futures:
                            pending.cancel()
                elif result.output is None:
                    self.stats.cancelled_partitions += 1
                else:
                    self.stats.extracted_partitions += 1
                    self.stats.partitions.append(result.output)
                if on_progress is not None:
                    on_progress(finished, total)

        if first_error is not None:
            raise first_error

    @staticmethod
    def _as_exception(error: str | Exception) -> Exception:
        if isinstance(error, Exception):
            return error
        return PayloadError(error)

    def _print_summary(self) -> None:
        self.logger.info("Extraction complete!")
        self.logger.info(f"  Total:      {self.stats.total_partitions}")
        self.logger.info(f"  Successful: {self.stats.extracted_partitions}")
        self.logger.info(f"  Written:    {self.stats.written_bytes} bytes")
        self.verbose_logger.info("Timings")
        self.verbose_logger.info(
            f"  Parsing Payload:      {self.stats.timings.parsing_payload:.4f}"
        )
        self.verbose_logger.info(
            f"  Extracting:           {self.stats.timings.extracting:.4f}"
        )
        self.verbose_logger.info(
            f"  Total Time:           {self.stats.timings.total_time:.4f}"
        )

    @contextmanager
    def _timer(self) -> Generator[Callable[[], float], Any, None]:
        t0 = time.perf_counter()

        def delta() -> float:
            return time.perf_counter() - t0

        yield delta


__all__ = [
    "ProgressCallback",
    "ExtractorConfig",
    "Result",
    "PartitionStats",
    "ExtractionTimings",
    "ExtractionStats",
    "PartitionExtractor",
    "PayloadExtractor",
]
