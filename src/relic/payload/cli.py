from __future__ import annotations

import dataclasses
import json
import logging
import multiprocessing
import os.path
from argparse import ArgumentParser, Namespace
from json import JSONEncoder
from logging import Logger
from typing import Optional, Any, Dict, List

from fs import open_fs
from relic.core.cli import CliPluginGroup, _SubParsersAction, CliPlugin, RelicArgParser
from relic.core.cli import (
    get_file_type_validator,
    get_dir_type_validator,
    get_path_validator,
)
from relic.core.logmsg import BraceMessage

from relic.payload.definitions import MAGIC_WORD
from relic.payload.errors import PayloadError
from relic.payload.extractor import ExtractorConfig, PayloadExtractor
from relic.payload.opener import open_payload
from relic.payload.serialization import read_payload, PayloadHeaderSerializer
from relic.payload.sinks import FSPartitionSink

_SUCCESS = 0
_FAILURE = 1


class RelicPayloadCli(CliPluginGroup):
    GROUP = "relic.cli.payload"

    def _create_parser(
        self, command_group: Optional[_SubParsersAction] = None
    ) -> ArgumentParser:
        name = "payload"
        if command_group is None:
            return RelicArgParser(name)
        return command_group.add_parser(name)


class RelicPayloadExtractCli(CliPlugin):
    def _create_parser(
        self, command_group: Optional[_SubParsersAction] = None
    ) -> ArgumentParser:
        parser: ArgumentParser
        desc = """Extract partition images from an OTA payload.
            The payload may be a bare 'payload.bin' or an OTA zip containing one.
            Each partition is written to '[partition].img' in out_dir."""
        if command_group is None:
            parser = RelicArgParser("extract", description=desc)
        else:
            parser = command_group.add_parser("extract", description=desc)

        parser.add_argument(
            "src_payload",
            type=get_file_type_validator(exists=True),
            help="Source Payload (or OTA zip)",
        )
        parser.add_argument(
            "out_dir",
            type=get_dir_type_validator(exists=False),
            help="Output Directory",
        )
        parser.add_argument(
            "-p",
            "--partitions",
            nargs="+",
            metavar="NAME",
            default=None,
            help="Only extract the named partitions (default: all)",
        )
        parser.add_argument(
            "--workers",
            type=int,
            help="Number of partitions extracted in parallel (default: CPU count)",
            default=None,
        )
        parser.add_argument(
            "--verify",
            help="Verify the SHA-256 of every operation's data before writing it",
            action="store_true",
            default=False,
        )
        parser.add_argument(
            "-v",
            "--verbose",
            help="Log parsing and timing details",
            action="store_true",
            default=False,
        )

        return parser

    def command(self, ns: Namespace, *, logger: Logger) -> Optional[int]:
        infile: str = ns.src_payload
        outdir: str = ns.out_dir
        partitions: Optional[List[str]] = ns.partitions
        num_workers: Optional[int] = ns.workers

        if num_workers is None:
            num_workers = max(1, multiprocessing.cpu_count())

        logger.info(BraceMessage("Extracting `{0}`", infile))
        config = ExtractorConfig(
            num_workers=num_workers,
            logger=logger,
            verify_hashes=ns.verify,
            verbose=ns.verbose,
        )
        extractor = PayloadExtractor(config)
        try:
            with open_payload(infile, logger=logger) as payload:
                with open_fs(outdir, writeable=True, create=True) as out_fs:
                    extractor.extract(payload, FSPartitionSink(out_fs), partitions)
        except PayloadError as e:
            # images written before the failure are left in out_dir
            logger.error(BraceMessage("Extraction failed: {0}", e))
            for note in getattr(e, "__notes__", []):
                logger.error(note)
            return _FAILURE

        return _SUCCESS


class PayloadInfoEncoder(JSONEncoder):
    def default(self, o: Any) -> Any:
        if dataclasses.is_dataclass(o):
            return dataclasses.asdict(o)  # type: ignore
        if isinstance(o, bytes):
            return o.decode("ascii", errors="replace")
        return super().default(o)


class RelicPayloadInfoCli(CliPlugin):
    _JSON_MINIFY_KWARGS: Dict[str, Any] = {"separators": (",", ":"), "indent": None}
    _JSON_MAXIFY_KWARGS: Dict[str, Any] = {"separators": (", ", ": "), "indent": 4}

    def _create_parser(
        self, command_group: Optional[_SubParsersAction] = None
    ) -> ArgumentParser:
        parser: ArgumentParser
        desc = """Reads an OTA payload and writes its manifest summary to a json object.
            If out_json is a directory; the name of the file will be '[name of payload].json'
        """
        if command_group is None:
            parser = RelicArgParser("info", description=desc)
        else:
            parser = command_group.add_parser("info", description=desc)

        parser.add_argument(
            "src_payload",
            type=get_file_type_validator(exists=True),
            help="Source Payload (or OTA zip)",
        )
        parser.add_argument(
            "out_json",
            type=get_path_validator(exists=False),
            help="Output File or Directory",
        )
        parser.add_argument(
            "-m",
            "--minify",
            action="store_true",
            default=False,
            help="Minifies the resulting json by stripping whitespace, newlines, and indentations. Reduces filesize",
        )

        return parser

    def command(self, ns: Namespace, *, logger: Logger) -> Optional[int]:
        infile: str = ns.src_payload
        outjson: str = ns.out_json
        minify: bool = ns.minify

        logger.info(BraceMessage("Reading Info `{0}`", infile))

        try:
            with open_payload(infile, logger=logger) as payload:
                info = read_payload(payload).info_tree()
        except PayloadError as e:
            logger.error(BraceMessage("Unable to read payload: {0}", e))
            return _FAILURE

        outjson_dir, outjson_file = os.path.split(outjson)
        if len(outjson_file) == 0 or (
            os.path.exists(outjson) and os.path.isdir(outjson)
        ):  # Directory
            outjson_dir = outjson
            outjson_file = os.path.splitext(os.path.split(infile)[1])[0] + ".json"

        if outjson_dir:
            os.makedirs(outjson_dir, exist_ok=True)
        outjson = os.path.join(outjson_dir, outjson_file)

        with open(outjson, "w", encoding=None) as info_h:
            json_kwargs: Dict[str, Any] = (
                self._JSON_MINIFY_KWARGS if minify else self._JSON_MAXIFY_KWARGS
            )
            json.dump(info, info_h, cls=PayloadInfoEncoder, **json_kwargs)

        return _SUCCESS


class RelicPayloadVersionCli(CliPlugin):
    def _create_parser(
        self, command_group: Optional[_SubParsersAction] = None
    ) -> ArgumentParser:
        parser: ArgumentParser
        if command_group is None:
            parser = RelicArgParser("version")
        else:
            parser = command_group.add_parser("version")

        parser.add_argument(
            "payload",
            type=get_file_type_validator(exists=True),
            help="Payload File",
        )

        return parser

    def command(self, ns: Namespace, *, logger: logging.Logger) -> Optional[int]:
        payload_file: str = ns.payload
        logger.info("Payload Version")
        try:
            with open(payload_file, "rb") as payload:
                is_payload = MAGIC_WORD.check(payload, advance=True)
                payload.seek(0)
                if not is_payload:
                    logger.warning("File is not a Payload")
                else:
                    header = PayloadHeaderSerializer.read(payload)
                    logger.info(BraceMessage("Version {0}", header.version))
        except PayloadError as e:
            logger.warning(BraceMessage("Unsupported Payload: {0}", e))
        except IOError:  # pragma: nocover
            logger.error("Error reading file")
            raise
        return None


__all__ = [
    "RelicPayloadCli",
    "RelicPayloadExtractCli",
    "PayloadInfoEncoder",
    "RelicPayloadInfoCli",
    "RelicPayloadVersionCli",
]
