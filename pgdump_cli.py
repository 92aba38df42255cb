"""Command line entry point: split a pg_dump schema file into per-object files."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import List, Optional, Sequence

from pgdump_files import DumpFileSystem, FileSystemError, WriteObjectError
from pgdump_splitter import ParseResult, parse_dump

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_DIR = "output"

DESCRIPTION = "Splits a PostgreSQL dump file into individual object files organized by type."

EPILOG = """\
examples:
  pgdump-split -f dump.sql
  pgdump-split -f dump.sql -d ./schemas
  pgdump-split --file /path/to/dump.sql --dry-run

output structure:
  output/
  |-- schemas/
  |-- tables/
  |-- views/
  |-- functions/
  `-- residual.sql (unparsed content)
"""


class CLIErrorCode(Enum):
    MISSING_ARG = auto()
    INVALID_PATH = auto()


class CLIError(Exception):
    """Raised for invalid command line usage."""

    def __init__(self, message: str, code: CLIErrorCode) -> None:
        super().__init__(message)
        self.code = code


@dataclass
class CLIOptions:
    file: str
    directory: str = DEFAULT_OUTPUT_DIR
    dry_run: bool = False
    verbose: bool = False


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pgdump-split",
        description=DESCRIPTION,
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-f", "--file", help="path to pg_dump file (required)")
    parser.add_argument(
        "-d",
        "--directory",
        default=DEFAULT_OUTPUT_DIR,
        help="output directory (default: 'output' in the current working directory)",
    )
    parser.add_argument("-r", "--dry-run", action="store_true", help="parse without writing files")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    return parser


def parse_options(argv: Optional[Sequence[str]] = None) -> CLIOptions:
    args = build_arg_parser().parse_args(argv)
    if not args.file:
        raise CLIError("Missing required argument: --file", CLIErrorCode.MISSING_ARG)
    if not args.directory:
        raise CLIError("Output directory must not be empty", CLIErrorCode.INVALID_PATH)
    return CLIOptions(
        file=args.file,
        directory=args.directory,
        dry_run=args.dry_run,
        verbose=args.verbose,
    )


def format_bytes(size: float) -> str:
    units = ["bytes", "kB", "MB", "GB"]
    unit = 0
    while size >= 1024 and unit < len(units) - 1:
        size /= 1024
        unit += 1
    return f"{size:.2f} {units[unit]}"


def format_duration(ms: float) -> str:
    if ms < 1000:
        return f"{ms:.0f} ms"
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.2f} sec"
    minutes = int(seconds // 60)
    return f"{minutes} min {seconds % 60:.0f} sec"


def summarize_kinds(result: ParseResult) -> List[str]:
    return [f"{kind.capitalize()}s: {count}" for kind, count in result.counts_by_kind().items()]


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def _report_write_errors(errors: List[WriteObjectError]) -> None:
    if not errors:
        return
    logger.error("Errors encountered: %d", len(errors))
    for item in errors:
        logger.error("  - %s: %s", item.object, item.error)


def run(options: CLIOptions) -> None:
    start = time.perf_counter()
    filesystem = DumpFileSystem(options.file, options.directory)
    logger.info("Processing dump file: %s", filesystem.dump_file)

    logger.info("Reading dump file...")
    content = filesystem.read_dump()
    logger.info("Dump size: %s", format_bytes(len(content.encode(filesystem.config.encoding))))

    logger.info("Parsing SQL statements...")
    result = parse_dump(content)
    logger.info("Parsed %d objects in %s", len(result.objects), format_duration(_elapsed_ms(start)))

    logger.info("Object types:")
    for line in summarize_kinds(result):
        logger.info("  %s", line)
    logger.info("Residual content: %s", "Yes" if result.residual else "No")

    if options.dry_run:
        logger.info("Dry run mode: skipping output")
        return

    logger.info("Writing files to: %s", filesystem.output_dir)
    summary = filesystem.write_objects(result)
    logger.info("Objects written: %d", summary.written_objects)
    logger.info("Processing completed in %s", format_duration(_elapsed_ms(start)))
    _report_write_errors(summary.errors)


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        options = parse_options(argv)
    except CLIError as exc:
        logging.basicConfig(level=logging.INFO, format="%(message)s")
        logger.error("Error: %s", exc)
        if exc.code == CLIErrorCode.MISSING_ARG:
            logger.error("Use --help for usage information")
        return 1

    logging.basicConfig(
        level=logging.DEBUG if options.verbose else logging.INFO,
        format="%(message)s",
    )
    try:
        run(options)
    except FileSystemError as exc:
        logger.error("Error: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
