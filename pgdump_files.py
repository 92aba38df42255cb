"""Reading pg_dump files and writing split objects to an output tree."""

from __future__ import annotations

import errno
import logging
import re
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import List, Optional, Union

from pgdump_splitter import ParsedObject, ParseResult

logger = logging.getLogger(__name__)

RESIDUAL_FILENAME = "residual.sql"

_UNSAFE_FILENAME_CHARS = re.compile(r"[/\\\x00]")


class FileSystemErrorCode(Enum):
    EMPTY_FILE = auto()
    FILE_NOT_FOUND = auto()
    IS_DIRECTORY = auto()
    MKDIR_ERROR = auto()
    PERMISSION_DENIED = auto()
    READ_ERROR = auto()
    WRITE_ERROR = auto()


class FileSystemError(Exception):
    """Raised when the dump cannot be read or an output file cannot be written."""

    def __init__(self, message: str, code: FileSystemErrorCode, path: Optional[Path] = None) -> None:
        super().__init__(message)
        self.code = code
        self.path = path


@dataclass
class FileSystemConfig:
    encoding: str = "utf-8"
    dir_permissions: int = 0o755


@dataclass
class WriteObjectError:
    object: str
    error: str


@dataclass
class WriteObjectsSummary:
    total_objects: int
    written_objects: int = 0
    errors: List[WriteObjectError] = field(default_factory=list)
    residual_written: bool = False


def relative_object_path(obj: ParsedObject) -> Path:
    """``<kind>s/<qualified name or name>.sql`` relative to the output directory."""

    stem = _UNSAFE_FILENAME_CHARS.sub("_", obj.path_stem)
    return Path(f"{obj.kind.value}s") / f"{stem}.sql"


def _describe(obj: ParsedObject) -> str:
    return f"{obj.kind.value}: {obj.path_stem}"


class DumpFileSystem:
    """Dump input file plus output directory, both resolved to absolute paths."""

    def __init__(
        self,
        dump_file: Union[str, Path],
        output_dir: Union[str, Path] = "output",
        config: Optional[FileSystemConfig] = None,
    ) -> None:
        self.dump_file = Path(dump_file).resolve()
        self.output_dir = Path(output_dir).resolve()
        self.config = config or FileSystemConfig()

    def read_dump(self) -> str:
        path = self.dump_file
        try:
            content = path.read_text(encoding=self.config.encoding)
        except FileNotFoundError:
            raise FileSystemError(
                f"Dump file not found: {path}", FileSystemErrorCode.FILE_NOT_FOUND, path
            ) from None
        except IsADirectoryError:
            raise FileSystemError(
                f"Path is a directory, not a file: {path}", FileSystemErrorCode.IS_DIRECTORY, path
            ) from None
        except PermissionError as exc:
            # Windows reports directories as EACCES
            if path.is_dir():
                raise FileSystemError(
                    f"Path is a directory, not a file: {path}", FileSystemErrorCode.IS_DIRECTORY, path
                ) from exc
            raise FileSystemError(
                f"Permission denied reading: {path}", FileSystemErrorCode.PERMISSION_DENIED, path
            ) from exc
        except (OSError, UnicodeDecodeError) as exc:
            if isinstance(exc, OSError) and exc.errno == errno.EISDIR:
                raise FileSystemError(
                    f"Path is a directory, not a file: {path}", FileSystemErrorCode.IS_DIRECTORY, path
                ) from exc
            raise FileSystemError(
                f"Failed to read dump file: {exc}", FileSystemErrorCode.READ_ERROR, path
            ) from exc

        if not content.strip():
            raise FileSystemError("Dump file is empty", FileSystemErrorCode.EMPTY_FILE, path)
        return content

    def object_path(self, obj: ParsedObject) -> Path:
        return self.output_dir / relative_object_path(obj)

    def write_objects(self, result: ParseResult) -> WriteObjectsSummary:
        summary = WriteObjectsSummary(total_objects=len(result.objects))

        for obj in result.objects:
            try:
                self._write_object(obj)
            except FileSystemError as exc:
                logger.debug("Failed to write %s: %s", _describe(obj), exc)
                summary.errors.append(WriteObjectError(_describe(obj), str(exc)))
                continue
            summary.written_objects += 1

        if result.residual:
            residual_path = self.output_dir / RESIDUAL_FILENAME
            try:
                self._ensure_directory(self.output_dir)
                self._write_text(residual_path, result.residual)
            except FileSystemError as exc:
                summary.errors.append(WriteObjectError(RESIDUAL_FILENAME, str(exc)))
            else:
                summary.residual_written = True

        return summary

    def _write_object(self, obj: ParsedObject) -> None:
        path = self.object_path(obj)
        self._ensure_directory(path.parent)
        try:
            self._write_text(path, obj.definition)
        except FileSystemError as exc:
            raise FileSystemError(
                f"Failed to write {obj.kind.value} {path.name}", FileSystemErrorCode.WRITE_ERROR, path
            ) from exc

    def _write_text(self, path: Path, text: str) -> None:
        try:
            # newline="" keeps the dump's own line endings
            with path.open("w", encoding=self.config.encoding, newline="") as fh:
                fh.write(text)
        except OSError as exc:
            raise FileSystemError(str(exc), FileSystemErrorCode.WRITE_ERROR, path) from exc

    def _ensure_directory(self, path: Path) -> None:
        try:
            path.mkdir(mode=self.config.dir_permissions, parents=True, exist_ok=True)
        except OSError as exc:
            raise FileSystemError(
                f"Failed to create directory: {path}", FileSystemErrorCode.MKDIR_ERROR, path
            ) from exc
