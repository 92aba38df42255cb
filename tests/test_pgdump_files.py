"""Tests for reading dumps and writing split objects."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from pgdump_files import (  # noqa: E402
    DumpFileSystem,
    FileSystemError,
    FileSystemErrorCode,
    relative_object_path,
)
from pgdump_splitter import ObjectKind, ParsedObject, parse_dump  # noqa: E402

FIXTURES = Path(__file__).resolve().parent / "fixtures"


def sample_dump() -> str:
    return (FIXTURES / "sample-dump.sql").read_text(encoding="utf-8")


def read_error(path: Path) -> FileSystemError:
    with pytest.raises(FileSystemError) as excinfo:
        DumpFileSystem(path).read_dump()
    return excinfo.value


def test_read_dump_returns_content(tmp_path: Path) -> None:
    dump = tmp_path / "dump.sql"
    dump.write_text("CREATE SCHEMA app;\n", encoding="utf-8")
    assert DumpFileSystem(dump).read_dump() == "CREATE SCHEMA app;\n"


def test_paths_are_resolved(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    fs = DumpFileSystem("dump.sql", "out")
    assert fs.dump_file == tmp_path.resolve() / "dump.sql"
    assert fs.output_dir == tmp_path.resolve() / "out"


def test_missing_dump(tmp_path: Path) -> None:
    error = read_error(tmp_path / "nope.sql")
    assert error.code == FileSystemErrorCode.FILE_NOT_FOUND
    assert "Dump file not found" in str(error)
    assert error.path == (tmp_path / "nope.sql").resolve()


def test_directory_instead_of_dump(tmp_path: Path) -> None:
    assert read_error(tmp_path).code == FileSystemErrorCode.IS_DIRECTORY


def test_blank_dump_is_empty(tmp_path: Path) -> None:
    dump = tmp_path / "dump.sql"
    dump.write_text("  \n\n", encoding="utf-8")
    assert read_error(dump).code == FileSystemErrorCode.EMPTY_FILE


def test_undecodable_dump(tmp_path: Path) -> None:
    dump = tmp_path / "dump.sql"
    dump.write_bytes(b"CREATE SCHEMA \xff\xfe;")
    assert read_error(dump).code == FileSystemErrorCode.READ_ERROR


@pytest.mark.skipif(
    not hasattr(os, "geteuid") or os.geteuid() == 0,
    reason="file permissions are not enforced for root",
)
def test_unreadable_dump(tmp_path: Path) -> None:
    dump = tmp_path / "dump.sql"
    dump.write_text("CREATE SCHEMA app;", encoding="utf-8")
    dump.chmod(0)
    try:
        assert read_error(dump).code == FileSystemErrorCode.PERMISSION_DENIED
    finally:
        dump.chmod(0o644)


def test_relative_object_path_layout() -> None:
    schema = ParsedObject(ObjectKind.SCHEMA, "app", "app", "CREATE SCHEMA app;")
    table = ParsedObject(
        ObjectKind.TABLE, "app", "users", "CREATE TABLE app.users ();", qualified_name="app.users"
    )
    assert relative_object_path(schema) == Path("schemas") / "app.sql"
    assert relative_object_path(table) == Path("tables") / "app.users.sql"


def test_relative_object_path_escapes_separators() -> None:
    obj = ParsedObject(
        ObjectKind.VIEW, "public", '"a/b"', "CREATE VIEW ...;", qualified_name='public."a/b"'
    )
    assert relative_object_path(obj) == Path("views") / 'public."a_b".sql'


def test_write_objects(tmp_path: Path) -> None:
    result = parse_dump(sample_dump())
    out = tmp_path / "out"
    fs = DumpFileSystem(tmp_path / "dump.sql", out)

    summary = fs.write_objects(result)

    assert summary.total_objects == 8
    assert summary.written_objects == 8
    assert summary.errors == []
    assert summary.residual_written
    assert sorted(p.name for p in out.iterdir()) == [
        "domains",
        "extensions",
        "functions",
        "residual.sql",
        "schemas",
        "tables",
        "types",
        "views",
    ]
    customers = result.objects[5]
    assert (out / "tables" / "public.customers.sql").read_text(encoding="utf-8") == customers.definition
    assert (out / "schemas" / "billing.sql").read_text(encoding="utf-8") == "CREATE SCHEMA billing;"
    assert (out / "residual.sql").read_text(encoding="utf-8") == result.residual


def test_no_residual_file_without_residual(tmp_path: Path) -> None:
    out = tmp_path / "out"
    summary = DumpFileSystem(tmp_path / "dump.sql", out).write_objects(
        parse_dump("CREATE TABLE t (a int);")
    )
    assert summary.written_objects == 1
    assert not summary.residual_written
    assert not (out / "residual.sql").exists()
    assert (out / "tables" / "public.t.sql").exists()


def test_write_failure_is_recorded_per_object(tmp_path: Path) -> None:
    out = tmp_path / "out"
    out.mkdir()
    (out / "tables").write_text("not a directory", encoding="utf-8")
    result = parse_dump("CREATE SCHEMA app;\nCREATE TABLE app.t (a int);\n")

    summary = DumpFileSystem(tmp_path / "dump.sql", out).write_objects(result)

    assert summary.written_objects == 1
    assert len(summary.errors) == 1
    assert summary.errors[0].object == "table: app.t"
    assert "Failed to create directory" in summary.errors[0].error
    assert (out / "schemas" / "app.sql").exists()
