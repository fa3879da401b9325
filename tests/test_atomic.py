from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from planstate.errors import PersistenceError
from planstate.tools import atomic
from planstate.tools.atomic import (
    read_json,
    read_json_optional,
    read_multiple,
    write_atomic,
    write_json,
    write_multiple_atomic,
)


def _temp_leftovers(directory: Path) -> list[str]:
    return [entry.name for entry in directory.iterdir() if ".tmp." in entry.name]


def test_write_atomic_replaces_content_and_creates_parents(tmp_path) -> None:
    target = tmp_path / "nested" / "state.json"

    write_atomic(target, "first\n")
    write_atomic(target, "second\n")

    assert target.read_text(encoding="utf-8") == "second\n"
    assert _temp_leftovers(target.parent) == []


def test_failed_rename_leaves_target_byte_identical(tmp_path, monkeypatch) -> None:
    target = tmp_path / "state.json"
    target.write_bytes(b'{"old": true}\n')

    def explode(src, dst):
        raise OSError("simulated crash before rename")

    monkeypatch.setattr(atomic.os, "replace", explode)

    with pytest.raises(PersistenceError) as excinfo:
        write_atomic(target, '{"new": true}\n')

    assert excinfo.value.code == "ATOMIC_WRITE_FAILURE"
    assert "simulated crash" in excinfo.value.details["cause"]
    assert target.read_bytes() == b'{"old": true}\n'
    assert _temp_leftovers(tmp_path) == []


def test_failed_temp_write_leaves_target_untouched(tmp_path, monkeypatch) -> None:
    target = tmp_path / "state.json"
    target.write_text("original", encoding="utf-8")

    def broken_fsync(fd):
        raise OSError("disk full")

    monkeypatch.setattr(atomic.os, "fsync", broken_fsync)

    with pytest.raises(PersistenceError):
        write_atomic(target, "replacement")

    assert target.read_text(encoding="utf-8") == "original"
    assert _temp_leftovers(tmp_path) == []


def test_write_multiple_atomic_writes_every_file(tmp_path) -> None:
    files = {
        tmp_path / "a.json": "A",
        tmp_path / "sub" / "b.json": "B",
    }

    write_multiple_atomic(files)

    assert (tmp_path / "a.json").read_text(encoding="utf-8") == "A"
    assert (tmp_path / "sub" / "b.json").read_text(encoding="utf-8") == "B"


def test_write_multiple_atomic_touches_nothing_when_a_temp_write_fails(tmp_path, monkeypatch) -> None:
    first = tmp_path / "first.json"
    second = tmp_path / "second.json"
    first.write_text("old-1", encoding="utf-8")
    second.write_text("old-2", encoding="utf-8")

    real_fsync = os.fsync
    calls = {"count": 0}

    def flaky_fsync(fd):
        calls["count"] += 1
        if calls["count"] == 2:
            raise OSError("second temp write failed")
        return real_fsync(fd)

    monkeypatch.setattr(atomic.os, "fsync", flaky_fsync)

    with pytest.raises(PersistenceError) as excinfo:
        write_multiple_atomic({first: "new-1", second: "new-2"})

    assert excinfo.value.code == "ATOMIC_WRITE_FAILURE"
    assert first.read_text(encoding="utf-8") == "old-1"
    assert second.read_text(encoding="utf-8") == "old-2"
    assert _temp_leftovers(tmp_path) == []


def test_write_multiple_atomic_reports_partial_rename(tmp_path, monkeypatch) -> None:
    first = tmp_path / "first.json"
    second = tmp_path / "second.json"

    real_replace = os.replace

    def failing_second(src, dst):
        if Path(dst) == second:
            raise OSError("rename failed")
        return real_replace(src, dst)

    monkeypatch.setattr(atomic.os, "replace", failing_second)

    with pytest.raises(PersistenceError) as excinfo:
        write_multiple_atomic({first: "one", second: "two"})

    assert excinfo.value.code == "ATOMIC_RENAME_FAILURE"
    assert excinfo.value.details["renamed"] == [first.as_posix()]
    assert first.read_text(encoding="utf-8") == "one"
    assert not second.exists()
    assert _temp_leftovers(tmp_path) == []


def test_read_json_error_codes(tmp_path) -> None:
    with pytest.raises(PersistenceError) as missing:
        read_json(tmp_path / "absent.json")
    assert missing.value.code == "FILE_NOT_FOUND"

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(PersistenceError) as invalid:
        read_json(broken)
    assert invalid.value.code == "INVALID_JSON"

    assert read_json_optional(tmp_path / "absent.json") is None


def test_write_json_round_trips_unicode(tmp_path) -> None:
    target = tmp_path / "doc.json"
    write_json(target, {"name": "Größe", "items": [1, 2]})

    assert json.loads(target.read_text(encoding="utf-8")) == {"name": "Größe", "items": [1, 2]}
    assert "Größe" in target.read_text(encoding="utf-8")


def test_read_multiple_lists_every_failure(tmp_path) -> None:
    good = tmp_path / "good.json"
    good.write_text('{"ok": 1}', encoding="utf-8")
    bad = tmp_path / "bad.json"
    bad.write_text("nope", encoding="utf-8")

    assert read_multiple([good]) == {good: {"ok": 1}}

    with pytest.raises(PersistenceError) as excinfo:
        read_multiple([good, bad, tmp_path / "missing.json"])

    assert excinfo.value.code == "PARTIAL_READ_FAILURE"
    assert set(excinfo.value.details["errors"]) == {bad.as_posix(), (tmp_path / "missing.json").as_posix()}
