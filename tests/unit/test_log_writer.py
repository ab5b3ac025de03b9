from __future__ import annotations

import fcntl
import json
import os

import pytest

from chatwal.domain.errors import PersistenceError
from chatwal.persistence.log_writer import LogWriter, dumps_line


def test_append_writes_one_line_per_record_and_leaves_no_temp_file(tmp_path):
    path = tmp_path / "log.ndjson"
    w = LogWriter()

    w.atomic_append(path, dumps_line({"n": 1}))
    w.append_record(path, {"n": 2})

    lines = path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(l)["n"] for l in lines] == [1, 2]
    assert not (tmp_path / "log.ndjson.tmp").exists()


def test_torn_last_line_does_not_absorb_next_record(tmp_path):
    path = tmp_path / "log.ndjson"
    path.write_text('{"n": 1}\n{"n": 2, "trunc', encoding="utf-8")
    w = LogWriter()

    w.append_record(path, {"n": 3})
    records, skipped = w.read_records(path)

    assert [r["n"] for r in records] == [1, 3]
    assert skipped == 1


def test_read_records_skips_garbage_and_non_objects(tmp_path):
    path = tmp_path / "log.ndjson"
    path.write_text('{"a": 1}\nnot json\n[1, 2]\n\n{"a": 2}\n', encoding="utf-8")

    records, skipped = LogWriter().read_records(path)

    assert records == [{"a": 1}, {"a": 2}]
    assert skipped == 2


def test_read_records_on_missing_file_is_empty(tmp_path):
    assert LogWriter().read_records(tmp_path / "nope.ndjson") == ([], 0)


def test_lock_contention_fails_fast_with_persistence_error(tmp_path):
    path = tmp_path / "log.ndjson"
    lock_path = tmp_path / "log.ndjson.lock"
    fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
    fcntl.flock(fd, fcntl.LOCK_EX)
    try:
        with pytest.raises(PersistenceError) as ei:
            LogWriter(lock_timeout_s=0.1).append_record(path, {"n": 1})
        assert "log.ndjson" in ei.value.detail
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)
    assert not path.exists()


def test_unwritable_target_raises_persistence_error(tmp_path):
    path = tmp_path / "log.ndjson"
    path.mkdir()  # a directory where the log file should be

    with pytest.raises(PersistenceError):
        LogWriter().append_record(path, {"n": 1})


def test_atomic_replace_and_tail(tmp_path):
    path = tmp_path / "log.ndjson"
    w = LogWriter()
    for i in range(5):
        w.append_record(path, {"n": i})

    assert [r["n"] for r in w.tail(path, 2)] == [3, 4]

    w.atomic_replace(path, dumps_line({"n": 99}) + "\n")
    assert w.read_records(path) == ([{"n": 99}], 0)


def test_file_stats_and_ensure_exists(tmp_path):
    path = tmp_path / "sub" / "x.ndjson"
    w = LogWriter()
    assert w.file_stats(path)["exists"] is False

    assert w.ensure_exists(path) is True
    assert w.ensure_exists(path) is False
    stats = w.file_stats(path)
    assert stats["exists"] is True and stats["size"] == 0


def test_compact_keeps_matching_records_and_drops_garbage(tmp_path):
    path = tmp_path / "log.ndjson"
    path.write_text('{"id": "a"}\nnot json\n{"id": "b"}\n{"id": "c"}\n', encoding="utf-8")
    w = LogWriter()

    kept, dropped = w.compact(path, lambda rec: rec["id"] != "b")

    assert (kept, dropped) == (2, 2)
    assert [r["id"] for r in w.read_records(path)[0]] == ["a", "c"]
    assert w.compact(tmp_path / "missing.ndjson", lambda rec: True) == (0, 0)
