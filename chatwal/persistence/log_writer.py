# chatwal/persistence/log_writer.py
from __future__ import annotations
import fcntl, json, logging, os, threading, time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator

from chatwal.domain.errors import PersistenceError

log = logging.getLogger("chatwal")


class LogWriter:
    """
    Crash-safe writer for newline-delimited JSON files.

    Every mutation goes: lock -> read current -> write <file>.tmp -> fsync -> os.replace.
    The rename is atomic on the same filesystem, so readers see either the old file
    or the new one, never a half-written one.

    Locking is two-level:
      - a per-path threading.Lock serializes writers inside this process
        (callers dispatch writes through asyncio.to_thread)
      - an fcntl.flock on <file>.lock protects against a second process
    Acquisition is retried with exponential backoff up to `lock_timeout_s`,
    then fails with PersistenceError instead of blocking forever.
    """
    def __init__(self, lock_timeout_s: float = 5.0):
        self.lock_timeout_s = lock_timeout_s
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # -------- helpers
    def _fsync_file(self, f) -> None:
        f.flush()
        os.fsync(f.fileno())

    def _thread_lock(self, path: Path) -> threading.Lock:
        key = str(path.resolve())
        with self._locks_guard:
            if key not in self._locks:
                self._locks[key] = threading.Lock()
            return self._locks[key]

    @contextmanager
    def _locked(self, path: Path) -> Iterator[None]:
        deadline = time.monotonic() + self.lock_timeout_s
        tlock = self._thread_lock(path)
        if not tlock.acquire(timeout=self.lock_timeout_s):
            raise PersistenceError(f"Timed out waiting for in-process lock on {path.name}", str(path))
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            lock_path = path.with_name(path.name + ".lock")
            fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
            try:
                delay = 0.01
                while True:
                    try:
                        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                        break
                    except BlockingIOError:
                        if time.monotonic() >= deadline:
                            raise PersistenceError(f"Lock contention on {path.name}", str(path))
                        time.sleep(delay)
                        delay = min(delay * 2, 0.25)
                try:
                    os.ftruncate(fd, 0)
                    os.write(fd, str(os.getpid()).encode())
                    yield
                finally:
                    fcntl.flock(fd, fcntl.LOCK_UN)
            finally:
                os.close(fd)
        finally:
            tlock.release()

    def _write_via_tmp(self, path: Path, data: str) -> None:
        tmp = path.with_name(path.name + ".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(data)
                self._fsync_file(f)
            os.replace(tmp, path)  # atomic on same fs
        except OSError:
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                log.warning("[log] could not remove temp file %s", tmp)
            raise

    # -------- writes
    def atomic_append(self, path: Path, line: str) -> None:
        """Append one line. Raises PersistenceError; never returns without the line on disk."""
        if not line.endswith("\n"):
            line += "\n"
        try:
            with self._locked(path):
                existing = path.read_text(encoding="utf-8") if path.exists() else ""
                # a torn last line must not swallow the new record
                if existing and not existing.endswith("\n"):
                    existing += "\n"
                self._write_via_tmp(path, existing + line)
        except PersistenceError:
            raise
        except OSError as exc:
            raise PersistenceError(f"append to {path.name} failed: {exc}", str(path)) from exc

    def atomic_replace(self, path: Path, content: str) -> None:
        try:
            with self._locked(path):
                self._write_via_tmp(path, content)
        except PersistenceError:
            raise
        except OSError as exc:
            raise PersistenceError(f"replace of {path.name} failed: {exc}", str(path)) from exc

    def append_record(self, path: Path, record: dict[str, Any]) -> None:
        self.atomic_append(path, dumps_line(record))

    def compact(self, path: Path, keep: Callable[[dict[str, Any]], bool]) -> tuple[int, int]:
        """
        Rewrite `path` keeping only records for which `keep` is true.
        Read and rewrite happen under one lock, so a concurrent append is never lost.
        Returns (kept, dropped); unparsable lines are dropped.
        """
        try:
            with self._locked(path):
                if not path.exists():
                    return 0, 0
                kept: list[str] = []
                dropped = 0
                for line in path.read_text(encoding="utf-8").splitlines():
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        obj = json.loads(line)
                    except json.JSONDecodeError:
                        dropped += 1
                        continue
                    if isinstance(obj, dict) and keep(obj):
                        kept.append(line + "\n")
                    else:
                        dropped += 1
                self._write_via_tmp(path, "".join(kept))
                return len(kept), dropped
        except PersistenceError:
            raise
        except OSError as exc:
            raise PersistenceError(f"compaction of {path.name} failed: {exc}", str(path)) from exc

    # -------- reads
    def read_records(self, path: Path) -> tuple[list[dict[str, Any]], int]:
        """Return (records, skipped). Unparsable lines are skipped, never fatal."""
        if not path.exists():
            return [], 0
        records: list[dict[str, Any]] = []
        skipped = 0
        with open(path, "r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    obj = json.loads(line)
                except json.JSONDecodeError:
                    skipped += 1
                    log.warning("[log] skipping unparsable line %d in %s", lineno, path.name)
                    continue
                if not isinstance(obj, dict):
                    skipped += 1
                    log.warning("[log] skipping non-object line %d in %s", lineno, path.name)
                    continue
                records.append(obj)
        return records, skipped

    def tail(self, path: Path, n: int) -> list[dict[str, Any]]:
        records, _ = self.read_records(path)
        return records[-n:] if n > 0 else []

    # -------- misc
    def ensure_exists(self, path: Path) -> bool:
        """Create an empty file if missing. Returns True when created."""
        if path.exists():
            return False
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch()
        return True

    def file_stats(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            return {"exists": False, "path": str(path)}
        st = path.stat()
        return {
            "exists": True,
            "path": str(path),
            "size": st.st_size,
            "last_modified": datetime.fromtimestamp(st.st_mtime, timezone.utc).isoformat(),
        }


def dumps_line(record: dict[str, Any]) -> str:
    return json.dumps(record, separators=(",", ":"), ensure_ascii=False)
