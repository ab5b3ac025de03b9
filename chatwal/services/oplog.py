from __future__ import annotations
import asyncio
import logging
from pathlib import Path
from typing import Any

from chatwal.domain.models import OperationEntry
from chatwal.persistence.log_writer import LogWriter, dumps_line

log = logging.getLogger("chatwal")

_STDLIB_LEVELS = {"ERROR": logging.ERROR, "WARN": logging.WARNING, "INFO": logging.INFO}


def level_for(operation: str) -> str:
    name = operation.upper()
    if "ERROR" in name or "FAILED" in name:
        return "ERROR"
    if "WARN" in name or "RETRY" in name:
        return "WARN"
    return "INFO"


class OperationLogger:
    """Append-only audit trail of durability operations, mirrored to the `chatwal` logger."""

    def __init__(self, writer: LogWriter, path: Path):
        self.writer = writer
        self.path = path

    async def log_operation(self, operation: str, data: dict[str, Any] | None = None) -> None:
        entry = OperationEntry(operation=operation, data=data or {}, level=level_for(operation))
        try:
            line = dumps_line(entry.model_dump(mode="json"))
            await asyncio.to_thread(self.writer.atomic_append, self.path, line)
        except Exception as exc:
            # auditing must never fail the caller
            log.error("[oplog] failed to record %s: %s", operation, exc)
        log.log(_STDLIB_LEVELS[entry.level], "%s: %s", operation, entry.data)

    async def recent(self, limit: int = 100, level: str | None = None) -> list[OperationEntry]:
        records, _ = await asyncio.to_thread(self.writer.read_records, self.path)
        entries: list[OperationEntry] = []
        for rec in records[-limit:] if limit > 0 else []:
            try:
                entries.append(OperationEntry(**rec))
            except ValueError:
                continue
        if level:
            wanted = level.upper()
            entries = [e for e in entries if e.level == wanted]
        return entries

    async def find(self, operation: str) -> list[OperationEntry]:
        """Every parseable entry for one operation name, oldest first."""
        records, _ = await asyncio.to_thread(self.writer.read_records, self.path)
        entries: list[OperationEntry] = []
        for rec in records:
            if rec.get("operation") != operation:
                continue
            try:
                entries.append(OperationEntry(**rec))
            except ValueError:
                continue
        return entries
