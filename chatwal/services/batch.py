from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from chatwal.domain.dtos import BatchResult, SubmitMessageIn
from chatwal.domain.errors import BatchInProgressError, CommitError, NotFoundError, PersistenceError
from chatwal.domain.models import MessageRecord, UtcNow, new_id
from chatwal.persistence.log_writer import LogWriter
from chatwal.services.acks import AcknowledgmentTracker
from chatwal.services.commit import MessageCommitter
from chatwal.services.durability import MessageDurabilityStore
from chatwal.services.oplog import OperationLogger

log = logging.getLogger("chatwal")

QUEUE_SNAPSHOT_VERSION = "1.0"


class BatchCommitter:
    """
    Moves durably-logged messages into the primary store in periodic batches.

    A run is idle -> running -> idle. Overlapping runs are refused with an
    in-memory flag (single process). Each run:
      1) snapshots the queue (arrival order, at most `max_batch_size`)
      2) groups by room, keeping arrival order inside a room
      3) fetch-or-create the room's conversation
      4) commits each message through MessageCommitter (dedup + ack)
      5) drops the whole snapshot from the queue, success or not
      6) rewrites the queue snapshot file
    Errors are counted, never retried inline; the recovery loop is the retry path.
    """
    def __init__(
        self,
        durability: MessageDurabilityStore,
        tracker: AcknowledgmentTracker,
        committer: MessageCommitter,
        writer: LogWriter,
        oplog: OperationLogger,
        snapshot_path: Path,
        interval_s: float = 900.0,
        max_batch_size: int = 1000,
        run_timeout_s: float = 120.0,
    ):
        self.durability = durability
        self.tracker = tracker
        self.committer = committer
        self.writer = writer
        self.oplog = oplog
        self.snapshot_path = snapshot_path
        self.interval_s = interval_s
        self.max_batch_size = max_batch_size
        self.run_timeout_s = run_timeout_s

        self.queue: dict[str, MessageRecord] = {}
        self.is_running = False
        self.last_batch_at: datetime | None = None
        self.last_result: BatchResult | None = None
        self.next_run_at: datetime | None = None

    # ---- INTAKE ----
    async def add_message(self, raw: SubmitMessageIn | MessageRecord | dict[str, Any]) -> MessageRecord:
        record = await self.durability.save_message(raw)
        self.queue[record.message_id] = record
        return record

    async def load_queue(self) -> int:
        """Startup: everything the logs say is unacknowledged goes back in the queue."""
        self.queue.clear()
        for record in await self.tracker.get_unacknowledged():
            self.queue[record.message_id] = record
        log.info("[batch] loaded %d unacknowledged messages into the queue", len(self.queue))
        return len(self.queue)

    # ---- RUN ----
    async def run(self) -> BatchResult:
        if self.is_running:
            return BatchResult(skipped="running")
        if not self.queue:
            return BatchResult(skipped="empty")

        self.is_running = True
        snapshot = list(self.queue.values())[: self.max_batch_size]
        result = BatchResult(batch_id=new_id("batch"), total=len(snapshot))
        started = time.perf_counter()
        log.info("[batch] starting %s with %d messages", result.batch_id, len(snapshot))
        try:
            await asyncio.wait_for(self._process(snapshot, result), timeout=self.run_timeout_s)
        except asyncio.TimeoutError:
            await self.oplog.log_operation("BATCH_TIMEOUT_WARN", {
                "batch_id": result.batch_id,
                "timeout_s": self.run_timeout_s,
                "processed": result.processed,
            })
        finally:
            for record in snapshot:
                self.queue.pop(record.message_id, None)
            self.is_running = False

        self.last_batch_at = UtcNow()
        await self.write_queue_snapshot()

        result.duration_ms = int((time.perf_counter() - started) * 1000)
        self.last_result = result
        await self.oplog.log_operation("BATCH_PROCESSED", result.model_dump(mode="json"))
        return result

    async def run_now(self) -> BatchResult:
        if self.is_running:
            raise BatchInProgressError()
        return await self.run()

    async def _process(self, snapshot: list[MessageRecord], result: BatchResult) -> None:
        for room_id, messages in group_by_room(snapshot).items():
            try:
                conv = await self.committer.ensure_conversation(room_id, messages)
            except Exception as exc:
                result.errors += len(messages)
                await self.oplog.log_operation("BATCH_ROOM_FAILED", {
                    "batch_id": result.batch_id, "room_id": room_id,
                    "messages": len(messages), "error": str(exc),
                })
                continue

            for record in messages:
                try:
                    outcome = await self.committer.commit(record, conv, batch_id=result.batch_id)
                except (CommitError, PersistenceError) as exc:
                    result.errors += 1
                    record.processing.last_error = exc.detail
                    await self.oplog.log_operation("MESSAGE_COMMIT_FAILED", {
                        "batch_id": result.batch_id,
                        "message_id": record.message_id,
                        "room_id": room_id,
                        "error": exc.detail,
                    })
                    continue
                if outcome == "inserted":
                    result.processed += 1
                else:
                    result.duplicates += 1
            log.info("[batch] processed %d messages for room %s", len(messages), room_id)

    # ---- SNAPSHOT FILE ----
    def _next_batch_time(self) -> datetime:
        if self.next_run_at is not None:
            return self.next_run_at
        return UtcNow() + timedelta(seconds=self.interval_s)

    async def write_queue_snapshot(self) -> None:
        data = {
            "messages": [m.model_dump(mode="json") for m in self.queue.values()],
            "last_batch_processed": self.last_batch_at.isoformat() if self.last_batch_at else None,
            "next_batch_time": self._next_batch_time().isoformat(),
            "last_updated": UtcNow().isoformat(),
            "version": QUEUE_SNAPSHOT_VERSION,
        }
        try:
            await asyncio.to_thread(
                self.writer.atomic_replace, self.snapshot_path, json.dumps(data, indent=2, ensure_ascii=False)
            )
        except PersistenceError as exc:
            # inspection-only file; the NDJSON logs stay authoritative
            await self.oplog.log_operation("QUEUE_SNAPSHOT_FAILED", {"error": exc.detail})

    async def read_queue_file(self) -> dict[str, Any]:
        try:
            text = await asyncio.to_thread(self.snapshot_path.read_text, encoding="utf-8")
            return json.loads(text)
        except (OSError, json.JSONDecodeError):
            raise NotFoundError("Queue file")

    # ---- ADMIN ----
    def stats(self) -> dict[str, Any]:
        return {
            "total_messages": len(self.queue),
            "is_processing": self.is_running,
            "next_batch_time": self._next_batch_time().isoformat(),
            "last_batch_processed": self.last_batch_at.isoformat() if self.last_batch_at else None,
            "batch_interval_s": self.interval_s,
            "max_batch_size": self.max_batch_size,
            "last_result": self.last_result.model_dump(mode="json") if self.last_result else None,
        }

    def messages_by_room(self, room_id: str) -> list[MessageRecord]:
        msgs = [m for m in self.queue.values() if m.room_id == room_id]
        return sorted(msgs, key=lambda m: m.timestamp)

    async def clear_queue(self) -> int:
        """Drops the in-memory queue only; the NDJSON logs are untouched."""
        n = len(self.queue)
        self.queue.clear()
        await self.write_queue_snapshot()
        await self.oplog.log_operation("QUEUE_CLEARED", {"messages": n})
        return n

    def health(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "queue_stats": self.stats(),
            "file_exists": self.snapshot_path.exists(),
            "timestamp": UtcNow().isoformat(),
        }


def group_by_room(messages: list[MessageRecord]) -> dict[str, list[MessageRecord]]:
    grouped: dict[str, list[MessageRecord]] = {}
    for m in messages:
        grouped.setdefault(m.room_id, []).append(m)
    return grouped
