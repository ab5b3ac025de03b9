# chatwal/service.py
from __future__ import annotations
import asyncio
import logging
from collections import Counter
from datetime import timedelta
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from chatwal.config import Settings
from chatwal.domain.dtos import BatchResult, SubmitMessageIn
from chatwal.domain.errors import PersistenceError
from chatwal.domain.models import Acknowledgment, MessageRecord, UtcNow
from chatwal.persistence.log_writer import LogWriter
from chatwal.repo.primary import HttpPrimaryStore, InMemoryPrimaryStore, PrimaryStore
from chatwal.services.acks import AcknowledgmentTracker
from chatwal.services.batch import BatchCommitter
from chatwal.services.commit import MessageCommitter
from chatwal.services.durability import MessageDurabilityStore
from chatwal.services.oplog import OperationLogger
from chatwal.services.recovery import RecoveryLoop

log = logging.getLogger("chatwal")

BATCH_JOB_ID = "chatwal_batch_job"
RECOVERY_JOB_ID = "chatwal_recovery_job"
CLEANUP_SUFFIXES = (".ndjson", ".log", ".json")


def build_primary_store(settings: Settings) -> PrimaryStore:
    if settings.primary_store == "http":
        log.info("[primary] Using HttpPrimaryStore url=%s", settings.primary_url)
        return HttpPrimaryStore(
            settings.primary_url,
            api_secret=settings.primary_api_secret,
            timeout_s=settings.primary_timeout_s,
        )
    log.info("[primary] Using InMemoryPrimaryStore")
    return InMemoryPrimaryStore()


class DurabilityService:
    """
    One instance per process, built by the application's startup code and handed
    to request handlers. Owns the log files under `settings.data_dir`, the
    in-memory caches rebuilt from them, and the two interval jobs.
    """
    def __init__(self, settings: Settings, primary: PrimaryStore | None = None):
        self.settings = settings
        self.primary = primary or build_primary_store(settings)
        self.writer = LogWriter(lock_timeout_s=settings.lock_timeout_s)
        self.oplog = OperationLogger(self.writer, settings.oplog_path)
        self.durability = MessageDurabilityStore(self.writer, settings.messages_path, self.oplog)
        self.tracker = AcknowledgmentTracker(
            self.writer, settings.acks_path, settings.poison_path, self.durability, self.oplog,
        )
        self.committer = MessageCommitter(self.primary, self.tracker)
        self.batch = BatchCommitter(
            self.durability, self.tracker, self.committer, self.writer, self.oplog,
            settings.queue_snapshot_path,
            interval_s=settings.batch_interval_s,
            max_batch_size=settings.max_batch_size,
            run_timeout_s=settings.batch_run_timeout_s,
        )
        self.recovery = RecoveryLoop(
            self.primary, self.tracker, self.committer, self.oplog,
            ack_timeout_s=settings.ack_timeout_s,
            max_retries=settings.max_retries,
            queued_ids=lambda: set(self.batch.queue),
        )
        self.scheduler: AsyncIOScheduler | None = None
        self.started = False

    # -------- lifecycle
    async def start(self) -> None:
        self.settings.root.mkdir(parents=True, exist_ok=True)
        for path in (self.settings.messages_path, self.settings.acks_path,
                     self.settings.oplog_path, self.settings.poison_path):
            if self.writer.ensure_exists(path):
                log.info("[service] created %s", path.name)

        await self.tracker.load_poisoned()
        await self.tracker.load_pending_acknowledgments()
        acked = await self.tracker.acknowledged_ids()
        for record in await self.durability.load_messages():
            self.durability.seed_status(record, acknowledged=record.message_id in acked)
        await self.batch.load_queue()
        await self.recovery.load_retry_counts()
        await self.batch.write_queue_snapshot()

        if self.settings.scheduler_enabled:
            self._start_scheduler()
        self.started = True
        await self.oplog.log_operation("SERVICE_STARTED", {
            "queued": len(self.batch.queue),
            "pending_acknowledgments": len(self.tracker.pending),
            "poisoned": len(self.tracker.poisoned),
        })

    def _start_scheduler(self) -> None:
        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self._batch_job,
            trigger=IntervalTrigger(seconds=self.settings.batch_interval_s),
            id=BATCH_JOB_ID,
            name="Message Batch Commit",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self._recovery_job,
            trigger=IntervalTrigger(seconds=self.settings.recovery_interval_s),
            id=RECOVERY_JOB_ID,
            name="Message Recovery Check",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        self._refresh_next_run()
        log.info(
            "[service] timers started: batch every %ss, recovery every %ss",
            self.settings.batch_interval_s, self.settings.recovery_interval_s,
        )

    def _refresh_next_run(self) -> None:
        if self.scheduler is None:
            return
        job = self.scheduler.get_job(BATCH_JOB_ID)
        self.batch.next_run_at = job.next_run_time if job else None

    async def _batch_job(self) -> None:
        try:
            await self.batch.run()
        except Exception as exc:
            log.exception("[batch] scheduled run failed", exc_info=exc)
        finally:
            self._refresh_next_run()

    async def _recovery_job(self) -> None:
        await self.recovery.tick()

    async def shutdown(self) -> None:
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
            log.info("[service] timers stopped")

        remaining = len(self.batch.queue)
        if remaining:
            log.info("[service] processing %d remaining messages before shutdown", remaining)
            try:
                await asyncio.wait_for(self.batch.run(), timeout=self.settings.shutdown_timeout_s)
            except asyncio.TimeoutError:
                await self.oplog.log_operation("SHUTDOWN_BATCH_TIMEOUT_WARN", {"remaining": len(self.batch.queue)})
        await self.batch.write_queue_snapshot()
        await self.oplog.log_operation("SERVICE_SHUTDOWN", {
            "remaining": len(self.batch.queue),
            "message_status_count": len(self.durability.statuses),
            "pending_acknowledgments_count": len(self.tracker.pending),
        })
        await self.primary.close()
        self.started = False

    # -------- inbound
    async def submit(self, raw: SubmitMessageIn | MessageRecord | dict[str, Any]) -> MessageRecord:
        return await self.batch.add_message(raw)

    async def acknowledge(self, message_id: str, status: str = "delivered") -> Acknowledgment:
        return await self.tracker.acknowledge(message_id, status)

    async def run_batch_now(self) -> BatchResult:
        try:
            return await self.batch.run_now()
        finally:
            self._refresh_next_run()

    # -------- admin
    async def file_stats(self) -> dict[str, Any]:
        s = self.settings
        files = {
            "messages": s.messages_path,
            "acknowledgments": s.acks_path,
            "poison": s.poison_path,
            "logs": s.oplog_path,
            "queue_snapshot": s.queue_snapshot_path,
        }
        return {name: await asyncio.to_thread(self.writer.file_stats, p) for name, p in files.items()}

    async def health(self) -> dict[str, Any]:
        try:
            stats = await self.file_stats()
            unacked = await self.tracker.get_unacknowledged()
            stale = await self.tracker.get_stale_acknowledgments(self.settings.ack_timeout_s)
            required = ("messages", "acknowledgments", "logs")
            missing = [name for name in required if not stats[name]["exists"]]
            return {
                "status": "unhealthy" if missing else "healthy",
                "missing_files": missing,
                "stats": stats,
                "queued_messages": len(self.batch.queue),
                "unacknowledged_messages": len(unacked),
                "failed_acknowledgments": len(stale),
                "reconciliation_gaps": len(self.recovery.gaps),
                "poisoned_messages": len(self.tracker.poisoned),
                "message_status_count": len(self.durability.statuses),
                "pending_acknowledgments_count": len(self.tracker.pending),
                "timestamp": UtcNow().isoformat(),
            }
        except Exception as exc:
            log.exception("[service] health check failed", exc_info=exc)
            return {"status": "unhealthy", "error": str(exc), "timestamp": UtcNow().isoformat()}

    async def persistence_stats(self) -> dict[str, Any]:
        health = await self.health()
        statuses = self.durability.all_message_statuses()
        counts = Counter(s["status"] for s in statuses)
        return {
            "total_messages": len(statuses),
            "status_counts": dict(counts),
            "unacknowledged_messages": health.get("unacknowledged_messages"),
            "failed_acknowledgments": health.get("failed_acknowledgments"),
            "pending_acknowledgments_count": health.get("pending_acknowledgments_count"),
            "file_stats": health.get("stats"),
            "last_recovery": self.recovery.last_result.model_dump() if self.recovery.last_result else None,
            "last_updated": UtcNow().isoformat(),
        }

    async def cleanup(self, days_to_keep: int | None = None) -> list[str]:
        """
        Delete log/audit files under data_dir not modified within the retention window.
        The live logs are never deleted: the acknowledgment and poison logs are
        append-only, and an aged messages log is compacted down to the records
        not yet committed instead.
        """
        days = self.settings.retention_days if days_to_keep is None else days_to_keep
        cutoff = (UtcNow() - timedelta(days=days)).timestamp()
        s = self.settings
        live = {s.messages_path.name, s.acks_path.name, s.poison_path.name}
        deleted: list[str] = []
        for path in sorted(s.root.iterdir()):
            if not path.is_file() or path.suffix not in CLEANUP_SUFFIXES:
                continue
            try:
                if path.name == s.messages_path.name and path.stat().st_mtime < cutoff:
                    await self._compact_messages_log()
                elif path.name not in live and path.stat().st_mtime < cutoff:
                    path.unlink(missing_ok=True)
                    deleted.append(path.name)
            except (OSError, PersistenceError) as exc:
                await self.oplog.log_operation("CLEANUP_ERROR", {"file": path.name, "error": str(exc)})
        for name in deleted:
            await self.oplog.log_operation("FILE_CLEANUP", {"file": name, "days_to_keep": days})
        return deleted

    async def _compact_messages_log(self) -> None:
        # ids decided before taking the file lock; anything appended meanwhile is uncommitted and kept
        done = await self.tracker.committed_ids() | self.tracker.poisoned
        kept, dropped = await asyncio.to_thread(
            self.writer.compact, self.settings.messages_path,
            lambda rec: rec.get("message_id") not in done,
        )
        await self.oplog.log_operation("MESSAGES_LOG_COMPACTED", {"kept": kept, "dropped": dropped})
