from __future__ import annotations

import logging
from typing import Callable

from chatwal.domain.dtos import RecoveryResult
from chatwal.domain.models import Acknowledgment, MessageRecord, MessageStatus, ReconciliationGap
from chatwal.repo.primary import PrimaryStore
from chatwal.services.acks import AcknowledgmentTracker
from chatwal.services.commit import MessageCommitter
from chatwal.services.oplog import OperationLogger

log = logging.getLogger("chatwal")

_MESSAGE_STATUSES = {s.value for s in MessageStatus}


class RecoveryLoop:
    """
    Self-healing pass run on a shorter interval than the batch committer.

    tick():
      1) retries every unacknowledged message not waiting in the batch queue;
         after `max_retries` failed attempts the record goes to the poison log.
         Attempt counts survive restarts via MESSAGE_RETRY_FAILED audit entries.
      2) verifies stale acknowledgments of committed messages against the
         primary store; a missing record is kept as a ReconciliationGap,
         never auto-resolved
      3) writes one RECOVERY_CHECK audit entry with the counts
    Nothing raised inside a tick escapes to the timer.
    """
    def __init__(
        self,
        primary: PrimaryStore,
        tracker: AcknowledgmentTracker,
        committer: MessageCommitter,
        oplog: OperationLogger,
        ack_timeout_s: float = 30.0,
        max_retries: int = 5,
        queued_ids: Callable[[], set[str]] | None = None,
    ):
        self.primary = primary
        self.tracker = tracker
        self.committer = committer
        self.oplog = oplog
        self.ack_timeout_s = ack_timeout_s
        self.max_retries = max_retries
        self.queued_ids = queued_ids or (lambda: set())

        self.retry_counts: dict[str, int] = {}
        self.gaps: dict[str, ReconciliationGap] = {}
        self.is_running = False
        self.last_result: RecoveryResult | None = None

    async def tick(self) -> RecoveryResult:
        result = RecoveryResult()
        if self.is_running:
            return result
        self.is_running = True
        try:
            queued = self.queued_ids()
            unacked = [m for m in await self.tracker.get_unacknowledged() if m.message_id not in queued]
            result.unacknowledged = len(unacked)
            if unacked:
                log.info("[recovery] found %d unacknowledged messages", len(unacked))
            for record in unacked:
                await self._retry_message(record, result)

            # a receipt for a message still waiting on its commit is not a gap yet
            uncommitted = {m.message_id for m in await self.tracker.get_unacknowledged()}
            stale = [
                ack for ack in await self.tracker.get_stale_acknowledgments(self.ack_timeout_s)
                if ack.message_id not in uncommitted
            ]
            result.stale_acknowledgments = len(stale)
            if stale:
                log.info("[recovery] found %d stale acknowledgments", len(stale))
            for ack in stale:
                await self._verify_acknowledgment(ack, result)

            result.gaps = len(self.gaps)
            self.last_result = result
            await self.oplog.log_operation("RECOVERY_CHECK", result.model_dump(mode="json"))
        except Exception as exc:
            await self.oplog.log_operation("RECOVERY_CHECK_ERROR", {"error": str(exc)})
        finally:
            self.is_running = False
        return result

    async def _retry_message(self, record: MessageRecord, result: RecoveryResult) -> None:
        attempt = self.retry_counts.get(record.message_id, 0) + 1
        record.processing.retry_count = attempt
        record.processing.last_error = None
        try:
            conv = await self.committer.ensure_conversation(record.room_id, [record])
            outcome = await self.committer.commit(record, conv)
        except Exception as exc:
            record.processing.last_error = str(exc)
            self.retry_counts[record.message_id] = attempt
            result.failed += 1
            await self.oplog.log_operation("MESSAGE_RETRY_FAILED", {
                "message_id": record.message_id,
                "retry_count": attempt,
                "error": record.processing.last_error,
            })
            if attempt >= self.max_retries:
                await self.tracker.poison(record)
                self.retry_counts.pop(record.message_id, None)
                result.poisoned += 1
            return

        self.retry_counts.pop(record.message_id, None)
        if outcome == "inserted":
            result.recovered += 1
        else:
            result.duplicates += 1

    async def _verify_acknowledgment(self, ack: Acknowledgment, result: RecoveryResult) -> None:
        try:
            stored = await self.primary.find_message(ack.message_id)
            if stored is None:
                if ack.message_id not in self.gaps:
                    self.gaps[ack.message_id] = ReconciliationGap(
                        message_id=ack.message_id,
                        acknowledgment_id=ack.acknowledgment_id,
                        status=ack.status,
                    )
                    await self.oplog.log_operation("ACKNOWLEDGMENT_RETRY_FAILED", {
                        "message_id": ack.message_id,
                        "reason": "Message not found in primary store",
                    })
                return
            if ack.status in _MESSAGE_STATUSES and stored.status.value != ack.status:
                await self.primary.update_message_status(ack.message_id, ack.status)
            self.tracker.resolve(ack.message_id)
            self.gaps.pop(ack.message_id, None)
            result.reconciled += 1
        except Exception as exc:
            await self.oplog.log_operation("ACKNOWLEDGMENT_RETRY_ERROR", {
                "message_id": ack.message_id, "error": str(exc),
            })

    async def load_retry_counts(self) -> int:
        """Startup: re-seed attempt counts of still-unacknowledged messages from the audit log."""
        open_ids = {m.message_id for m in await self.tracker.get_unacknowledged()}
        counts: dict[str, int] = {}
        for entry in await self.oplog.find("MESSAGE_RETRY_FAILED"):
            mid = entry.data.get("message_id")
            if mid not in open_ids:
                continue
            try:
                n = int(entry.data.get("retry_count", 0))
            except (TypeError, ValueError):
                continue
            counts[mid] = max(counts.get(mid, 0), n)
        self.retry_counts = counts
        if counts:
            log.info("[recovery] restored retry counts for %d messages", len(counts))
        return len(counts)

    def list_gaps(self) -> list[ReconciliationGap]:
        return list(self.gaps.values())
