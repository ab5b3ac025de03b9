from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from pathlib import Path

from pydantic import ValidationError

from chatwal.domain.errors import PersistenceError
from chatwal.domain.models import Acknowledgment, MessageRecord, UtcNow
from chatwal.persistence.log_writer import LogWriter, dumps_line
from chatwal.services.durability import MessageDurabilityStore
from chatwal.services.oplog import OperationLogger

log = logging.getLogger("chatwal")

# written by the commit step once the primary store holds the message;
# transport receipts (delivered, read, ...) only update status
COMMITTED_STATUS = "saved"


class AcknowledgmentTracker:
    """
    Records proof that a message reached a terminal durability state.

    `pending` holds acknowledgments that have been written but not yet verified
    against the primary store; the recovery loop drains it. `poisoned` holds ids
    that exhausted their retries and must not be retried again.
    """
    def __init__(
        self,
        writer: LogWriter,
        acks_path: Path,
        poison_path: Path,
        messages: MessageDurabilityStore,
        oplog: OperationLogger,
    ):
        self.writer = writer
        self.acks_path = acks_path
        self.poison_path = poison_path
        self.messages = messages
        self.oplog = oplog
        self.pending: dict[str, Acknowledgment] = {}
        self.poisoned: set[str] = set()

    async def acknowledge(self, message_id: str, status: str = "delivered") -> Acknowledgment:
        ack = Acknowledgment(message_id=message_id, status=status)
        try:
            line = dumps_line(ack.model_dump(mode="json"))
            await asyncio.to_thread(self.writer.atomic_append, self.acks_path, line)
        except PersistenceError as exc:
            await self.oplog.log_operation("ACKNOWLEDGMENT_ERROR", {
                "message_id": message_id, "error": exc.detail,
            })
            raise

        self.messages.mark_acknowledged(message_id, status)
        self.pending[message_id] = ack
        await self.oplog.log_operation("MESSAGE_ACKNOWLEDGED", {
            "message_id": message_id,
            "status": status,
            "acknowledgment_id": ack.acknowledgment_id,
        })
        return ack

    def resolve(self, message_id: str) -> None:
        self.pending.pop(message_id, None)

    # -------------------------
    # Log scans (source of truth)
    # -------------------------
    async def load_acknowledgments(self) -> list[Acknowledgment]:
        records, _ = await asyncio.to_thread(self.writer.read_records, self.acks_path)
        acks: list[Acknowledgment] = []
        for rec in records:
            try:
                acks.append(Acknowledgment.model_validate(rec))
            except ValidationError:
                log.warning("[acks] skipping invalid acknowledgment line for %s", rec.get("message_id"))
        return acks

    async def acknowledged_ids(self) -> set[str]:
        return {a.message_id for a in await self.load_acknowledgments()}

    async def committed_ids(self) -> set[str]:
        return {
            a.message_id for a in await self.load_acknowledgments()
            if a.status == COMMITTED_STATUS
        }

    async def get_unacknowledged(self) -> list[MessageRecord]:
        """
        Full re-scan: messages log joined with the acknowledgment and poison logs.
        Only a commit acknowledgment takes a message out of this set.
        """
        messages = await self.messages.load_messages()
        acked = await self.committed_ids()
        out: list[MessageRecord] = []
        seen: set[str] = set()
        for msg in messages:
            if msg.message_id in seen:
                continue
            seen.add(msg.message_id)
            if msg.message_id in acked or msg.message_id in self.poisoned:
                continue
            out.append(msg)
        return out

    async def get_stale_acknowledgments(self, timeout_s: float) -> list[Acknowledgment]:
        """Acknowledgments older than `timeout_s` still awaiting verification."""
        cutoff = UtcNow() - timedelta(seconds=timeout_s)
        latest: dict[str, Acknowledgment] = {}
        for ack in await self.load_acknowledgments():
            latest[ack.message_id] = ack
        return [
            ack for mid, ack in latest.items()
            if mid in self.pending and ack.acknowledged_at < cutoff
        ]

    async def load_pending_acknowledgments(self) -> int:
        """Startup: every acknowledgment on disk awaits verification again."""
        self.pending.clear()
        for ack in await self.load_acknowledgments():
            self.pending[ack.message_id] = ack
        log.info("[acks] loaded %d pending acknowledgments", len(self.pending))
        return len(self.pending)

    # -------------------------
    # Poison log
    # -------------------------
    async def poison(self, record: MessageRecord) -> None:
        line = dumps_line(record.model_dump(mode="json"))
        await asyncio.to_thread(self.writer.atomic_append, self.poison_path, line)
        self.poisoned.add(record.message_id)
        await self.oplog.log_operation("MESSAGE_POISONED", {
            "message_id": record.message_id,
            "room_id": record.room_id,
            "retry_count": record.processing.retry_count,
            "last_error": record.processing.last_error,
        })

    async def list_poisoned(self) -> list[MessageRecord]:
        records, _ = await asyncio.to_thread(self.writer.read_records, self.poison_path)
        out: list[MessageRecord] = []
        for rec in records:
            try:
                out.append(MessageRecord.model_validate(rec))
            except ValidationError:
                log.warning("[acks] skipping invalid poison line for %s", rec.get("message_id"))
        return out

    async def load_poisoned(self) -> int:
        self.poisoned = {m.message_id for m in await self.list_poisoned()}
        return len(self.poisoned)
