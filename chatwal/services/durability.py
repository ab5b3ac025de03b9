from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from chatwal.domain.dtos import SubmitMessageIn
from chatwal.domain.errors import PersistenceError
from chatwal.domain.models import (
    DurabilityStatus, MessageRecord, MessageState, PersistenceInfo, UtcNow,
)
from chatwal.persistence.log_writer import LogWriter, dumps_line
from chatwal.services.oplog import OperationLogger

log = logging.getLogger("chatwal")


class MessageDurabilityStore:
    """
    Accepts a message and makes it durable before anything else happens.
    Notes:
      - save_message returns only after the NDJSON line is on disk (fsync + rename).
        Callers rely on "returned = durable".
      - Records on disk are never edited; acknowledgments live in their own log.
      - `statuses` is a cache rebuilt from the logs at startup.
    """
    def __init__(self, writer: LogWriter, path: Path, oplog: OperationLogger):
        self.writer = writer
        self.path = path
        self.oplog = oplog
        self.statuses: dict[str, MessageState] = {}

    # ---- SAVE ----
    async def save_message(self, raw: SubmitMessageIn | MessageRecord | dict[str, Any]) -> MessageRecord:
        if isinstance(raw, dict):
            raw = SubmitMessageIn.model_validate(raw)
        record = raw.to_record() if isinstance(raw, SubmitMessageIn) else raw.model_copy(deep=True)

        now = UtcNow()
        record.durability = DurabilityStatus.persisted_unacknowledged
        record.persistence = PersistenceInfo(
            file_path=str(self.path), saved_at=now, acknowledged=False,
        )

        try:
            line = dumps_line(record.model_dump(mode="json"))
            await asyncio.to_thread(self.writer.atomic_append, self.path, line)
        except PersistenceError as exc:
            await self.oplog.log_operation("MESSAGE_SAVE_ERROR", {
                "message_id": record.message_id, "error": exc.detail,
            })
            raise

        self.statuses[record.message_id] = MessageState(
            status=record.status.value, saved_at=now, acknowledged=False,
        )
        await self.oplog.log_operation("MESSAGE_SAVED", {
            "message_id": record.message_id,
            "room_id": record.room_id,
            "status": record.status.value,
        })
        return record

    # ---- LOAD ----
    async def load_messages(self) -> list[MessageRecord]:
        records, skipped = await asyncio.to_thread(self.writer.read_records, self.path)
        messages: list[MessageRecord] = []
        for rec in records:
            try:
                messages.append(MessageRecord.model_validate(rec))
            except ValidationError as exc:
                skipped += 1
                log.warning("[durability] skipping invalid record %s: %s",
                            rec.get("message_id"), exc.error_count())
        if skipped:
            log.warning("[durability] skipped %d unreadable lines in %s", skipped, self.path.name)
        log.info("[durability] loaded %d messages from %s", len(messages), self.path.name)
        return messages

    # ---- STATUS MAP ----
    def get_message_status(self, message_id: str) -> MessageState | None:
        return self.statuses.get(message_id)

    def all_message_statuses(self) -> list[dict[str, Any]]:
        return [
            {"message_id": mid, **st.model_dump(mode="json")}
            for mid, st in self.statuses.items()
        ]

    async def update_message_status(
        self, message_id: str, status: str, extra: dict[str, Any] | None = None
    ) -> MessageState:
        extra = extra or {}
        st = self.statuses.get(message_id)
        if st is None:
            st = MessageState(status=status)
            self.statuses[message_id] = st
        st.status = status
        st.updated_at = UtcNow()
        st.extra.update(extra)
        await self.oplog.log_operation("MESSAGE_STATUS_UPDATED", {
            "message_id": message_id, "status": status, **extra,
        })
        return st

    def mark_acknowledged(self, message_id: str, status: str) -> None:
        st = self.statuses.get(message_id)
        if st is None:
            return
        st.acknowledged = True
        st.status = status
        st.updated_at = UtcNow()

    def seed_status(self, record: MessageRecord, acknowledged: bool) -> None:
        """Populate the status cache from a record read back at startup."""
        self.statuses[record.message_id] = MessageState(
            status=record.status.value,
            saved_at=record.persistence.saved_at,
            acknowledged=acknowledged,
        )
