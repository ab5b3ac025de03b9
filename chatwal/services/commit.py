from __future__ import annotations

import asyncio
import logging
from typing import Literal

from chatwal.domain.errors import CommitError
from chatwal.domain.models import ConversationAggregate, MessageRecord, Party, UtcNow
from chatwal.repo.primary import PrimaryStore
from chatwal.services.acks import COMMITTED_STATUS, AcknowledgmentTracker

log = logging.getLogger("chatwal")

CommitOutcome = Literal["inserted", "duplicate"]


def extract_participants(messages: list[MessageRecord]) -> list[Party]:
    seen: dict[str, Party] = {}
    for m in messages:
        for party in (m.sender, m.receiver):
            if party.user_id and party.user_id not in seen:
                seen[party.user_id] = party
    return list(seen.values())


class MessageCommitter:
    """
    The one path by which a logged message reaches the primary store.
    Used by both the batch committer and the recovery loop, so both get the
    same dedup check and the same acknowledgment.
    Order per message: dedup -> insert -> conversation update -> acknowledge.
    The acknowledgment is last, so "acknowledged" implies the writes happened.
    """
    def __init__(self, primary: PrimaryStore, tracker: AcknowledgmentTracker):
        self.primary = primary
        self.tracker = tracker
        self._lock = asyncio.Lock()

    async def ensure_conversation(self, room_id: str, messages: list[MessageRecord]) -> ConversationAggregate:
        conv = await self.primary.get_conversation(room_id)
        if conv is not None:
            return conv
        first = messages[0]
        conv = await self.primary.create_conversation(room_id, extract_participants(messages), first.product)
        log.info("[commit] created conversation %s", room_id)
        return conv

    async def commit(
        self,
        record: MessageRecord,
        conv: ConversationAggregate | None = None,
        batch_id: str | None = None,
    ) -> CommitOutcome:
        async with self._lock:
            try:
                existing = await self.primary.find_duplicate(record.message_id, record.room_id)
                if existing is None:
                    record.processing.batch_id = batch_id
                    record.processing.processed_at = UtcNow()
                    await self.primary.insert_message(record)
                    if conv is not None:
                        conv.update_last_message(record)
                        if record.has_escrow:
                            conv.update_escrow_info(record.escrow)
                        await self.primary.save_conversation(conv)
                    outcome: CommitOutcome = "inserted"
                else:
                    log.info("[commit] message %s already in primary store, acknowledging", record.message_id)
                    outcome = "duplicate"
            except CommitError:
                raise
            except Exception as exc:
                raise CommitError(str(exc), record.message_id) from exc

            await self.tracker.acknowledge(record.message_id, COMMITTED_STATUS)
            return outcome
