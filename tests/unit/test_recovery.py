from __future__ import annotations

import asyncio

from chatwal.config import Settings
from chatwal.repo.primary import InMemoryPrimaryStore
from chatwal.service import DurabilityService
from chatwal.services.acks import COMMITTED_STATUS


class DownPrimaryStore(InMemoryPrimaryStore):
    async def insert_message(self, record):
        raise ConnectionError("primary store unreachable")


def _service(tmp_path, primary=None, **overrides) -> DurabilityService:
    settings = Settings(data_dir=str(tmp_path), scheduler_enabled=False, **overrides)
    return DurabilityService(settings, primary=primary or InMemoryPrimaryStore())


def _msg(room, text, **extra):
    body = {"room_id": room, "message": text, "sender_id": "u1", "sender_email": "u1@example.com"}
    body.update(extra)
    return body


def test_restart_replays_unacknowledged_messages_exactly_once(tmp_path):
    primary = InMemoryPrimaryStore()
    first = _service(tmp_path, primary=primary)

    async def before_crash():
        await first.start()
        a = await first.submit(_msg("room-a", "a"))
        b = await first.submit(_msg("room-a", "b"))
        return a, b

    a, b = asyncio.run(before_crash())
    # process dies here: nothing was batched, nothing acknowledged

    second = _service(tmp_path, primary=primary)

    async def after_restart():
        await second.start()
        queued = list(second.batch.queue)
        result = await second.batch.run()
        return queued, result

    queued, result = asyncio.run(after_restart())
    assert queued == [a.message_id, b.message_id]
    assert result.processed == 2
    assert primary.count_messages() == 2
    assert second.durability.get_message_status(a.message_id).status == "saved"

    third = _service(tmp_path, primary=primary)
    asyncio.run(third.start())
    assert third.batch.queue == {}


def test_recovery_commits_messages_that_left_the_queue(tmp_path):
    svc = _service(tmp_path)

    async def scenario():
        await svc.start()
        queued = await svc.submit(_msg("room-a", "still queued"))
        orphan = await svc.durability.save_message(_msg("room-b", "orphan"))
        result = await svc.recovery.tick()
        return queued, orphan, result

    queued, orphan, result = asyncio.run(scenario())
    assert result.unacknowledged == 1
    assert result.recovered == 1 and result.failed == 0
    assert svc.primary.count_messages(orphan.message_id, "room-b") == 1
    # queued messages belong to the next batch run
    assert svc.primary.count_messages(queued.message_id) == 0
    conv = asyncio.run(svc.primary.get_conversation("room-b"))
    assert conv.metadata.message_count == 1


def test_recovery_acknowledges_duplicates_without_reinserting(tmp_path):
    svc = _service(tmp_path)

    async def scenario():
        await svc.start()
        rec = await svc.durability.save_message(_msg("room-a", "x"))
        await svc.primary.insert_message(rec)
        result = await svc.recovery.tick()
        return rec, result, await svc.tracker.get_unacknowledged()

    rec, result, unacked = asyncio.run(scenario())
    assert result.duplicates == 1 and result.recovered == 0
    assert svc.primary.count_messages(rec.message_id) == 1
    assert unacked == []


def test_message_is_poisoned_after_max_retries(tmp_path):
    svc = _service(tmp_path, primary=DownPrimaryStore(), max_retries=2)

    async def scenario():
        await svc.start()
        rec = await svc.durability.save_message(_msg("room-a", "doomed"))
        r1 = await svc.recovery.tick()
        r2 = await svc.recovery.tick()
        r3 = await svc.recovery.tick()
        poisoned = await svc.tracker.list_poisoned()
        return rec, (r1, r2, r3), poisoned, await svc.tracker.get_unacknowledged()

    rec, (r1, r2, r3), poisoned, unacked = asyncio.run(scenario())
    assert (r1.failed, r1.poisoned) == (1, 0)
    assert (r2.failed, r2.poisoned) == (1, 1)
    assert r3.unacknowledged == 0 and r3.failed == 0
    assert [p.message_id for p in poisoned] == [rec.message_id]
    assert poisoned[0].processing.retry_count == 2
    assert "primary store unreachable" in poisoned[0].processing.last_error
    assert unacked == []

    restarted = _service(tmp_path)
    asyncio.run(restarted.start())
    assert rec.message_id in restarted.tracker.poisoned
    assert restarted.batch.queue == {}


def test_stale_acknowledgment_without_record_becomes_a_gap(tmp_path):
    svc = _service(tmp_path, ack_timeout_s=-1)

    async def scenario():
        await svc.start()
        await svc.acknowledge("msg_ghost", "delivered")
        first = await svc.recovery.tick()
        second = await svc.recovery.tick()
        retry_failures = [
            e for e in await svc.oplog.recent() if e.operation == "ACKNOWLEDGMENT_RETRY_FAILED"
        ]
        return first, second, retry_failures

    first, second, retry_failures = asyncio.run(scenario())
    assert first.stale_acknowledgments == 1 and first.reconciled == 0
    assert second.gaps == 1
    assert [g.message_id for g in svc.recovery.list_gaps()] == ["msg_ghost"]
    # recorded once, kept pending, never auto-resolved
    assert len(retry_failures) == 1
    assert "msg_ghost" in svc.tracker.pending


def test_stale_acknowledgment_reconciles_primary_status(tmp_path):
    svc = _service(tmp_path, ack_timeout_s=-1)

    async def scenario():
        await svc.start()
        rec = await svc.submit(_msg("room-a", "read me"))
        await svc.batch.run()
        await svc.acknowledge(rec.message_id, "read")
        result = await svc.recovery.tick()
        return rec, result, await svc.primary.find_message(rec.message_id)

    rec, result, stored = asyncio.run(scenario())
    assert result.reconciled == 1 and result.gaps == 0
    assert stored.status.value == "read"
    assert rec.message_id not in svc.tracker.pending


def test_recovery_tick_is_audited(tmp_path):
    svc = _service(tmp_path)

    async def scenario():
        await svc.start()
        await svc.recovery.tick()
        return await svc.oplog.recent(limit=1)

    last = asyncio.run(scenario())
    assert last[0].operation == "RECOVERY_CHECK"
    assert last[0].data["recovered"] == 0


def test_delivered_receipt_before_commit_is_replayed_after_restart(tmp_path):
    primary = InMemoryPrimaryStore()
    first = _service(tmp_path, primary=primary)

    async def before_crash():
        await first.start()
        rec = await first.submit(_msg("room-a", "seen but not stored"))
        await first.acknowledge(rec.message_id, "delivered")
        return rec

    rec = asyncio.run(before_crash())

    second = _service(tmp_path, primary=primary)

    async def after_restart():
        await second.start()
        queued = list(second.batch.queue)
        return queued, await second.batch.run()

    queued, result = asyncio.run(after_restart())
    assert queued == [rec.message_id]
    assert result.processed == 1
    assert primary.count_messages(rec.message_id) == 1


def test_recovery_commits_message_with_only_a_delivered_receipt(tmp_path):
    svc = _service(tmp_path, ack_timeout_s=-1)

    async def scenario():
        await svc.start()
        rec = await svc.durability.save_message(_msg("room-a", "delivered only"))
        await svc.acknowledge(rec.message_id, "delivered")
        first = await svc.recovery.tick()
        second = await svc.recovery.tick()
        return rec, first, second

    rec, first, second = asyncio.run(scenario())
    assert first.unacknowledged == 1 and first.recovered == 1
    # the receipt is not a gap while its message waits on the commit
    assert first.gaps == 0
    assert svc.primary.count_messages(rec.message_id) == 1
    assert second.unacknowledged == 0 and second.gaps == 0
    assert svc.recovery.list_gaps() == []


def test_retry_counts_survive_a_restart(tmp_path):
    first = _service(tmp_path, primary=DownPrimaryStore(), max_retries=3)

    async def before_crash():
        await first.start()
        rec = await first.durability.save_message(_msg("room-a", "flaky"))
        await first.recovery.tick()
        await first.recovery.tick()
        return rec

    rec = asyncio.run(before_crash())
    assert first.recovery.retry_counts[rec.message_id] == 2

    second = _service(tmp_path, primary=DownPrimaryStore(), max_retries=3)

    async def after_restart():
        await second.start()
        seeded = dict(second.recovery.retry_counts)
        # hand the message to recovery instead of the next batch run
        second.batch.queue.clear()
        return seeded, await second.recovery.tick()

    seeded, result = asyncio.run(after_restart())
    assert seeded == {rec.message_id: 2}
    assert result.failed == 1 and result.poisoned == 1
    assert rec.message_id in second.tracker.poisoned


def test_committed_messages_are_not_given_retry_counts_on_restart(tmp_path):
    first = _service(tmp_path, primary=DownPrimaryStore(), max_retries=5)

    async def before_crash():
        await first.start()
        done = await first.durability.save_message(_msg("room-a", "later stored"))
        open_ = await first.durability.save_message(_msg("room-a", "still open"))
        await first.recovery.tick()
        await first.tracker.acknowledge(done.message_id, COMMITTED_STATUS)
        return done, open_

    done, open_ = asyncio.run(before_crash())

    second = _service(tmp_path, max_retries=5)
    asyncio.run(second.start())
    assert second.recovery.retry_counts == {open_.message_id: 1}
