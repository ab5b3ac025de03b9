from __future__ import annotations

import asyncio

from chatwal.persistence.log_writer import LogWriter
from chatwal.services.oplog import OperationLogger, level_for


def test_level_derivation():
    assert level_for("MESSAGE_SAVE_ERROR") == "ERROR"
    assert level_for("MESSAGE_COMMIT_FAILED") == "ERROR"
    # contains FAILED as well as RETRY
    assert level_for("MESSAGE_RETRY_FAILED") == "ERROR"
    assert level_for("BATCH_TIMEOUT_WARN") == "WARN"
    assert level_for("MESSAGE_RETRY") == "WARN"
    assert level_for("MESSAGE_SAVED") == "INFO"


def test_recent_respects_limit_and_level(tmp_path):
    oplog = OperationLogger(LogWriter(), tmp_path / "ops.log")

    async def scenario():
        await oplog.log_operation("MESSAGE_SAVED", {"message_id": "m1"})
        await oplog.log_operation("MESSAGE_SAVE_ERROR", {"message_id": "m2"})
        await oplog.log_operation("BATCH_PROCESSED", {"processed": 1})
        return (
            await oplog.recent(limit=2),
            await oplog.recent(level="error"),
            await oplog.recent(limit=100),
        )

    last_two, errors, everything = asyncio.run(scenario())
    assert [e.operation for e in last_two] == ["MESSAGE_SAVE_ERROR", "BATCH_PROCESSED"]
    assert [e.data["message_id"] for e in errors] == ["m2"]
    assert len(everything) == 3


def test_log_operation_never_raises(tmp_path):
    path = tmp_path / "ops.log"
    path.mkdir()
    oplog = OperationLogger(LogWriter(lock_timeout_s=0.1), path)

    asyncio.run(oplog.log_operation("MESSAGE_SAVED", {"message_id": "m1"}))
