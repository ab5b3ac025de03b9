# chatwal/temporal/worker.py
from __future__ import annotations
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor

from temporalio.worker import Worker

from chatwal.temporal import activities as acts
from chatwal.temporal.client import connect
from chatwal.temporal.config import ACTIVITY_WORKERS, SYNC_TASK_QUEUE
from chatwal.temporal.workflows import SyncWorkflow

log = logging.getLogger("chatwal")


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    client = await connect()

    max_workers = ACTIVITY_WORKERS

    # activities are plain (sync) functions doing blocking httpx calls
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        worker = Worker(
            client,
            task_queue=SYNC_TASK_QUEUE,
            workflows=[SyncWorkflow],
            activities=[acts.run_batch, acts.run_recovery, acts.check_health],
            activity_executor=executor,
            max_concurrent_activities=max_workers,
        )
        log.info("[worker] listening on task_queue=%s with max %d concurrent activities",
                 SYNC_TASK_QUEUE, max_workers)
        await worker.run()


if __name__ == "__main__":
    asyncio.run(main())
