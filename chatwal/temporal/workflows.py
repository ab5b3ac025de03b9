# chatwal/temporal/workflows.py
from __future__ import annotations
from datetime import timedelta
from typing import Any, Dict, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy

from chatwal.temporal.dtos import WFBatchOut, WFRecoveryOut, WFSyncIn, WFSyncOut

with workflow.unsafe.imports_passed_through():
    from chatwal.temporal.config import ACTIVITY_START_TO_CLOSE
    from chatwal.temporal import activities as acts


@workflow.defn
class SyncWorkflow:
    """
    Durable sync pass against a running chatwal server:
      run: batch -> recovery (optional) -> health
      query: status
    """

    def __init__(self) -> None:
        self._stage: str = "init"
        self._batch: Optional[WFBatchOut] = None
        self._recovery: Optional[WFRecoveryOut] = None

    # ------------- Queries -------------

    @workflow.query
    def status(self) -> Dict[str, Any]:
        return {
            "stage": self._stage,
            "batch_id": self._batch.batch_id if self._batch else None,
            "processed": self._batch.processed if self._batch else 0,
            "recovered": self._recovery.recovered if self._recovery else 0,
        }

    # ------------- Workflow run -------------

    @workflow.run
    async def run(self, payload: WFSyncIn) -> WFSyncOut:
        retry = RetryPolicy(
            initial_interval=timedelta(seconds=1),
            backoff_coefficient=2.0,
            maximum_interval=timedelta(seconds=30),
            maximum_attempts=5,
        )
        timeout = timedelta(seconds=ACTIVITY_START_TO_CLOSE)

        # Step 1: batch
        self._stage = "batch"
        self._batch = await workflow.execute_activity(
            acts.run_batch,
            start_to_close_timeout=timeout,
            retry_policy=retry,
        )

        # Step 2: recovery
        if payload.include_recovery:
            self._stage = "recovery"
            self._recovery = await workflow.execute_activity(
                acts.run_recovery,
                start_to_close_timeout=timeout,
                retry_policy=retry,
            )

        # Step 3: health
        self._stage = "health"
        health = await workflow.execute_activity(
            acts.check_health,
            start_to_close_timeout=timeout,
            retry_policy=retry,
        )

        self._stage = "complete"
        return WFSyncOut(batch=self._batch, recovery=self._recovery, health=health)
