# chatwal/temporal/client.py
from __future__ import annotations
import uuid
from typing import Any, Dict

from temporalio.client import Client
from temporalio.common import WorkflowIDReusePolicy

from chatwal.temporal.config import SYNC_TASK_QUEUE, TEMPORAL_ADDRESS, TEMPORAL_NAMESPACE
from chatwal.temporal.dtos import WFSyncIn, WFSyncOut
from chatwal.temporal.workflows import SyncWorkflow


async def connect() -> Client:
    return await Client.connect(TEMPORAL_ADDRESS, namespace=TEMPORAL_NAMESPACE)


async def start_sync_workflow(
    payload: WFSyncIn,
    wait: bool = True,
) -> WFSyncOut | tuple[str, str]:
    """
    Start SyncWorkflow. If wait=True, await result. Else return (workflow_id, run_id).
    """
    client = await connect()

    workflow_id = payload.request_id or f"sync-{uuid.uuid4()}"
    handle = await client.start_workflow(
        SyncWorkflow.run,
        payload,
        id=workflow_id,
        task_queue=SYNC_TASK_QUEUE,
        id_reuse_policy=WorkflowIDReusePolicy.ALLOW_DUPLICATE_FAILED_ONLY,
    )

    if wait:
        return await handle.result()
    return handle.id, handle.first_execution_run_id


async def query_sync_status(workflow_id: str) -> Dict[str, Any]:
    client = await connect()
    handle = client.get_workflow_handle(workflow_id)
    return await handle.query(SyncWorkflow.status)
