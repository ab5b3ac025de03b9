# chatwal/api/sync_temporal.py
from __future__ import annotations
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Body, Query

from chatwal.domain.dtos import SyncRequest
from chatwal.temporal.client import query_sync_status, start_sync_workflow
from chatwal.temporal.dtos import WFSyncIn

router = APIRouter(prefix="/v1", tags=["sync-temporal"])

@router.post("/sync/temporal")
async def sync_temporal(body: Optional[SyncRequest] = Body(default=None), wait: bool = Query(True)):
    """
    Run batch -> recovery -> health as a durable Temporal workflow.
    ?wait=false returns the workflow ids instead of the result.
    """
    body = body or SyncRequest()
    payload = WFSyncIn(include_recovery=body.include_recovery, request_id=body.request_id)
    out = await start_sync_workflow(payload, wait=wait)
    if wait:
        return asdict(out)  # type: ignore[arg-type]
    wf_id, run_id = out  # type: ignore[misc]
    return {"workflow_id": wf_id, "run_id": run_id}

@router.get("/temporal/{workflow_id}/status")
async def temporal_status(workflow_id: str):
    """Query workflow status(): stage, batch id, processed and recovered counts."""
    return await query_sync_status(workflow_id)
