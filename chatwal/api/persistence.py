# chatwal/api/persistence.py
from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from chatwal.api.deps import get_service
from chatwal.domain.dtos import CleanupIn
from chatwal.service import DurabilityService

router = APIRouter(prefix="/v1/persistence", tags=["persistence"])


@router.get("/health")
async def persistence_health(svc: DurabilityService = Depends(get_service)):
    health = await svc.health()
    code = status.HTTP_200_OK if health["status"] == "healthy" else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=code, content=jsonable_encoder(health))


@router.get("/stats")
async def persistence_stats(svc: DurabilityService = Depends(get_service)):
    return await svc.persistence_stats()


@router.get("/unacknowledged")
async def unacknowledged(svc: DurabilityService = Depends(get_service)):
    msgs = await svc.tracker.get_unacknowledged()
    return {"count": len(msgs), "messages": msgs}


@router.get("/failed-acknowledgments")
async def failed_acknowledgments(svc: DurabilityService = Depends(get_service)):
    stale = await svc.tracker.get_stale_acknowledgments(svc.settings.ack_timeout_s)
    return {"count": len(stale), "acknowledgments": stale}


@router.get("/gaps")
def reconciliation_gaps(svc: DurabilityService = Depends(get_service)):
    gaps = svc.recovery.list_gaps()
    return {"count": len(gaps), "gaps": gaps}


@router.get("/poison")
async def poisoned(svc: DurabilityService = Depends(get_service)):
    msgs = await svc.tracker.list_poisoned()
    return {"count": len(msgs), "messages": msgs}


@router.post("/recovery")
async def trigger_recovery(svc: DurabilityService = Depends(get_service)):
    return await svc.recovery.tick()


@router.get("/files")
async def file_stats(svc: DurabilityService = Depends(get_service)):
    return await svc.file_stats()


@router.post("/cleanup")
async def cleanup(body: Optional[CleanupIn] = Body(default=None), svc: DurabilityService = Depends(get_service)):
    days = body.days_to_keep if body is not None else None
    deleted = await svc.cleanup(days)
    return {"status": "ok", "deleted": deleted}


@router.get("/logs")
async def operation_logs(
    limit: int = Query(100, ge=1, le=10000),
    level: Optional[str] = Query(None),
    svc: DurabilityService = Depends(get_service),
):
    entries = await svc.oplog.recent(limit=limit, level=level)
    return {"count": len(entries), "logs": entries}
