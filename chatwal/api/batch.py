# chatwal/api/batch.py
from __future__ import annotations
from fastapi import APIRouter, Depends

from chatwal.api.deps import get_service
from chatwal.service import DurabilityService

router = APIRouter(prefix="/v1/batch", tags=["batch"])


@router.get("/stats")
def batch_stats(svc: DurabilityService = Depends(get_service)):
    return svc.batch.stats()


@router.get("/health")
def batch_health(svc: DurabilityService = Depends(get_service)):
    return svc.batch.health()


@router.get("/rooms/{room_id}")
def room_messages(room_id: str, svc: DurabilityService = Depends(get_service)):
    msgs = svc.batch.messages_by_room(room_id)
    return {"room_id": room_id, "count": len(msgs), "messages": msgs}


@router.post("/process-now")
async def process_now(svc: DurabilityService = Depends(get_service)):
    """Run a batch immediately. 409 while another run is in progress."""
    return await svc.run_batch_now()


@router.delete("/clear")
async def clear_queue(svc: DurabilityService = Depends(get_service)):
    n = await svc.batch.clear_queue()
    return {"status": "ok", "cleared": n}


@router.get("/queue-file")
async def queue_file(svc: DurabilityService = Depends(get_service)):
    return await svc.batch.read_queue_file()
