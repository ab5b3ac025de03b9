# chatwal/api/messages.py
from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Body, Depends, status

from chatwal.api.deps import get_service
from chatwal.domain.dtos import AcknowledgeIn, StatusUpdateIn, SubmitMessageIn
from chatwal.domain.errors import NotFoundError
from chatwal.service import DurabilityService

router = APIRouter(prefix="/v1/messages", tags=["messages"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_message(body: SubmitMessageIn, svc: DurabilityService = Depends(get_service)):
    """
    Durable intake. Returns only after the record is on disk; the primary
    store write happens later in a batch run.
    """
    record = await svc.submit(body)
    return {
        "message_id": record.message_id,
        "room_id": record.room_id,
        "durability": record.durability.value,
        "timestamp": record.timestamp,
        "message": record,
    }


@router.get("/statuses")
def list_statuses(svc: DurabilityService = Depends(get_service)):
    return svc.durability.all_message_statuses()


@router.post("/{message_id}/ack")
async def acknowledge_message(
    message_id: str,
    body: Optional[AcknowledgeIn] = Body(default=None),
    svc: DurabilityService = Depends(get_service),
):
    # transport-level delivery receipt; status defaults to "delivered"
    ack = await svc.acknowledge(message_id, (body or AcknowledgeIn()).status)
    return ack


@router.get("/{message_id}/status")
def get_status(message_id: str, svc: DurabilityService = Depends(get_service)):
    st = svc.durability.get_message_status(message_id)
    if st is None:
        raise NotFoundError("Message status")
    return {"message_id": message_id, **st.model_dump(mode="json")}


@router.patch("/{message_id}/status")
async def update_status(message_id: str, body: StatusUpdateIn, svc: DurabilityService = Depends(get_service)):
    st = await svc.durability.update_message_status(message_id, body.status, body.additional_data)
    return {"message_id": message_id, **st.model_dump(mode="json")}
