# chatwal_client/models.py
from __future__ import annotations
from typing import Any, Literal, Optional
from pydantic import BaseModel, Field

ContentType = Literal["text", "image", "file", "escrow_request", "escrow_response", "system"]

# -------- Messages --------
class EscrowIn(BaseModel):
    amount: float = 0
    currency: str = "INR"
    status: str = "pending"
    product_id: str | None = None
    terms: str | None = None

class SubmitMessageIn(BaseModel):
    room_id: str
    message: str = ""
    content_type: ContentType = "text"
    message_id: str | None = None
    sender_id: str | None = None
    sender_email: str | None = None
    sender_name: str | None = None
    receiver_id: str | None = None
    receiver_email: str | None = None
    receiver_name: str | None = None
    product_id: str | None = None
    product_title: str | None = None
    product_price: float | None = None
    escrow: EscrowIn | None = None
    metadata: dict[str, Any] | None = None

class SubmitOut(BaseModel):
    message_id: str
    room_id: str
    durability: str
    timestamp: str
    message: dict[str, Any] = Field(default_factory=dict)

class Acknowledgment(BaseModel):
    acknowledgment_id: str
    message_id: str
    status: str
    acknowledged_at: str

class MessageStatusOut(BaseModel):
    message_id: str
    status: str
    acknowledged: bool = False
    saved_at: str | None = None
    updated_at: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)

# -------- Batch --------
class BatchResult(BaseModel):
    batch_id: str | None = None
    skipped: str | None = None
    total: int = 0
    processed: int = 0
    duplicates: int = 0
    errors: int = 0
    duration_ms: int = 0

class BatchStats(BaseModel):
    total_messages: int
    is_processing: bool
    next_batch_time: str | None = None
    last_batch_processed: str | None = None
    batch_interval_s: float
    max_batch_size: int
    last_result: Optional[BatchResult] = None

# -------- Persistence --------
class RecoveryResult(BaseModel):
    unacknowledged: int = 0
    recovered: int = 0
    duplicates: int = 0
    failed: int = 0
    poisoned: int = 0
    stale_acknowledgments: int = 0
    reconciled: int = 0
    gaps: int = 0

class HealthOut(BaseModel):
    status: Literal["healthy", "unhealthy"]
    queued_messages: int | None = None
    unacknowledged_messages: int | None = None
    failed_acknowledgments: int | None = None
    reconciliation_gaps: int | None = None
    poisoned_messages: int | None = None
    error: str | None = None
    stats: dict[str, Any] | None = None

class OperationEntry(BaseModel):
    timestamp: str
    operation: str
    data: dict[str, Any] = Field(default_factory=dict)
    level: Literal["ERROR", "WARN", "INFO"]

# -------- Temporal --------
class TemporalStartOut(BaseModel):
    workflow_id: str
    run_id: str

class TemporalStatusOut(BaseModel):
    stage: str
    batch_id: str | None = None
    processed: int = 0
    recovered: int = 0
