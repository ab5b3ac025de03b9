from __future__ import annotations
from pydantic import BaseModel, Field, model_validator
from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4
from enum import Enum

UtcNow = lambda: datetime.now(timezone.utc)

def new_id(prefix: str) -> str:
    """`<prefix>_<epoch-ms>_<9 chars>`, unique within the process."""
    return f"{prefix}_{int(UtcNow().timestamp() * 1000)}_{uuid4().hex[:9]}"

class ContentType(str, Enum):
    text = "text"
    image = "image"
    file = "file"
    escrow_request = "escrow_request"
    escrow_response = "escrow_response"
    system = "system"

class MessageStatus(str, Enum):
    sent = "sent"
    delivered = "delivered"
    read = "read"
    pending = "pending"
    failed = "failed"

class DurabilityStatus(str, Enum):
    persisted_unacknowledged = "persisted_unacknowledged"
    acknowledged = "acknowledged"

class EscrowStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"
    completed = "completed"
    cancelled = "cancelled"

class Party(BaseModel):
    user_id: str | None = None
    email: str | None = None
    name: str | None = None

class MessageContent(BaseModel):
    text: str = Field(default="", max_length=2000)
    type: ContentType = ContentType.text
    metadata: dict[str, Any] = Field(default_factory=dict)

class Escrow(BaseModel):
    amount: float = Field(default=0, ge=0)
    currency: str = "INR"
    status: EscrowStatus = EscrowStatus.pending
    escrow_id: str | None = None
    product_id: str | None = None
    terms: str | None = Field(default=None, max_length=500)
    expires_at: datetime | None = None
    accepted_at: datetime | None = None
    completed_at: datetime | None = None

    @model_validator(mode="after")
    def _escrow_id_for_positive_amount(self) -> "Escrow":
        if self.amount > 0 and not self.escrow_id:
            self.escrow_id = new_id("escrow")
        return self

class ProductContext(BaseModel):
    product_id: str | None = None
    title: str | None = None
    price: float | None = None
    images: list[str] = Field(default_factory=list)

class Processing(BaseModel):
    batch_id: str | None = None
    processed_at: datetime | None = None
    retry_count: int = 0
    last_error: str | None = None

class ClientInfo(BaseModel):
    ip_address: str | None = None
    user_agent: str | None = None
    device_info: Any = None
    location: Any = None

class PersistenceInfo(BaseModel):
    file_path: str | None = None
    saved_at: datetime | None = None
    acknowledged: bool = False
    acknowledgment_id: str | None = None

class MessageRecord(BaseModel):
    message_id: str = Field(default_factory=lambda: new_id("msg"))
    room_id: str = Field(min_length=1)
    content: MessageContent = Field(default_factory=MessageContent)
    sender: Party = Field(default_factory=Party)
    receiver: Party = Field(default_factory=Party)
    timestamp: datetime = Field(default_factory=UtcNow)
    status: MessageStatus = MessageStatus.sent
    durability: DurabilityStatus = DurabilityStatus.persisted_unacknowledged
    escrow: Escrow | None = None
    product: ProductContext | None = None
    processing: Processing = Field(default_factory=Processing)
    client: ClientInfo = Field(default_factory=ClientInfo)
    persistence: PersistenceInfo = Field(default_factory=PersistenceInfo)

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.message_id, self.room_id)

    @property
    def has_escrow(self) -> bool:
        return self.escrow is not None and self.escrow.amount > 0

class Acknowledgment(BaseModel):
    acknowledgment_id: str = Field(default_factory=lambda: new_id("ack"))
    message_id: str
    status: str = "delivered"
    acknowledged_at: datetime = Field(default_factory=UtcNow)

class MessageState(BaseModel):
    """In-memory status entry kept per message id."""
    status: str
    acknowledged: bool = False
    saved_at: datetime | None = None
    updated_at: datetime | None = None
    extra: dict[str, Any] = Field(default_factory=dict)

class ReconciliationGap(BaseModel):
    message_id: str
    acknowledgment_id: str
    status: str
    reason: str = "Message not found in primary store"
    detected_at: datetime = Field(default_factory=UtcNow)

class OperationEntry(BaseModel):
    timestamp: datetime = Field(default_factory=UtcNow)
    operation: str
    data: dict[str, Any] = Field(default_factory=dict)
    level: Literal["ERROR", "WARN", "INFO"] = "INFO"

# ---------- conversation aggregate (owned by the primary store) ----------

class Participant(Party):
    joined_at: datetime = Field(default_factory=UtcNow)
    last_seen: datetime = Field(default_factory=UtcNow)
    is_active: bool = True

class LastMessage(BaseModel):
    text: str = Field(default="", max_length=200)
    sender: str | None = None
    timestamp: datetime | None = None

class ConversationMeta(BaseModel):
    message_count: int = 0
    last_message_id: str | None = None
    last_activity: datetime = Field(default_factory=UtcNow)
    last_message: LastMessage | None = None
    is_active: bool = True
    archived: bool = False

class ActiveEscrow(BaseModel):
    escrow_id: str | None = None
    amount: float
    status: EscrowStatus
    created_at: datetime = Field(default_factory=UtcNow)

class EscrowTotals(BaseModel):
    total_amount: float = 0
    pending_amount: float = 0
    completed_amount: float = 0
    active_escrows: list[ActiveEscrow] = Field(default_factory=list)

class ConversationAggregate(BaseModel):
    room_id: str
    participants: list[Participant] = Field(default_factory=list)
    product: ProductContext | None = None
    metadata: ConversationMeta = Field(default_factory=ConversationMeta)
    escrow: EscrowTotals = Field(default_factory=EscrowTotals)
    created_at: datetime = Field(default_factory=UtcNow)

    def add_participant(self, party: Party) -> None:
        if not party.user_id:
            return
        for p in self.participants:
            if p.user_id == party.user_id:
                p.is_active = True
                p.last_seen = UtcNow()
                return
        self.participants.append(Participant(**party.model_dump()))

    def update_last_message(self, msg: MessageRecord) -> None:
        self.metadata.last_message = LastMessage(
            text=msg.content.text[:200],
            sender=msg.sender.email,
            timestamp=msg.timestamp,
        )
        self.metadata.last_message_id = msg.message_id
        self.metadata.message_count += 1
        self.metadata.last_activity = UtcNow()

    def update_escrow_info(self, escrow: Escrow) -> None:
        if escrow.amount <= 0:
            return
        totals = self.escrow
        totals.total_amount += escrow.amount
        if escrow.status == EscrowStatus.pending:
            totals.pending_amount += escrow.amount
        elif escrow.status == EscrowStatus.completed:
            totals.completed_amount += escrow.amount
            totals.pending_amount = max(0.0, totals.pending_amount - escrow.amount)
        totals.active_escrows.append(
            ActiveEscrow(escrow_id=escrow.escrow_id, amount=escrow.amount, status=escrow.status)
        )
