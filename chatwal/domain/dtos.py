from pydantic import BaseModel, Field, model_validator
from typing import Any
from datetime import datetime

from chatwal.domain.models import (
    ClientInfo, ContentType, Escrow, MessageContent, MessageRecord, Party, ProductContext,
)

class SubmitMessageIn(BaseModel):
    # Flat shape shared by the HTTP handler and the socket handler.
    # Socket payloads carry seller_* instead of receiver_*; both are accepted.
    message_id: str | None = None
    room_id: str = Field(min_length=1)
    message: str = Field(default="", max_length=2000)
    content_type: ContentType = ContentType.text
    metadata: dict[str, Any] | None = None

    sender_id: str | None = None
    sender_email: str | None = None
    sender_name: str | None = None
    receiver_id: str | None = None
    receiver_email: str | None = None
    receiver_name: str | None = None
    seller_id: str | None = None
    seller_email: str | None = None

    timestamp: datetime | None = None
    escrow: Escrow | None = None

    product_id: str | None = None
    product_title: str | None = None
    product_price: float | None = None
    product_images: list[str] | None = None

    ip_address: str | None = None
    user_agent: str | None = None
    device_info: Any = None
    location: Any = None

    @model_validator(mode="after")
    def _needs_sender(self) -> "SubmitMessageIn":
        if not (self.sender_id or self.sender_email):
            raise ValueError("sender_id or sender_email is required")
        return self

    def to_record(self) -> MessageRecord:
        """Normalize the flat payload into a MessageRecord (id/timestamp defaulted)."""
        receiver_email = self.receiver_email or self.seller_email
        fields: dict[str, Any] = {
            "room_id": self.room_id,
            "content": MessageContent(
                text=self.message, type=self.content_type, metadata=self.metadata or {}
            ),
            "sender": Party(
                user_id=self.sender_id,
                email=self.sender_email,
                name=self.sender_name or self.sender_email,
            ),
            "receiver": Party(
                user_id=self.receiver_id or self.seller_id,
                email=receiver_email,
                name=self.receiver_name or receiver_email,
            ),
            "escrow": self.escrow,
            "client": ClientInfo(
                ip_address=self.ip_address,
                user_agent=self.user_agent,
                device_info=self.device_info,
                location=self.location,
            ),
        }
        if self.product_id or self.product_title:
            fields["product"] = ProductContext(
                product_id=self.product_id,
                title=self.product_title,
                price=self.product_price,
                images=self.product_images or [],
            )
        if self.message_id:
            fields["message_id"] = self.message_id
        if self.timestamp is not None:
            fields["timestamp"] = self.timestamp
        return MessageRecord(**fields)

class AcknowledgeIn(BaseModel):
    status: str = "delivered"

class StatusUpdateIn(BaseModel):
    status: str
    additional_data: dict[str, Any] | None = None

class CleanupIn(BaseModel):
    days_to_keep: int = Field(default=30, ge=0)

class BatchResult(BaseModel):
    batch_id: str | None = None
    skipped: str | None = None          # "running" | "empty" when the run was a no-op
    total: int = 0
    processed: int = 0
    duplicates: int = 0
    errors: int = 0
    duration_ms: int = 0

class RecoveryResult(BaseModel):
    unacknowledged: int = 0
    recovered: int = 0
    duplicates: int = 0
    failed: int = 0
    poisoned: int = 0
    stale_acknowledgments: int = 0
    reconciled: int = 0
    gaps: int = 0

class SyncRequest(BaseModel):
    request_id: str | None = None
    include_recovery: bool = True
