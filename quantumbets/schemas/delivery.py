from pydantic import BaseModel
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


# Enums (matching models)
class DeliveryChannel(str, Enum):
    email = "email"
    sms = "sms"


class DeliveryStatus(str, Enum):
    pending = "pending"
    sent = "sent"
    delivered = "delivered"
    opened = "opened"
    clicked = "clicked"
    failed = "failed"


class Delivery(BaseModel):
    id: int
    subscriber_id: int
    content_id: int
    channel: DeliveryChannel
    status: DeliveryStatus
    sent_at: Optional[datetime]
    delivered_at: Optional[datetime]
    opened_at: Optional[datetime]
    clicked_at: Optional[datetime]
    failure_reason: Optional[str]
    retry_count: int
    tracking_id: str
    delivery_metadata: Dict[str, Any] = {}
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class DeliveryListResponse(BaseModel):
    """Paginated list of deliveries."""
    items: List[Delivery]
    total: int
    skip: int
    limit: int


class DeliveryStats(BaseModel):
    """Delivery counts per status."""
    content_id: Optional[int] = None
    total: int
    by_status: Dict[str, int]


# ============================================================
# Batch operation results
# ============================================================

class ScheduleResponse(BaseModel):
    scheduled: int


class ProcessResponse(BaseModel):
    processed: int
    failed: int


class RetryResponse(BaseModel):
    retried: int
