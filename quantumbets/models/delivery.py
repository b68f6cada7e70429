# quantumbets/models/delivery.py
from sqlmodel import SQLModel, Field, Relationship, Column, Text, JSON
from sqlalchemy import UniqueConstraint
from typing import Optional, Dict, Any, FrozenSet, Tuple
from datetime import datetime
from enum import Enum

from quantumbets.models.content import Content
from quantumbets.models.subscriber import Subscriber


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


# Allowed status changes. FAILED -> PENDING is only taken by the retry sweeper.
TRANSITIONS: Dict[DeliveryStatus, FrozenSet[DeliveryStatus]] = {
    DeliveryStatus.pending: frozenset({DeliveryStatus.sent, DeliveryStatus.failed}),
    DeliveryStatus.sent: frozenset({
        DeliveryStatus.delivered,
        DeliveryStatus.opened,
        DeliveryStatus.clicked,
        DeliveryStatus.failed,
    }),
    DeliveryStatus.delivered: frozenset({DeliveryStatus.opened, DeliveryStatus.clicked}),
    DeliveryStatus.opened: frozenset({DeliveryStatus.clicked}),
    DeliveryStatus.clicked: frozenset(),
    DeliveryStatus.failed: frozenset({DeliveryStatus.pending}),
}

# Statuses reached only by recipient engagement, EMAIL only
ENGAGEMENT_STATUSES = frozenset({DeliveryStatus.opened, DeliveryStatus.clicked})


def can_transition(current: DeliveryStatus, target: DeliveryStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def sources_for(target: DeliveryStatus) -> Tuple[DeliveryStatus, ...]:
    """Every status from which `target` may be reached."""
    return tuple(status for status, targets in TRANSITIONS.items() if target in targets)


class Delivery(SQLModel, table=True):
    """One attempt to deliver one Content to one Subscriber over one channel."""
    __tablename__ = "deliveries"
    __table_args__ = (
        UniqueConstraint("subscriber_id", "content_id", "channel", name="uq_deliveries_subscriber_content_channel"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    subscriber_id: int = Field(foreign_key="subscribers.id", index=True)
    content_id: int = Field(foreign_key="content.id", index=True)
    channel: DeliveryChannel

    status: DeliveryStatus = Field(default=DeliveryStatus.pending, index=True)
    sent_at: Optional[datetime] = Field(default=None, index=True)
    delivered_at: Optional[datetime] = Field(default=None)
    opened_at: Optional[datetime] = Field(default=None)
    clicked_at: Optional[datetime] = Field(default=None)

    failure_reason: Optional[str] = Field(default=None, sa_column=Column(Text))
    retry_count: int = Field(default=0)

    tracking_id: str = Field(max_length=64, unique=True, index=True)
    delivery_metadata: Dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON))

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    subscriber: Subscriber = Relationship(back_populates="deliveries")
    content: Content = Relationship(back_populates="deliveries")
