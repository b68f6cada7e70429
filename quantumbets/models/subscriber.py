# quantumbets/models/subscriber.py
from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, List, Dict, TYPE_CHECKING
from datetime import datetime
from enum import Enum

if TYPE_CHECKING:
    from quantumbets.models.delivery import Delivery


class SubscriptionTier(str, Enum):
    FREE = "FREE"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class Subscriber(SQLModel, table=True):
    __tablename__ = "subscribers"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(max_length=255, unique=True, index=True)
    name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=20)

    subscription_tier: SubscriptionTier = Field(default=SubscriptionTier.FREE, index=True)
    is_active: bool = Field(default=True, index=True)

    # Communication preferences
    receive_email: bool = Field(default=True)
    receive_sms: bool = Field(default=False)

    # Billing linkage (maintained by the billing webhooks)
    stripe_customer_id: Optional[str] = Field(default=None, max_length=255, index=True)
    stripe_subscription_id: Optional[str] = Field(default=None, max_length=255)
    last_payment_date: Optional[datetime] = Field(default=None)
    next_billing_date: Optional[datetime] = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    deliveries: List["Delivery"] = Relationship(back_populates="subscriber")

    @property
    def communication_preferences(self) -> Dict[str, bool]:
        return {"email": self.receive_email, "sms": self.receive_sms}

    @property
    def is_paid(self) -> bool:
        return self.subscription_tier != SubscriptionTier.FREE
