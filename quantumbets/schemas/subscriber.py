from pydantic import BaseModel, Field, EmailStr, field_validator, model_validator
from typing import Optional
from enum import Enum


class SubscriptionTier(str, Enum):
    FREE = "FREE"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class SubscriberCreate(BaseModel):
    """Schema for creating a subscriber (signup, checkout or seeding)."""
    email: EmailStr
    name: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE
    is_active: bool = True
    receive_email: bool = True
    receive_sms: bool = False

    @field_validator('email')
    def normalize_email(cls, v):
        return v.strip().lower()

    @model_validator(mode='after')
    def sms_requires_phone(self):
        if self.receive_sms and not self.phone:
            raise ValueError('A phone number is required to receive SMS')
        return self

