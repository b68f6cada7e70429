from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict
from datetime import datetime

ALL_TIERS = ["FREE", "DAILY", "WEEKLY", "MONTHLY"]


class ContentCreate(BaseModel):
    """Schema for authoring or ingesting a newsletter issue."""
    title: str = Field(..., min_length=1, max_length=200)
    html_content: str = Field(..., min_length=1)
    content_date: Optional[datetime] = None
    sports: Optional[List[str]] = None
    tier_availability: List[str] = Field(default_factory=lambda: list(ALL_TIERS))
    is_published: bool = False

    @field_validator('title')
    def validate_title(cls, v):
        if not v.strip():
            raise ValueError('Title cannot be empty')
        return v.strip()

    @field_validator('tier_availability')
    def validate_tiers(cls, v):
        if not v:
            raise ValueError('At least one tier must have access to the content')
        tiers = [tier.upper() for tier in v]
        unknown = [tier for tier in tiers if tier not in ALL_TIERS]
        if unknown:
            raise ValueError(f'Unknown subscription tiers: {", ".join(unknown)}')
        return tiers


class ContentAnalytics(BaseModel):
    """Analytics aggregate of one content item."""
    emails_sent: int
    emails_opened: int
    email_clicks: int
    sms_sent: int
    delivery_success_count: int
    delivery_failure_count: int
    delivery_pending_count: int
    conversion_rate: Optional[float]


class Content(BaseModel):
    id: int
    title: str
    html_content: str
    plain_text_content: str
    sms_content: str
    content_date: datetime
    sports: List[str]
    tier_availability: List[str]
    is_published: bool
    analytics: ContentAnalytics
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ContentAnalyticsResponse(BaseModel):
    """Stored counters plus live delivery counts per status."""
    content_id: int
    analytics: ContentAnalytics
    deliveries_by_status: Dict[str, int]
