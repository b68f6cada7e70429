# quantumbets/models/content.py
from sqlmodel import SQLModel, Field, Relationship, Column, Text, JSON
from typing import Optional, List, Dict, Any, TYPE_CHECKING
from datetime import datetime

if TYPE_CHECKING:
    from quantumbets.models.delivery import Delivery


# Analytics counters that the pipeline is allowed to increment
ANALYTICS_FIELDS = (
    "emails_sent",
    "emails_opened",
    "email_clicks",
    "sms_sent",
    "delivery_success_count",
    "delivery_failure_count",
    "delivery_pending_count",
)


class Content(SQLModel, table=True):
    """One newsletter issue (picks for a given day)."""
    __tablename__ = "content"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(max_length=200, index=True)

    # Body representations
    html_content: str = Field(sa_column=Column(Text, nullable=False))
    plain_text_content: str = Field(default="", sa_column=Column(Text, nullable=False))
    sms_content: str = Field(default="", max_length=160)

    content_date: datetime = Field(default_factory=datetime.utcnow, index=True)
    sports: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    tier_availability: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    is_published: bool = Field(default=False, index=True)

    # Analytics aggregate
    emails_sent: int = Field(default=0)
    emails_opened: int = Field(default=0)
    email_clicks: int = Field(default=0)
    sms_sent: int = Field(default=0)
    delivery_success_count: int = Field(default=0)
    delivery_failure_count: int = Field(default=0)
    delivery_pending_count: int = Field(default=0)
    conversion_rate: Optional[float] = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    deliveries: List["Delivery"] = Relationship(back_populates="content")

    @property
    def analytics(self) -> Dict[str, Any]:
        return {
            "emails_sent": self.emails_sent,
            "emails_opened": self.emails_opened,
            "email_clicks": self.email_clicks,
            "sms_sent": self.sms_sent,
            "delivery_success_count": self.delivery_success_count,
            "delivery_failure_count": self.delivery_failure_count,
            "delivery_pending_count": self.delivery_pending_count,
            "conversion_rate": self.conversion_rate,
        }
