# quantumbets/crud/content.py
from sqlmodel import Session
from sqlalchemy import update
from typing import List, Optional
from datetime import datetime

from quantumbets.models.content import Content, ANALYTICS_FIELDS

# Fields whose change requires conversion_rate to be recomputed
CONVERSION_INPUTS = ("emails_sent", "email_clicks")


class ContentCRUD:
    def create_content(
        self,
        db: Session,
        title: str,
        html_content: str,
        plain_text_content: str,
        sms_content: str,
        content_date: datetime,
        sports: List[str],
        tier_availability: List[str],
        is_published: bool = False
    ) -> Content:
        """Create a new content item."""
        content = Content(
            title=title,
            html_content=html_content,
            plain_text_content=plain_text_content,
            sms_content=sms_content,
            content_date=content_date,
            sports=sports,
            tier_availability=tier_availability,
            is_published=is_published
        )
        db.add(content)
        db.commit()
        db.refresh(content)
        return content

    def get_content(self, db: Session, content_id: int) -> Optional[Content]:
        """Get content by ID."""
        return db.get(Content, content_id)

    def increment_analytics(
        self,
        db: Session,
        content_id: int,
        field: str,
        increment: int = 1
    ) -> bool:
        """
        Atomically increment one analytics counter.

        Runs as a single UPDATE so concurrent deliveries never lose
        increments. Returns False if the content no longer exists.
        """
        if field not in ANALYTICS_FIELDS:
            raise ValueError(f"Unknown analytics field: {field}")

        column = getattr(Content, field)
        result = db.exec(
            update(Content)
            .where(Content.id == content_id)
            .values({field: column + increment, "updated_at": datetime.utcnow()})
            .execution_options(synchronize_session=False)
        )

        if field in CONVERSION_INPUTS:
            db.exec(
                update(Content)
                .where(Content.id == content_id, Content.emails_sent > 0)
                .values(conversion_rate=Content.email_clicks * 100.0 / Content.emails_sent)
                .execution_options(synchronize_session=False)
            )

        db.commit()
        return result.rowcount == 1


# Create singleton instance
content_crud = ContentCRUD()
