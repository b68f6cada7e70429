# quantumbets/routers/content.py
"""
Content Router - Content ingestion, scheduling and analytics.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session

from quantumbets.database.engine import get_db
from quantumbets.crud.content import content_crud
from quantumbets.services.content_service import content_service
from quantumbets.services.delivery_service import delivery_service
from quantumbets.schemas.content import ContentCreate, Content, ContentAnalyticsResponse
from quantumbets.schemas.delivery import ScheduleResponse

router = APIRouter(
    prefix="/content",
    tags=["content"],
    responses={404: {"description": "Not found"}},
)


@router.post("", response_model=Content, status_code=status.HTTP_201_CREATED)
def create_content(
    data: ContentCreate,
    db: Session = Depends(get_db)
):
    """
    Store a newsletter issue.

    Plain text and SMS bodies are derived from the HTML; sport tags are
    extracted from it when not supplied.
    """
    content = content_service.process_and_store_content(
        db,
        html_content=data.html_content,
        title=data.title,
        content_date=data.content_date,
        sports=data.sports,
        tier_availability=data.tier_availability,
        is_published=data.is_published
    )
    return Content.model_validate(content)


@router.get("/{content_id}", response_model=Content)
def get_content(
    content_id: int,
    db: Session = Depends(get_db)
):
    content = content_crud.get_content(db, content_id)
    if not content:
        raise HTTPException(status_code=404, detail="Content not found")

    return Content.model_validate(content)


@router.post("/{content_id}/schedule", response_model=ScheduleResponse)
def schedule_content(
    content_id: int,
    db: Session = Depends(get_db)
):
    """
    Create pending deliveries of a content item for all active subscribers.

    Safe to call again: deliveries that already exist are skipped and
    only newly created ones are counted.
    """
    return ScheduleResponse(**delivery_service.schedule_delivery(db, content_id))


@router.get("/{content_id}/analytics", response_model=ContentAnalyticsResponse)
def get_content_analytics(
    content_id: int,
    db: Session = Depends(get_db)
):
    """Analytics counters of a content item with live delivery counts per status."""
    return ContentAnalyticsResponse(**delivery_service.get_content_analytics(db, content_id))
