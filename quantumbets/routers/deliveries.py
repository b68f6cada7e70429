# quantumbets/routers/deliveries.py
"""
Deliveries Router - Processing and retry sweeps plus delivery reads.
"""
from fastapi import APIRouter, Depends, Query
from sqlmodel import Session
from typing import Optional

from quantumbets.database.engine import get_db
from quantumbets.crud.delivery import delivery_crud
from quantumbets.models.delivery import DeliveryChannel, DeliveryStatus
from quantumbets.services.delivery_service import delivery_service
from quantumbets.schemas.delivery import (
    Delivery, DeliveryListResponse, DeliveryStats,
    ProcessResponse, RetryResponse,
)

router = APIRouter(
    prefix="/deliveries",
    tags=["deliveries"],
    responses={404: {"description": "Not found"}},
)


# ========================================
# SWEEPS
# ========================================

@router.post("/process", response_model=ProcessResponse)
async def process_deliveries(db: Session = Depends(get_db)):
    """
    Send all pending deliveries.

    Individual send failures are recorded on their delivery and counted
    in `failed`; they never fail the request.
    """
    return ProcessResponse(**await delivery_service.process_pending_deliveries(db))


@router.post("/retry", response_model=RetryResponse)
def retry_deliveries(
    max_retries: int = Query(3, ge=1, le=20),
    db: Session = Depends(get_db)
):
    """Move failed deliveries with fewer than `max_retries` attempts back to pending."""
    return RetryResponse(**delivery_service.retry_failed_deliveries(db, max_retries))


# ========================================
# READS
# ========================================

@router.get("", response_model=DeliveryListResponse)
def list_deliveries(
    content_id: Optional[int] = Query(None),
    status: Optional[DeliveryStatus] = Query(None),
    channel: Optional[DeliveryChannel] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db)
):
    deliveries, total = delivery_crud.get_deliveries(
        db, skip=skip, limit=limit, content_id=content_id, status=status, channel=channel
    )

    return DeliveryListResponse(
        items=[Delivery.model_validate(d) for d in deliveries],
        total=total,
        skip=skip,
        limit=limit
    )


@router.get("/stats", response_model=DeliveryStats)
def get_delivery_stats(
    content_id: Optional[int] = Query(None),
    db: Session = Depends(get_db)
):
    """Delivery counts per status, overall or for one content item."""
    return DeliveryStats(**delivery_service.get_delivery_stats(db, content_id))


@router.get("/{delivery_id}", response_model=Delivery)
def get_delivery(
    delivery_id: int,
    db: Session = Depends(get_db)
):
    return Delivery.model_validate(delivery_service.get_delivery(db, delivery_id))


@router.post("/{delivery_id}/retry", response_model=Delivery)
def retry_delivery(
    delivery_id: int,
    db: Session = Depends(get_db)
):
    """
    Manually move one failed delivery back to pending.

    Returns 409 if the delivery is not failed or has used up its retries.
    """
    return Delivery.model_validate(delivery_service.retry_delivery(db, delivery_id))
