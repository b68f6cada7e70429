# quantumbets/routers/tracking.py
"""
Tracking Router - Open pixel, click redirect and SMS status callbacks.

Open and click responses never wait on the database: the delivery
update runs as a background task with its own session.
"""
import logging
from fastapi import APIRouter, BackgroundTasks, Depends, Form, HTTPException, status
from fastapi.responses import Response, RedirectResponse
from sqlmodel import Session
from typing import Callable, Optional
from urllib.parse import urlparse

from quantumbets.database.engine import get_db, get_session_factory
from quantumbets.services.content_service import TRACKING_PIXEL
from quantumbets.services.delivery_service import delivery_service
from quantumbets.core.config import settings

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/tracking",
    tags=["tracking"],
)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

# Anything else (javascript:, data:, relative paths) goes to the site root
REDIRECT_SCHEMES = {"http", "https"}


def is_redirectable(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme.lower() in REDIRECT_SCHEMES and bool(parsed.netloc)


@router.get("/open/{tracking_id}")
def track_open(
    tracking_id: str,
    background_tasks: BackgroundTasks,
    session_factory: Callable[[], Session] = Depends(get_session_factory)
):
    """
    Track an email open (returns 1x1 transparent pixel).

    **Permissions**: Public (called by email clients)
    """
    background_tasks.add_task(delivery_service.record_open_safely, session_factory, tracking_id)
    return Response(content=TRACKING_PIXEL, media_type="image/gif", headers=NO_CACHE_HEADERS)


@router.get("/click/{tracking_id}")
def track_click(
    tracking_id: str,
    background_tasks: BackgroundTasks,
    url: Optional[str] = None,
    session_factory: Callable[[], Session] = Depends(get_session_factory)
):
    """
    Track a link click and redirect to the original URL.

    **Permissions**: Public (called by email clients)
    """
    if not tracking_id.strip() or not url:
        raise HTTPException(status_code=400, detail="Tracking ID and URL are required")

    background_tasks.add_task(delivery_service.record_click_safely, session_factory, tracking_id)

    if not is_redirectable(url):
        logger.warning(f"Refusing click redirect for {tracking_id[:12]}... to non-web URL: {url[:80]}")
        return RedirectResponse(url=settings.SITE_URL, status_code=status.HTTP_302_FOUND)

    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


@router.post("/sms-status/{tracking_id}", status_code=status.HTTP_204_NO_CONTENT)
def sms_status_callback(
    tracking_id: str,
    MessageStatus: str = Form(...),
    ErrorCode: Optional[str] = Form(None),
    db: Session = Depends(get_db)
):
    """
    Receive a Twilio message status callback.

    **Permissions**: Public (called by the SMS provider)
    """
    delivery_service.record_sms_status(db, tracking_id, MessageStatus, ErrorCode)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
