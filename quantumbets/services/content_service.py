# quantumbets/services/content_service.py
"""
Content Service: tracking IDs, tier filtering, tracking injection and
content ingestion.
"""
import re
import uuid
import base64
import logging
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any
from datetime import datetime
from html import unescape
from urllib.parse import quote
from sqlmodel import Session

from quantumbets.crud.content import content_crud
from quantumbets.models.content import Content
from quantumbets.core.config import settings
from quantumbets.core.sms import format_picks_for_sms

logger = logging.getLogger(__name__)

# 1x1 transparent GIF for open tracking
TRACKING_PIXEL = base64.b64decode("R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7")

UPGRADE_SMS = "Subscribe to our premium tiers for today's picks! Visit quantumbets.com/upgrade"

_HREF_RE = re.compile(r'(<a\b[^>]*?\s)href="([^"]*)"', re.IGNORECASE)
_PICK_RE = re.compile(r'<div[^>]*class="pick"[^>]*>(.*?)</div>', re.IGNORECASE | re.DOTALL)
_SPORT_RE = re.compile(r'<span[^>]*class="sport"[^>]*>(.*?)</span>', re.IGNORECASE)

PICK_DEFAULTS = {
    "sport": "Unknown",
    "team": "Unknown Team",
    "bet": "Moneyline",
    "odds": "Even",
    "units": "1",
    "analysis": "",
}


@dataclass(frozen=True)
class ContentView:
    """The bodies one subscriber is entitled to see for a content item."""
    content_id: Optional[int]
    title: str
    html_content: str
    plain_text_content: str
    sms_content: str
    is_teaser: bool = False
    sports: List[str] = field(default_factory=list)


def upgrade_teaser_html() -> str:
    return (
        "<div><h2>Today's Free Pick Preview</h2>"
        "<p>Subscribe to our premium tiers to get all of today's picks and detailed analysis!</p>"
        f"<a href=\"{settings.SITE_URL}/upgrade\">Upgrade Now</a></div>"
    )


def _tier_value(tier) -> str:
    return getattr(tier, "value", tier)


class ContentService:
    """Service for preparing content bodies for delivery."""

    @staticmethod
    def generate_tracking_id() -> str:
        """Generate a globally unique opaque tracking ID."""
        return str(uuid.uuid4())

    @staticmethod
    def filter_content_for_tier(content: Content, tier) -> ContentView:
        """
        Resolve the bodies a subscriber tier may see.

        Tiers listed in tier_availability get the full bodies; any other
        tier gets the upgrade teaser. The Content row is never modified.
        """
        common = dict(
            content_id=content.id,
            title=content.title,
            sports=list(content.sports or []),
        )
        if _tier_value(tier) in (content.tier_availability or []):
            return ContentView(
                html_content=content.html_content,
                plain_text_content=content.plain_text_content,
                sms_content=content.sms_content,
                **common
            )

        teaser = upgrade_teaser_html()
        return ContentView(
            html_content=teaser,
            plain_text_content=ContentService.extract_plain_text(teaser),
            sms_content=UPGRADE_SMS,
            is_teaser=True,
            **common
        )

    @staticmethod
    def add_tracking(html_content: str, tracking_id: str, base_url: Optional[str] = None) -> str:
        """
        Instrument an email body for open and click tracking.

        Every href on an anchor is routed through the click endpoint with
        the original URL, entities decoded and percent-encoded, in `url`;
        other attributes keep their order. A 1x1 pixel pointing at the open
        endpoint goes right before </body>, or at the end when there is no
        body tag.

        Must be applied exactly once, to a body fresh from the tier filter.
        """
        base = (base_url or settings.API_URL).rstrip("/")
        click_base = f"{base}/tracking/click/{tracking_id}?url="

        tracked = _HREF_RE.sub(
            lambda m: f'{m.group(1)}href="{click_base}{quote(unescape(m.group(2)), safe="")}"',
            html_content
        )

        pixel = (
            f'<img src="{base}/tracking/open/{tracking_id}" alt="" '
            f'width="1" height="1" style="display:none;" />'
        )
        index = tracked.lower().rfind("</body>")
        if index == -1:
            return tracked + pixel
        return tracked[:index] + pixel + tracked[index:]

    @staticmethod
    def extract_plain_text(html_content: str) -> str:
        """Strip tags and collapse whitespace."""
        return re.sub(r'\s+', ' ', re.sub(r'<[^>]*>', ' ', html_content)).strip()

    @staticmethod
    def extract_picks(html_content: str) -> List[Dict[str, Any]]:
        """Pull picks out of `<div class="pick">` blocks."""
        picks = []
        for match in _PICK_RE.finditer(html_content):
            pick_html = match.group(1)
            pick = {}
            for name, default in PICK_DEFAULTS.items():
                value = re.search(
                    rf'<span[^>]*class="{name}"[^>]*>(.*?)</span>', pick_html, re.IGNORECASE
                )
                pick[name] = value.group(1).strip() if value and value.group(1).strip() else default
            picks.append(pick)
        return picks

    @staticmethod
    def extract_sports(html_content: str) -> List[str]:
        """Distinct sport tags in order of first appearance."""
        sports: List[str] = []
        for match in _SPORT_RE.finditer(html_content):
            sport = re.sub(r'<[^>]+>', '', match.group(1)).strip()
            if sport and sport not in sports:
                sports.append(sport)
        return sports

    @staticmethod
    def create_sms_content(html_content: str) -> str:
        """Build the SMS body from the picks in the HTML, capped at the SMS length."""
        body = format_picks_for_sms(ContentService.extract_picks(html_content))
        limit = settings.SMS_MAX_LENGTH
        if len(body) > limit:
            body = body[:limit - 3] + "..."
        return body

    @staticmethod
    def process_and_store_content(
        db: Session,
        html_content: str,
        title: str,
        content_date: Optional[datetime] = None,
        sports: Optional[List[str]] = None,
        tier_availability: Optional[List[str]] = None,
        is_published: bool = False
    ) -> Content:
        """
        Derive the plain text and SMS bodies and persist a new Content.

        Args:
            db: Database session
            html_content: Newsletter HTML as authored or ingested
            title: Issue title
            content_date: Date the picks are for (defaults to now)
            sports: Sport tags (extracted from the HTML when not given)
            tier_availability: Tiers entitled to the full content (defaults to all)
            is_published: Publish immediately

        Returns:
            Created Content
        """
        tiers = tier_availability or ["FREE", "DAILY", "WEEKLY", "MONTHLY"]

        content = content_crud.create_content(
            db,
            title=title,
            html_content=html_content,
            plain_text_content=ContentService.extract_plain_text(html_content),
            sms_content=ContentService.create_sms_content(html_content),
            content_date=content_date or datetime.utcnow(),
            sports=sports if sports is not None else ContentService.extract_sports(html_content),
            tier_availability=tiers,
            is_published=is_published
        )
        logger.info(f"Content {content.id} stored: '{title}' for tiers {', '.join(tiers)}")
        return content


# Create singleton instance
content_service = ContentService()
