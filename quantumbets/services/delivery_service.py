# quantumbets/services/delivery_service.py
"""
Delivery Service: scheduling, sending, tracking and retrying deliveries
of content to subscribers over email and SMS.
"""
import logging
import asyncio
from typing import Optional, List, Dict, Any, Callable
from sqlmodel import Session

from quantumbets.crud.content import content_crud
from quantumbets.crud.delivery import delivery_crud
from quantumbets.crud.subscriber import subscriber_crud
from quantumbets.models.delivery import Delivery, DeliveryChannel, DeliveryStatus, can_transition
from quantumbets.models.subscriber import Subscriber, SubscriptionTier
from quantumbets.services.content_service import content_service
from quantumbets.core.channels import ChannelSender, SendResult
from quantumbets.core.email import send_picks_email
from quantumbets.core.sms import send_picks_sms
from quantumbets.core.config import settings
from quantumbets.core.exceptions import NotFoundError, InvalidTransitionError

logger = logging.getLogger(__name__)

# Twilio MessageStatus values that end a message's life
SMS_DELIVERED_STATUSES = ("delivered",)
SMS_FAILED_STATUSES = ("failed", "undelivered")


class DeliveryService:
    """Service for fanning content out to subscribers and tracking the results."""

    def __init__(
        self,
        email_sender: Optional[ChannelSender] = None,
        sms_sender: Optional[ChannelSender] = None,
        batch_size: Optional[int] = None
    ):
        self.email_sender = email_sender or send_picks_email
        self.sms_sender = sms_sender or send_picks_sms
        self.batch_size = batch_size or settings.DELIVERY_BATCH_SIZE

    # ============================================================
    # Scheduling
    # ============================================================

    @staticmethod
    def channels_for(subscriber: Subscriber) -> List[DeliveryChannel]:
        """
        Channels a subscriber should receive content on.

        SMS is a paid-tier channel: FREE subscribers never get one,
        whatever their stated preference.
        """
        channels = []
        if subscriber.receive_email:
            channels.append(DeliveryChannel.email)
        tier = getattr(subscriber.subscription_tier, "value", subscriber.subscription_tier)
        if subscriber.phone and subscriber.receive_sms and tier != SubscriptionTier.FREE.value:
            channels.append(DeliveryChannel.sms)
        return channels

    def schedule_delivery(self, db: Session, content_id: int) -> Dict[str, int]:
        """
        Create pending deliveries of a content item for every active subscriber.

        Subscribers are walked in ID-ordered batches. Deliveries that
        already exist for a (subscriber, content, channel) triple are
        skipped, so scheduling the same content again only fills gaps.

        Args:
            db: Database session
            content_id: Content ID

        Returns:
            {"scheduled": number of deliveries created}

        Raises:
            NotFoundError: If the content does not exist
        """
        content = content_crud.get_content(db, content_id)
        if not content:
            raise NotFoundError("Content", content_id)

        scheduled = 0
        skipped = 0
        after_id = 0

        while True:
            subscribers = subscriber_crud.get_active_subscribers_batch(db, after_id, self.batch_size)
            if not subscribers:
                break
            after_id = subscribers[-1].id

            existing = delivery_crud.get_existing_keys(db, content_id, [s.id for s in subscribers])

            rows: List[Dict[str, Any]] = []
            for subscriber in subscribers:
                for channel in self.channels_for(subscriber):
                    if (subscriber.id, channel) in existing:
                        skipped += 1
                        continue
                    rows.append({
                        "subscriber_id": subscriber.id,
                        "content_id": content_id,
                        "channel": channel,
                        "status": DeliveryStatus.pending,
                        "tracking_id": content_service.generate_tracking_id(),
                    })

            scheduled += delivery_crud.create_deliveries(db, rows)

            if len(subscribers) < self.batch_size:
                break

        logger.info(f"Content {content_id}: scheduled {scheduled} deliveries, skipped {skipped} existing")
        return {"scheduled": scheduled}

    # ============================================================
    # Processing
    # ============================================================

    async def process_pending_deliveries(self, db: Session) -> Dict[str, int]:
        """
        Send every pending delivery.

        Deliveries are taken in ID-ordered batches; within a batch they
        are sent concurrently and the batch completes before the next one
        is loaded. A failing delivery is recorded on its own row and
        never aborts the batch.

        Returns:
            {"processed": successful sends, "failed": failed sends}
        """
        processed = 0
        failed = 0
        after_id = 0

        while True:
            batch = delivery_crud.get_pending_batch(db, after_id, self.batch_size)
            if not batch:
                break
            delivery_ids = [delivery.id for delivery in batch]
            after_id = delivery_ids[-1]

            results = await asyncio.gather(
                *(self._process_delivery(db, delivery_id) for delivery_id in delivery_ids),
                return_exceptions=True
            )

            for delivery_id, result in zip(delivery_ids, results):
                if isinstance(result, Exception):
                    logger.error(f"Delivery {delivery_id} could not be recorded: {result}")
                    failed += 1
                elif result is True:
                    processed += 1
                elif result is False:
                    failed += 1

            if len(batch) < self.batch_size:
                break

        logger.info(f"Processed pending deliveries: {processed} sent, {failed} failed")
        return {"processed": processed, "failed": failed}

    async def _process_delivery(self, db: Session, delivery_id: int) -> Optional[bool]:
        """
        Send one delivery and record the outcome.

        Returns True when sent, False when failed, None when the delivery
        was no longer pending by the time its outcome was written.
        """
        delivery = delivery_crud.get_delivery(db, delivery_id)
        if not delivery or delivery.status != DeliveryStatus.pending:
            return None

        channel = DeliveryChannel(delivery.channel)
        content_id = delivery.content_id

        try:
            result = await self._send(db, delivery)
        except Exception as e:
            db.rollback()
            result = SendResult.failed(str(e) or e.__class__.__name__)

        if result.success:
            if not delivery_crud.mark_sent(db, delivery_id, result.message_id):
                logger.warning(f"Delivery {delivery_id} sent but no longer pending, status left as is")
                return None
            counter = "emails_sent" if channel == DeliveryChannel.email else "sms_sent"
            content_crud.increment_analytics(db, content_id, counter)
            content_crud.increment_analytics(db, content_id, "delivery_success_count")
            return True

        logger.error(f"Delivery {delivery_id} ({channel.value}) failed: {result.error}")
        if not delivery_crud.mark_failed(db, delivery_id, result.error):
            return None
        content_crud.increment_analytics(db, content_id, "delivery_failure_count")
        return False

    async def _send(self, db: Session, delivery: Delivery) -> SendResult:
        """Resolve the body the subscriber is entitled to and hand it to the channel sender."""
        subscriber = subscriber_crud.get_subscriber(db, delivery.subscriber_id)
        if not subscriber:
            return SendResult.failed(f"Subscriber {delivery.subscriber_id} not found")

        content = content_crud.get_content(db, delivery.content_id)
        if not content:
            return SendResult.failed(f"Content {delivery.content_id} not found")

        view = content_service.filter_content_for_tier(content, subscriber.subscription_tier)

        if delivery.channel == DeliveryChannel.email:
            html = content_service.add_tracking(view.html_content, delivery.tracking_id)
            return await self.email_sender(
                subscriber.email,
                html,
                subject=view.title,
                text_content=view.plain_text_content
            )

        if not subscriber.phone:
            return SendResult.failed("Subscriber has no phone number")

        return await self.sms_sender(
            subscriber.phone,
            view.sms_content,
            status_callback_url=self.sms_status_callback_url(delivery.tracking_id)
        )

    @staticmethod
    def sms_status_callback_url(tracking_id: str) -> str:
        return f"{settings.API_URL.rstrip('/')}/tracking/sms-status/{tracking_id}"

    # ============================================================
    # Retries
    # ============================================================

    def retry_failed_deliveries(self, db: Session, max_retries: Optional[int] = None) -> Dict[str, int]:
        """
        Move failed deliveries under the retry ceiling back to pending.

        retry_count and failure_reason are left alone; the next send
        attempt overwrites the reason if it fails again.
        """
        ceiling = settings.DELIVERY_MAX_RETRIES if max_retries is None else max_retries
        retried = delivery_crud.reset_failed(db, ceiling)
        logger.info(f"Reset {retried} failed deliveries to pending (max_retries={ceiling})")
        return {"retried": retried}

    def retry_delivery(self, db: Session, delivery_id: int, max_retries: Optional[int] = None) -> Delivery:
        """
        Manually move one failed delivery back to pending.

        Raises:
            NotFoundError: If the delivery does not exist
            InvalidTransitionError: If it is not failed or has used up its retries
        """
        ceiling = settings.DELIVERY_MAX_RETRIES if max_retries is None else max_retries
        delivery = self.get_delivery(db, delivery_id)

        if not delivery_crud.reset_one(db, delivery_id, ceiling):
            db.refresh(delivery)
            status = DeliveryStatus(delivery.status)
            if not can_transition(status, DeliveryStatus.pending):
                raise InvalidTransitionError(delivery_id, status.value, DeliveryStatus.pending.value)
            raise InvalidTransitionError(
                delivery_id, f"{status.value} after {delivery.retry_count} attempts", DeliveryStatus.pending.value
            )

        db.refresh(delivery)
        logger.info(f"Delivery {delivery_id} reset to pending for manual retry")
        return delivery

    # ============================================================
    # Tracking
    # ============================================================

    def track_open(self, db: Session, tracking_id: str) -> bool:
        """
        Record an email open.

        Every hit on a sent email counts towards emails_opened; the
        status and opened_at only move on the first one.

        Returns:
            True if a delivery was updated
        """
        delivery = delivery_crud.get_by_tracking_id(db, tracking_id)
        if not delivery:
            logger.warning(f"Open for unknown tracking ID: {tracking_id[:12]}...")
            return False
        if delivery.channel != DeliveryChannel.email:
            logger.info(f"Ignoring open for non-email delivery {delivery.id}")
            return False

        delivery_id, content_id = delivery.id, delivery.content_id
        if not delivery_crud.record_engagement(db, delivery_id, DeliveryStatus.opened):
            logger.warning(f"Open for delivery {delivery_id} that was never sent")
            return False

        content_crud.increment_analytics(db, content_id, "emails_opened")
        logger.debug(f"Tracked open for delivery {delivery_id}")
        return True

    def track_click(self, db: Session, tracking_id: str) -> bool:
        """
        Record an email link click.

        Every hit counts towards email_clicks (and so conversion_rate);
        the status and clicked_at only move on the first one.

        Returns:
            True if a delivery was updated
        """
        delivery = delivery_crud.get_by_tracking_id(db, tracking_id)
        if not delivery:
            logger.warning(f"Click for unknown tracking ID: {tracking_id[:12]}...")
            return False
        if delivery.channel != DeliveryChannel.email:
            logger.info(f"Ignoring click for non-email delivery {delivery.id}")
            return False

        delivery_id, content_id = delivery.id, delivery.content_id
        if not delivery_crud.record_engagement(db, delivery_id, DeliveryStatus.clicked):
            logger.warning(f"Click for delivery {delivery_id} that was never sent")
            return False

        content_crud.increment_analytics(db, content_id, "email_clicks")
        logger.debug(f"Tracked click for delivery {delivery_id}")
        return True

    def record_open_safely(self, session_factory: Callable[[], Session], tracking_id: str) -> None:
        """Background job for the open pixel: errors are logged, never raised."""
        try:
            with session_factory() as db:
                self.track_open(db, tracking_id)
        except Exception as e:
            logger.error(f"Failed to record open for tracking ID {tracking_id}: {e}")

    def record_click_safely(self, session_factory: Callable[[], Session], tracking_id: str) -> None:
        """Background job for the click redirect: errors are logged, never raised."""
        try:
            with session_factory() as db:
                self.track_click(db, tracking_id)
        except Exception as e:
            logger.error(f"Failed to record click for tracking ID {tracking_id}: {e}")

    def record_sms_status(
        self,
        db: Session,
        tracking_id: str,
        message_status: str,
        error_code: Optional[str] = None
    ) -> bool:
        """
        Apply a Twilio status callback to an SMS delivery.

        delivered moves a sent SMS to delivered; failed and undelivered
        move it to failed. Intermediate statuses (queued, sending, sent)
        are ignored.

        Returns:
            True if the delivery changed
        """
        delivery = delivery_crud.get_by_tracking_id(db, tracking_id)
        if not delivery or delivery.channel != DeliveryChannel.sms:
            logger.warning(f"SMS status '{message_status}' for unknown tracking ID: {tracking_id[:12]}...")
            return False

        delivery_id, content_id = delivery.id, delivery.content_id
        status = (message_status or "").lower()

        if status in SMS_DELIVERED_STATUSES:
            return delivery_crud.mark_delivered(db, delivery_id)

        if status in SMS_FAILED_STATUSES:
            reason = f"Provider reported {status}"
            if error_code:
                reason += f" (error {error_code})"
            if not delivery_crud.mark_failed(db, delivery_id, reason):
                return False
            content_crud.increment_analytics(db, content_id, "delivery_failure_count")
            logger.error(f"Delivery {delivery_id} (sms) failed after send: {reason}")
            return True

        logger.debug(f"Ignoring SMS status '{message_status}' for delivery {delivery_id}")
        return False

    # ============================================================
    # Reads
    # ============================================================

    def get_delivery(self, db: Session, delivery_id: int) -> Delivery:
        delivery = delivery_crud.get_delivery(db, delivery_id)
        if not delivery:
            raise NotFoundError("Delivery", delivery_id)
        return delivery

    def get_delivery_stats(self, db: Session, content_id: Optional[int] = None) -> Dict[str, Any]:
        """Delivery counts per status, for one content item or overall."""
        by_status = delivery_crud.count_by_status(db, content_id)
        return {
            "content_id": content_id,
            "total": sum(by_status.values()),
            "by_status": by_status,
        }

    def get_content_analytics(self, db: Session, content_id: int) -> Dict[str, Any]:
        """
        Stored analytics counters plus live delivery counts.

        The stored pending counter is not maintained by the pipeline; the
        live pending count is in deliveries_by_status.
        """
        content = content_crud.get_content(db, content_id)
        if not content:
            raise NotFoundError("Content", content_id)

        return {
            "content_id": content_id,
            "analytics": content.analytics,
            "deliveries_by_status": delivery_crud.count_by_status(db, content_id),
        }


# Create singleton instance
delivery_service = DeliveryService()
