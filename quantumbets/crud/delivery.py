# quantumbets/crud/delivery.py
import logging
from sqlmodel import Session, select, func, and_
from sqlalchemy import update, case, literal
from sqlalchemy.exc import IntegrityError
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
from datetime import datetime

from quantumbets.models.delivery import (
    Delivery, DeliveryChannel, DeliveryStatus, ENGAGEMENT_STATUSES, sources_for
)

logger = logging.getLogger(__name__)

# Statuses a delivery has once it left the sender successfully
SENT_OR_LATER = (
    DeliveryStatus.sent,
    DeliveryStatus.delivered,
    DeliveryStatus.opened,
    DeliveryStatus.clicked,
)


class DeliveryCRUD:
    # ============================================================
    # Lookups
    # ============================================================

    def get_delivery(self, db: Session, delivery_id: int) -> Optional[Delivery]:
        """Get delivery by ID."""
        return db.get(Delivery, delivery_id)

    def get_by_tracking_id(self, db: Session, tracking_id: str) -> Optional[Delivery]:
        """Get delivery by tracking ID."""
        return db.exec(select(Delivery).where(Delivery.tracking_id == tracking_id)).first()

    def get_existing_keys(
        self,
        db: Session,
        content_id: int,
        subscriber_ids: Iterable[int]
    ) -> Set[Tuple[int, DeliveryChannel]]:
        """Get (subscriber_id, channel) pairs already scheduled for a content item."""
        subscriber_ids = list(subscriber_ids)
        if not subscriber_ids:
            return set()

        rows = db.exec(
            select(Delivery.subscriber_id, Delivery.channel).where(
                and_(
                    Delivery.content_id == content_id,
                    Delivery.subscriber_id.in_(subscriber_ids)
                )
            )
        ).all()
        return {(subscriber_id, DeliveryChannel(channel)) for subscriber_id, channel in rows}

    def get_pending_batch(
        self,
        db: Session,
        after_id: int = 0,
        limit: int = 50
    ) -> List[Delivery]:
        """Get the next batch of pending deliveries ordered by ID."""
        return list(db.exec(
            select(Delivery)
            .where(Delivery.status == DeliveryStatus.pending, Delivery.id > after_id)
            .order_by(Delivery.id)
            .limit(limit)
        ).all())

    def get_deliveries(
        self,
        db: Session,
        skip: int = 0,
        limit: int = 50,
        content_id: Optional[int] = None,
        status: Optional[DeliveryStatus] = None,
        channel: Optional[DeliveryChannel] = None
    ) -> tuple[List[Delivery], int]:
        """Get deliveries with optional filtering."""
        query = select(Delivery)
        count_query = select(func.count(Delivery.id))

        conditions = []
        if content_id is not None:
            conditions.append(Delivery.content_id == content_id)
        if status:
            conditions.append(Delivery.status == status)
        if channel:
            conditions.append(Delivery.channel == channel)

        if conditions:
            query = query.where(and_(*conditions))
            count_query = count_query.where(and_(*conditions))

        total = db.exec(count_query).first() or 0
        query = query.order_by(Delivery.created_at.desc(), Delivery.id.desc())
        query = query.offset(skip).limit(limit)

        deliveries = db.exec(query).all()
        return list(deliveries), total

    def count_by_status(self, db: Session, content_id: Optional[int] = None) -> Dict[str, int]:
        """Count deliveries per status, zero-filled."""
        query = select(Delivery.status, func.count(Delivery.id)).group_by(Delivery.status)
        if content_id is not None:
            query = query.where(Delivery.content_id == content_id)

        counts = {status.value: 0 for status in DeliveryStatus}
        for status, count in db.exec(query).all():
            counts[DeliveryStatus(status).value] = count
        return counts

    # ============================================================
    # Creation
    # ============================================================

    def create_deliveries(self, db: Session, rows: List[Dict[str, Any]]) -> int:
        """
        Insert delivery rows, skipping any that violate a unique constraint.

        The whole batch is tried in one commit first; on conflict it is
        rolled back and retried row by row so one duplicate cannot sink
        the rest of the batch.

        Returns:
            Number of deliveries created
        """
        if not rows:
            return 0

        try:
            db.add_all([Delivery(**row) for row in rows])
            db.commit()
            return len(rows)
        except IntegrityError:
            db.rollback()
            logger.warning(f"Duplicate deliveries in batch of {len(rows)}, inserting individually")

        created = 0
        for row in rows:
            try:
                db.add(Delivery(**row))
                db.commit()
                created += 1
            except IntegrityError:
                db.rollback()
                logger.info(
                    f"Delivery already exists for subscriber {row['subscriber_id']}, "
                    f"content {row['content_id']}, channel {row['channel']}"
                )
        return created

    # ============================================================
    # State transitions
    # ============================================================
    # Each transition is a single conditional UPDATE guarded by the
    # allowed source statuses, so a concurrent writer can never push a
    # delivery backwards. They return True when a row was changed.

    def _execute(self, db: Session, statement) -> bool:
        result = db.exec(statement.execution_options(synchronize_session=False))
        db.commit()
        return result.rowcount == 1

    def mark_sent(self, db: Session, delivery_id: int, message_id: Optional[str] = None) -> bool:
        """PENDING -> SENT."""
        now = datetime.utcnow()
        changed = self._execute(
            db,
            update(Delivery)
            .where(Delivery.id == delivery_id, Delivery.status.in_(sources_for(DeliveryStatus.sent)))
            .values(
                status=DeliveryStatus.sent,
                sent_at=func.coalesce(Delivery.sent_at, now),
                updated_at=now
            )
        )
        if changed and message_id:
            self.set_metadata(db, delivery_id, "provider_message_id", message_id)
        return changed

    def mark_failed(self, db: Session, delivery_id: int, reason: str) -> bool:
        """PENDING/SENT -> FAILED, recording the reason and counting the attempt."""
        return self._execute(
            db,
            update(Delivery)
            .where(Delivery.id == delivery_id, Delivery.status.in_(sources_for(DeliveryStatus.failed)))
            .values(
                status=DeliveryStatus.failed,
                failure_reason=reason or "Unknown error",
                retry_count=Delivery.retry_count + 1,
                updated_at=datetime.utcnow()
            )
        )

    def mark_delivered(self, db: Session, delivery_id: int) -> bool:
        """SENT -> DELIVERED (provider delivery receipt)."""
        now = datetime.utcnow()
        return self._execute(
            db,
            update(Delivery)
            .where(Delivery.id == delivery_id, Delivery.status.in_(sources_for(DeliveryStatus.delivered)))
            .values(
                status=DeliveryStatus.delivered,
                delivered_at=func.coalesce(Delivery.delivered_at, now),
                updated_at=now
            )
        )

    def record_engagement(self, db: Session, delivery_id: int, target: DeliveryStatus) -> bool:
        """
        Record an open or click on a sent EMAIL delivery.

        Status advances to `target` only if it is still behind it; the
        matching timestamp is set only on the first event. Matches (and
        returns True) for every event on a sent email, so callers can
        count repeated hits.
        """
        if target not in ENGAGEMENT_STATUSES:
            raise ValueError(f"Not an engagement status: {target}")

        timestamp_column = Delivery.opened_at if target == DeliveryStatus.opened else Delivery.clicked_at
        now = datetime.utcnow()
        return self._execute(
            db,
            update(Delivery)
            .where(
                Delivery.id == delivery_id,
                Delivery.channel == DeliveryChannel.email,
                Delivery.status.in_(SENT_OR_LATER)
            )
            .values({
                Delivery.status: case(
                    (Delivery.status.in_(sources_for(target)), literal(target, Delivery.__table__.c.status.type)),
                    else_=Delivery.status
                ),
                timestamp_column: func.coalesce(timestamp_column, now),
                Delivery.updated_at: now,
            })
        )

    def reset_failed(self, db: Session, max_retries: int) -> int:
        """FAILED -> PENDING for every delivery under the retry ceiling."""
        result = db.exec(
            update(Delivery)
            .where(Delivery.status == DeliveryStatus.failed, Delivery.retry_count < max_retries)
            .values(status=DeliveryStatus.pending, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount

    def reset_one(self, db: Session, delivery_id: int, max_retries: int) -> bool:
        """FAILED -> PENDING for a single delivery under the retry ceiling."""
        return self._execute(
            db,
            update(Delivery)
            .where(
                Delivery.id == delivery_id,
                Delivery.status == DeliveryStatus.failed,
                Delivery.retry_count < max_retries
            )
            .values(status=DeliveryStatus.pending, updated_at=datetime.utcnow())
        )

    def set_metadata(self, db: Session, delivery_id: int, key: str, value: Any) -> None:
        """Set one key in the delivery's metadata map."""
        delivery = db.get(Delivery, delivery_id)
        if not delivery:
            return

        delivery.delivery_metadata = {**(delivery.delivery_metadata or {}), key: value}
        delivery.updated_at = datetime.utcnow()
        db.commit()


# Create singleton instance
delivery_crud = DeliveryCRUD()
