# quantumbets/crud/subscriber.py
from sqlmodel import Session, select
from typing import List, Optional

from quantumbets.models.subscriber import Subscriber
from quantumbets.schemas.subscriber import SubscriberCreate


class SubscriberCRUD:
    def create_subscriber(self, db: Session, data: SubscriberCreate) -> Subscriber:
        """Create a new subscriber."""
        subscriber = Subscriber(**data.model_dump(mode="json"))
        db.add(subscriber)
        db.commit()
        db.refresh(subscriber)
        return subscriber

    def get_subscriber(self, db: Session, subscriber_id: int) -> Optional[Subscriber]:
        """Get subscriber by ID."""
        return db.get(Subscriber, subscriber_id)

    def get_subscriber_by_email(self, db: Session, email: str) -> Optional[Subscriber]:
        """Get subscriber by email."""
        return db.exec(select(Subscriber).where(Subscriber.email == email)).first()

    def get_active_subscribers_batch(
        self,
        db: Session,
        after_id: int = 0,
        limit: int = 50
    ) -> List[Subscriber]:
        """
        Get the next batch of active subscribers ordered by ID.

        Keyset pagination keeps batches stable while subscribers are
        added or deactivated during a long fan-out.
        """
        return list(db.exec(
            select(Subscriber)
            .where(Subscriber.is_active == True, Subscriber.id > after_id)
            .order_by(Subscriber.id)
            .limit(limit)
        ).all())


# Create singleton instance
subscriber_crud = SubscriberCRUD()
