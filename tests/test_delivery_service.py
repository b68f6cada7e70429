import pytest
import pytest_asyncio
from unittest.mock import AsyncMock
from sqlmodel import Session, select

from quantumbets.core.channels import SendResult
from quantumbets.core.exceptions import NotFoundError, InvalidTransitionError, SendFailure
from quantumbets.crud.delivery import delivery_crud
from quantumbets.models.content import Content
from quantumbets.models.subscriber import Subscriber, SubscriptionTier
from quantumbets.models.delivery import Delivery, DeliveryChannel, DeliveryStatus
from quantumbets.services.delivery_service import DeliveryService


def make_service(email_result=None, sms_result=None, batch_size=None):
    return DeliveryService(
        email_sender=AsyncMock(return_value=email_result or SendResult.ok("email-1")),
        sms_sender=AsyncMock(return_value=sms_result or SendResult.ok("SM1")),
        batch_size=batch_size
    )


def deliveries_for(session: Session, content_id: int):
    session.expire_all()
    return session.exec(
        select(Delivery).where(Delivery.content_id == content_id).order_by(Delivery.id)
    ).all()


def add_subscriber(session: Session, email: str, **kwargs) -> Subscriber:
    subscriber = Subscriber(email=email, **kwargs)
    session.add(subscriber)
    session.commit()
    session.refresh(subscriber)
    return subscriber


class TestScheduleDelivery:
    def test_unknown_content(self, session: Session):
        with pytest.raises(NotFoundError):
            make_service().schedule_delivery(session, 999)

    def test_scenario_alice_and_bob(self, session: Session, content: Content, alice: Subscriber, bob: Subscriber):
        result = make_service().schedule_delivery(session, content.id)

        assert result == {"scheduled": 3}
        deliveries = deliveries_for(session, content.id)
        keys = {(d.subscriber_id, d.channel) for d in deliveries}
        assert keys == {
            (alice.id, DeliveryChannel.email),
            (bob.id, DeliveryChannel.email),
            (bob.id, DeliveryChannel.sms),
        }
        assert all(d.status == DeliveryStatus.pending for d in deliveries)
        assert len({d.tracking_id for d in deliveries}) == 3

    def test_free_tier_never_gets_sms(self, session: Session, content: Content):
        add_subscriber(session, "free@example.com", phone="5551234567",
                       subscription_tier=SubscriptionTier.FREE, receive_sms=True)

        make_service().schedule_delivery(session, content.id)

        channels = [d.channel for d in deliveries_for(session, content.id)]
        assert channels == [DeliveryChannel.email]

    def test_sms_needs_phone_and_preference(self, session: Session, content: Content):
        add_subscriber(session, "nophone@example.com", subscription_tier=SubscriptionTier.DAILY,
                       receive_email=False, receive_sms=True)
        add_subscriber(session, "optout@example.com", phone="5551234567",
                       subscription_tier=SubscriptionTier.DAILY, receive_email=False, receive_sms=False)

        result = make_service().schedule_delivery(session, content.id)

        assert result == {"scheduled": 0}

    def test_skips_inactive(self, session: Session, content: Content):
        add_subscriber(session, "gone@example.com", is_active=False)

        assert make_service().schedule_delivery(session, content.id) == {"scheduled": 0}

    def test_rescheduling_creates_no_duplicates(self, session: Session, content: Content, alice: Subscriber, bob: Subscriber):
        service = make_service()
        service.schedule_delivery(session, content.id)

        result = service.schedule_delivery(session, content.id)

        assert result == {"scheduled": 0}
        assert len(deliveries_for(session, content.id)) == 3

    def test_rescheduling_fills_gaps(self, session: Session, content: Content, alice: Subscriber):
        service = make_service()
        service.schedule_delivery(session, content.id)
        add_subscriber(session, "late@example.com")

        assert service.schedule_delivery(session, content.id) == {"scheduled": 1}

    def test_batches_cover_all_subscribers(self, session: Session, content: Content):
        for i in range(7):
            add_subscriber(session, f"fan{i}@example.com")

        result = make_service(batch_size=3).schedule_delivery(session, content.id)

        assert result == {"scheduled": 7}

    def test_does_not_touch_analytics(self, session: Session, content: Content, alice: Subscriber):
        make_service().schedule_delivery(session, content.id)

        session.refresh(content)
        assert content.emails_sent == 0
        assert content.delivery_success_count == 0


class TestCreateDeliveriesConflicts:
    def test_duplicate_in_batch_falls_back_to_single_inserts(self, session: Session, content: Content, alice: Subscriber, bob: Subscriber):
        rows = [
            {"subscriber_id": alice.id, "content_id": content.id, "channel": DeliveryChannel.email, "tracking_id": "t1"},
            {"subscriber_id": alice.id, "content_id": content.id, "channel": DeliveryChannel.email, "tracking_id": "t2"},
            {"subscriber_id": bob.id, "content_id": content.id, "channel": DeliveryChannel.email, "tracking_id": "t3"},
        ]

        created = delivery_crud.create_deliveries(session, rows)

        assert created == 2
        assert len(deliveries_for(session, content.id)) == 2


class TestProcessPendingDeliveries:
    @pytest.mark.asyncio
    async def test_scenario_all_succeed(self, session: Session, content: Content, alice: Subscriber, bob: Subscriber):
        service = make_service()
        service.schedule_delivery(session, content.id)

        result = await service.process_pending_deliveries(session)

        assert result == {"processed": 3, "failed": 0}
        deliveries = deliveries_for(session, content.id)
        assert all(d.status == DeliveryStatus.sent for d in deliveries)
        assert all(d.sent_at is not None for d in deliveries)

        session.refresh(content)
        assert content.analytics["emails_sent"] == 2
        assert content.analytics["sms_sent"] == 1
        assert content.delivery_success_count == 3
        assert content.delivery_failure_count == 0
        assert content.conversion_rate == 0.0

    @pytest.mark.asyncio
    async def test_email_body_is_tracked_and_tiered(self, session: Session, content: Content, alice: Subscriber, bob: Subscriber):
        service = make_service()
        service.schedule_delivery(session, content.id)

        await service.process_pending_deliveries(session)

        bodies = {call.args[0]: call.args[1] for call in service.email_sender.await_args_list}
        # alice is FREE and the content is FREE: full body, tracked
        assert "Chiefs" in bodies["alice@example.com"]
        assert "/tracking/click/" in bodies["alice@example.com"]
        assert "/tracking/open/" in bodies["alice@example.com"]
        # bob is MONTHLY but the content is FREE only: teaser
        assert "Today's Free Pick Preview" in bodies["bob@example.com"]
        assert "Chiefs" not in bodies["bob@example.com"]

    @pytest.mark.asyncio
    async def test_sms_gets_status_callback(self, session: Session, content: Content, bob: Subscriber):
        service = make_service()
        service.schedule_delivery(session, content.id)

        await service.process_pending_deliveries(session)

        sms = [d for d in deliveries_for(session, content.id) if d.channel == DeliveryChannel.sms][0]
        call = service.sms_sender.await_args
        assert call.args[0] == "555-123-4567"
        assert call.kwargs["status_callback_url"].endswith(f"/tracking/sms-status/{sms.tracking_id}")
        assert sms.delivery_metadata == {"provider_message_id": "SM1"}

    @pytest.mark.asyncio
    async def test_failure_then_retry_then_success(self, session: Session, content: Content, alice: Subscriber):
        service = DeliveryService(
            email_sender=AsyncMock(side_effect=Exception("rate limited")),
            sms_sender=AsyncMock(return_value=SendResult.ok())
        )
        service.schedule_delivery(session, content.id)

        result = await service.process_pending_deliveries(session)

        assert result == {"processed": 0, "failed": 1}
        delivery = deliveries_for(session, content.id)[0]
        assert delivery.status == DeliveryStatus.failed
        assert delivery.failure_reason == "rate limited"
        assert delivery.retry_count == 1
        session.refresh(content)
        assert content.delivery_failure_count == 1

        assert service.retry_failed_deliveries(session, max_retries=3) == {"retried": 1}
        delivery = deliveries_for(session, content.id)[0]
        assert delivery.status == DeliveryStatus.pending
        assert delivery.retry_count == 1
        assert delivery.failure_reason == "rate limited"

        service.email_sender = AsyncMock(return_value=SendResult.ok("email-2"))
        result = await service.process_pending_deliveries(session)

        assert result == {"processed": 1, "failed": 0}
        delivery = deliveries_for(session, content.id)[0]
        assert delivery.status == DeliveryStatus.sent
        session.refresh(content)
        assert content.emails_sent == 1

    @pytest.mark.asyncio
    async def test_failure_result_recorded(self, session: Session, content: Content, alice: Subscriber):
        service = make_service(email_result=SendResult.failed("mailbox full"))
        service.schedule_delivery(session, content.id)

        result = await service.process_pending_deliveries(session)

        assert result == {"processed": 0, "failed": 1}
        assert deliveries_for(session, content.id)[0].failure_reason == "mailbox full"

    @pytest.mark.asyncio
    async def test_send_failure_exception_recorded(self, session: Session, content: Content, alice: Subscriber):
        service = DeliveryService(
            email_sender=AsyncMock(side_effect=SendFailure("SMTP unreachable", channel="email")),
            sms_sender=AsyncMock()
        )
        service.schedule_delivery(session, content.id)

        await service.process_pending_deliveries(session)

        assert deliveries_for(session, content.id)[0].failure_reason == "SMTP unreachable"

    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_batch(self, session: Session, content: Content, alice: Subscriber, bob: Subscriber):
        async def flaky_email(to_email, html, **kwargs):
            if to_email == "alice@example.com":
                raise Exception("rejected")
            return SendResult.ok()

        service = DeliveryService(email_sender=flaky_email, sms_sender=AsyncMock(return_value=SendResult.ok()))
        service.schedule_delivery(session, content.id)

        result = await service.process_pending_deliveries(session)

        assert result == {"processed": 2, "failed": 1}
        statuses = {(d.subscriber_id, d.channel): d.status for d in deliveries_for(session, content.id)}
        assert statuses[(alice.id, DeliveryChannel.email)] == DeliveryStatus.failed
        assert statuses[(bob.id, DeliveryChannel.email)] == DeliveryStatus.sent
        assert statuses[(bob.id, DeliveryChannel.sms)] == DeliveryStatus.sent

    @pytest.mark.asyncio
    async def test_missing_phone_at_send_time_fails(self, session: Session, content: Content, bob: Subscriber):
        service = make_service()
        service.schedule_delivery(session, content.id)
        bob.phone = None
        bob.receive_sms = False
        session.commit()

        result = await service.process_pending_deliveries(session)

        assert result == {"processed": 1, "failed": 1}
        sms = [d for d in deliveries_for(session, content.id) if d.channel == DeliveryChannel.sms][0]
        assert sms.status == DeliveryStatus.failed
        assert sms.failure_reason == "Subscriber has no phone number"
        assert sms.retry_count == 1
        service.sms_sender.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_processes_across_batches(self, session: Session, content: Content):
        for i in range(5):
            add_subscriber(session, f"fan{i}@example.com")
        service = make_service(batch_size=2)
        service.schedule_delivery(session, content.id)

        result = await service.process_pending_deliveries(session)

        assert result == {"processed": 5, "failed": 0}
        assert service.email_sender.await_count == 5

    @pytest.mark.asyncio
    async def test_nothing_pending(self, session: Session):
        assert await make_service().process_pending_deliveries(session) == {"processed": 0, "failed": 0}


class TestRetry:
    def _failed_delivery(self, session: Session, content: Content, subscriber: Subscriber, retry_count: int) -> Delivery:
        delivery = Delivery(
            subscriber_id=subscriber.id,
            content_id=content.id,
            channel=DeliveryChannel.email,
            status=DeliveryStatus.failed,
            failure_reason="boom",
            retry_count=retry_count,
            tracking_id=f"t-{subscriber.id}-{retry_count}"
        )
        session.add(delivery)
        session.commit()
        session.refresh(delivery)
        return delivery

    def test_sweeper_respects_ceiling(self, session: Session, content: Content, alice: Subscriber, bob: Subscriber):
        retryable = self._failed_delivery(session, content, alice, retry_count=2)
        exhausted = self._failed_delivery(session, content, bob, retry_count=3)

        assert make_service().retry_failed_deliveries(session, max_retries=3) == {"retried": 1}

        session.refresh(retryable)
        session.refresh(exhausted)
        assert retryable.status == DeliveryStatus.pending
        assert exhausted.status == DeliveryStatus.failed

    def test_sweeper_ignores_other_statuses(self, session: Session, content: Content, alice: Subscriber):
        make_service().schedule_delivery(session, content.id)

        assert make_service().retry_failed_deliveries(session, max_retries=3) == {"retried": 0}

    def test_manual_retry(self, session: Session, content: Content, alice: Subscriber):
        delivery = self._failed_delivery(session, content, alice, retry_count=1)

        retried = make_service().retry_delivery(session, delivery.id)

        assert retried.status == DeliveryStatus.pending

    def test_manual_retry_missing(self, session: Session):
        with pytest.raises(NotFoundError):
            make_service().retry_delivery(session, 12345)

    def test_manual_retry_exhausted(self, session: Session, content: Content, alice: Subscriber):
        delivery = self._failed_delivery(session, content, alice, retry_count=3)

        with pytest.raises(InvalidTransitionError):
            make_service().retry_delivery(session, delivery.id)

    def test_manual_retry_not_failed(self, session: Session, content: Content, alice: Subscriber):
        make_service().schedule_delivery(session, content.id)
        delivery = deliveries_for(session, content.id)[0]

        with pytest.raises(InvalidTransitionError):
            make_service().retry_delivery(session, delivery.id)


class TestTracking:
    @pytest_asyncio.fixture
    async def sent(self, session: Session, content: Content, alice: Subscriber, bob: Subscriber):
        service = make_service()
        service.schedule_delivery(session, content.id)
        await service.process_pending_deliveries(session)
        deliveries = deliveries_for(session, content.id)
        return {
            "email": [d for d in deliveries if d.subscriber_id == alice.id][0],
            "sms": [d for d in deliveries if d.channel == DeliveryChannel.sms][0],
        }

    @pytest.mark.asyncio
    async def test_open_marks_opened_and_counts(self, session: Session, content: Content, sent):
        service = make_service()

        assert service.track_open(session, sent["email"].tracking_id) is True

        session.expire_all()
        assert sent["email"].status == DeliveryStatus.opened
        assert sent["email"].opened_at is not None
        assert content.emails_opened == 1

    @pytest.mark.asyncio
    async def test_repeated_opens_count_every_hit(self, session: Session, content: Content, sent):
        service = make_service()
        service.track_open(session, sent["email"].tracking_id)
        session.expire_all()
        first_opened_at = sent["email"].opened_at

        service.track_open(session, sent["email"].tracking_id)

        session.expire_all()
        assert content.emails_opened == 2
        assert sent["email"].opened_at == first_opened_at

    @pytest.mark.asyncio
    async def test_click_marks_clicked_and_updates_conversion(self, session: Session, content: Content, sent):
        service = make_service()

        assert service.track_click(session, sent["email"].tracking_id) is True

        session.expire_all()
        assert sent["email"].status == DeliveryStatus.clicked
        assert sent["email"].clicked_at is not None
        assert content.email_clicks == 1
        assert content.conversion_rate == pytest.approx(50.0)

    @pytest.mark.asyncio
    async def test_open_after_click_keeps_clicked(self, session: Session, content: Content, sent):
        service = make_service()
        service.track_click(session, sent["email"].tracking_id)

        service.track_open(session, sent["email"].tracking_id)

        session.expire_all()
        assert sent["email"].status == DeliveryStatus.clicked
        assert sent["email"].opened_at is not None
        assert content.emails_opened == 1

    @pytest.mark.asyncio
    async def test_sms_tracking_ids_ignored(self, session: Session, content: Content, sent):
        assert make_service().track_open(session, sent["sms"].tracking_id) is False

        session.expire_all()
        assert sent["sms"].status == DeliveryStatus.sent
        assert content.emails_opened == 0

    def test_unknown_tracking_id(self, session: Session):
        assert make_service().track_open(session, "nope") is False
        assert make_service().track_click(session, "nope") is False

    def test_pending_delivery_not_opened(self, session: Session, content: Content, alice: Subscriber):
        make_service().schedule_delivery(session, content.id)
        delivery = deliveries_for(session, content.id)[0]

        assert make_service().track_open(session, delivery.tracking_id) is False

        session.expire_all()
        assert delivery.status == DeliveryStatus.pending
        assert content.emails_opened == 0

    def test_record_open_safely_swallows_errors(self):
        def broken_factory():
            raise RuntimeError("database unreachable")

        # Must not raise
        make_service().record_open_safely(broken_factory, "abc")
        make_service().record_click_safely(broken_factory, "abc")


class TestSmsStatus:
    @pytest_asyncio.fixture
    async def sms(self, session: Session, content: Content, bob: Subscriber):
        service = make_service()
        service.schedule_delivery(session, content.id)
        await service.process_pending_deliveries(session)
        return [d for d in deliveries_for(session, content.id) if d.channel == DeliveryChannel.sms][0]

    @pytest.mark.asyncio
    async def test_delivered(self, session: Session, sms):
        assert make_service().record_sms_status(session, sms.tracking_id, "delivered") is True

        session.expire_all()
        assert sms.status == DeliveryStatus.delivered
        assert sms.delivered_at is not None

    @pytest.mark.asyncio
    async def test_undelivered(self, session: Session, content: Content, sms):
        assert make_service().record_sms_status(session, sms.tracking_id, "undelivered", "30003") is True

        session.expire_all()
        assert sms.status == DeliveryStatus.failed
        assert sms.failure_reason == "Provider reported undelivered (error 30003)"
        assert content.delivery_failure_count == 1

    @pytest.mark.asyncio
    async def test_intermediate_status_ignored(self, session: Session, sms):
        assert make_service().record_sms_status(session, sms.tracking_id, "sending") is False

        session.expire_all()
        assert sms.status == DeliveryStatus.sent


class TestReads:
    def test_stats(self, session: Session, content: Content, alice: Subscriber, bob: Subscriber):
        make_service().schedule_delivery(session, content.id)

        stats = make_service().get_delivery_stats(session, content.id)

        assert stats["total"] == 3
        assert stats["by_status"]["pending"] == 3
        assert stats["by_status"]["sent"] == 0

    def test_content_analytics_missing(self, session: Session):
        with pytest.raises(NotFoundError):
            make_service().get_content_analytics(session, 404)
