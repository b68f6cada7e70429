import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool
from datetime import datetime

from quantumbets.main import app
from quantumbets.database.engine import get_db, get_session_factory
from quantumbets.models.content import Content
from quantumbets.models.subscriber import Subscriber, SubscriptionTier

PICKS_HTML = (
    '<html><body><h1>Today\'s Picks</h1>'
    '<div class="pick"><span class="sport">NFL</span><span class="team">Chiefs</span>'
    '<span class="bet">-3.5</span><span class="odds">-110</span></div>'
    '<p><a href="https://quantumbets.com/picks/today" class="cta">Full analysis</a></p>'
    '</body></html>'
)


# Test database setup
@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture(name="client")
def client_fixture(engine, session: Session):
    def get_session_override():
        return session

    def get_session_factory_override():
        return lambda: Session(engine)

    app.dependency_overrides[get_db] = get_session_override
    app.dependency_overrides[get_session_factory] = get_session_factory_override
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(name="content")
def content_fixture(session: Session):
    content = Content(
        title="Sunday Picks",
        html_content=PICKS_HTML,
        plain_text_content="Today's Picks NFL Chiefs -3.5 -110 Full analysis",
        sms_content="QUANTUM PICKS: NFL Chiefs -3.5 (-110)",
        content_date=datetime(2026, 10, 18),
        sports=["NFL"],
        tier_availability=["FREE"],
        is_published=True
    )
    session.add(content)
    session.commit()
    session.refresh(content)
    return content


@pytest.fixture(name="alice")
def alice_fixture(session: Session):
    """FREE subscriber, email only."""
    alice = Subscriber(
        email="alice@example.com",
        name="Alice",
        subscription_tier=SubscriptionTier.FREE,
        receive_email=True,
        receive_sms=False
    )
    session.add(alice)
    session.commit()
    session.refresh(alice)
    return alice


@pytest.fixture(name="bob")
def bob_fixture(session: Session):
    """MONTHLY subscriber, email and SMS."""
    bob = Subscriber(
        email="bob@example.com",
        name="Bob",
        phone="555-123-4567",
        subscription_tier=SubscriptionTier.MONTHLY,
        receive_email=True,
        receive_sms=True
    )
    session.add(bob)
    session.commit()
    session.refresh(bob)
    return bob
