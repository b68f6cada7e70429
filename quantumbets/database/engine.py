from sqlmodel import create_engine, Session
from typing import Callable, Generator
import os

from quantumbets.core.config import settings

DATABASE_URL = settings.database_url

engine = create_engine(
    DATABASE_URL,
    echo=True if os.getenv("DEBUG") else False,
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,
    pool_recycle=3600
)


def get_db() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


def get_session_factory() -> Callable[[], Session]:
    """
    Provide a factory for sessions that outlive the request.

    Work handed to FastAPI background tasks runs after the request-scoped
    session from get_db() has been closed, so it must open its own.
    """
    return lambda: Session(engine)
