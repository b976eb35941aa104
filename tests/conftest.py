import os

# Must be set before the app (and its Settings) is imported
os.environ.setdefault("ENV", "testing")
os.environ.setdefault("SECRET_KEY", "test-secret-key-do-not-use-in-production")
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("LOG_DIR", "logs")

import pytest
from datetime import datetime, timedelta, timezone
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from typing import Generator

from main import app
from core.clock import FrozenClock
from core.database import Base
from models.users import User
from services.access_token_codec import AccessTokenCodec
from services.refresh_token_store import InMemoryRefreshTokenStore
from services.session_manager import SessionManager
from utils.deps import get_db, get_clock
from utils.hashing import get_password_hash

# SYNC SQLite for testing (matches sync service layer)
SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"

TEST_SECRET_KEY = "unit-test-signing-key"
TEST_PASSWORD = "TestPassword123!"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False}
)

TestingSessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)


@pytest.fixture
def session() -> Generator[Session, None, None]:
    """
    Creates a fresh, empty database for each test.
    """
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def codec(clock) -> AccessTokenCodec:
    return AccessTokenCodec(
        secret_key=TEST_SECRET_KEY,
        algorithm="HS256",
        lifetime=timedelta(minutes=15),
        clock=clock
    )


@pytest.fixture
def memory_store() -> InMemoryRefreshTokenStore:
    return InMemoryRefreshTokenStore()


@pytest.fixture
def manager(memory_store, codec, clock) -> SessionManager:
    """SessionManager over the in-memory store with a frozen clock."""
    return SessionManager(
        store=memory_store,
        codec=codec,
        clock=clock,
        refresh_lifetime=timedelta(days=7)
    )


def create_user(session: Session, email: str = "active@example.com", is_active: bool = True) -> User:
    user = User(
        email=email,
        first_name="Active",
        last_name="User",
        hashed_password=get_password_hash(TEST_PASSWORD),
        is_active=is_active
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def active_user(session: Session) -> User:
    return create_user(session)


@pytest.fixture
async def client(session: Session):
    """
    Yields an HTTP client that talks to the app using the test database.
    The client is async (for FastAPI), but the DB session is sync.
    """
    def override_get_db():
        try:
            yield session
        finally:
            pass  # Session cleanup handled by session fixture

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def app_clock(clock: FrozenClock, client) -> FrozenClock:
    """
    Makes the app use the frozen clock; move it with `app_clock.advance(...)`.
    Depends on `client` so the override is cleared with it.
    """
    app.dependency_overrides[get_clock] = lambda: clock
    return clock


async def login(client: AsyncClient, email: str, password: str = TEST_PASSWORD) -> dict:
    response = await client.post("/auth/token", data={
        "username": email,
        "password": password
    })
    assert response.status_code == 200, response.text
    return response.json()
