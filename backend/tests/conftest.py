"""
Pytest fixtures: frozen clock, in-memory storage, fake image store, service, client.

Everything runs against the memory backend so the suite needs no PostgreSQL or
Redis. The SQL backend has its own opt-in smoke test (test_sql_store.py).
"""

import os

# Must be set before the app (and its cached settings) is imported
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["REDIS_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "test"

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from ticketing.api.deps import get_transaction_service
from ticketing.core.security import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_ORGANIZER, create_access_token
from ticketing.domain import EventInfo, UserInfo
from ticketing.infrastructure.image_store import ImageStore, UploadError
from ticketing.main import app
from ticketing.services.transaction_service import TransactionService
from ticketing.stores.memory_store import MemoryStorage

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeImageStore(ImageStore):
    def __init__(self):
        self.uploads: list[str] = []
        self.fail = False

    async def upload(self, proof: str) -> str:
        if self.fail:
            raise UploadError("image store unavailable")
        self.uploads.append(proof)
        return f"https://images.test/proofs/{len(self.uploads)}.jpg"


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def storage(clock: FrozenClock) -> MemoryStorage:
    return MemoryStorage(clock)


@pytest.fixture
def image_store() -> FakeImageStore:
    return FakeImageStore()


@pytest.fixture
def service(storage: MemoryStorage, image_store: FakeImageStore, clock: FrozenClock) -> TransactionService:
    return TransactionService(storage, image_store, clock=clock)


@pytest.fixture
def organizer(storage: MemoryStorage) -> UserInfo:
    return storage.add_user()


@pytest.fixture
def customer(storage: MemoryStorage) -> UserInfo:
    """Customer with 20,000 loyalty points."""
    return storage.add_user(points=20000)


@pytest.fixture
def admin(storage: MemoryStorage) -> UserInfo:
    return storage.add_user()


@pytest.fixture
def test_event(storage: MemoryStorage, organizer: UserInfo) -> EventInfo:
    """Upcoming event with 100 seats at 500,000."""
    return storage.add_event(
        organizer_id=organizer.id,
        title="Test Concert",
        total_seats=100,
        price=500000,
        start_date=NOW + timedelta(days=30),
        end_date=NOW + timedelta(days=30, hours=3),
    )


@pytest.fixture
def sold_out_event(storage: MemoryStorage, organizer: UserInfo) -> EventInfo:
    return storage.add_event(
        organizer_id=organizer.id,
        title="Sold Out Show",
        total_seats=50,
        available_seats=0,
        price=250000,
        start_date=NOW + timedelta(days=30),
        end_date=NOW + timedelta(days=30, hours=3),
    )


@pytest.fixture
def make_event(storage: MemoryStorage, organizer: UserInfo, clock: FrozenClock):
    """Factory for events owned by the organizer; times are relative to the clock."""

    def _make(
        total_seats: int = 10,
        available_seats=None,
        price: int = 100000,
        starts_in: timedelta = timedelta(days=30),
        duration: timedelta = timedelta(hours=3),
        **kwargs,
    ) -> EventInfo:
        start = clock.now + starts_in
        return storage.add_event(
            organizer_id=organizer.id,
            total_seats=total_seats,
            available_seats=available_seats,
            price=price,
            start_date=start,
            end_date=start + duration,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_promotion(storage: MemoryStorage, clock: FrozenClock):
    def _make(code: str = "PROMO10", discount_percent: int = 10, valid_for=timedelta(days=7), **kwargs):
        return storage.add_promotion(
            code=code,
            discount_percent=discount_percent,
            valid_until=clock.now + valid_for,
            **kwargs,
        )

    return _make


@pytest.fixture
def headers_for():
    """Build bearer headers for any user and role."""

    def _headers(user: UserInfo, role: str = ROLE_CUSTOMER) -> dict:
        token = create_access_token(data={"sub": str(user.id), "role": role})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def auth_headers(headers_for, customer: UserInfo) -> dict:
    return headers_for(customer)


@pytest.fixture
def organizer_headers(headers_for, organizer: UserInfo) -> dict:
    return headers_for(organizer, ROLE_ORGANIZER)


@pytest.fixture
def admin_headers(headers_for, admin: UserInfo) -> dict:
    return headers_for(admin, ROLE_ADMIN)


@pytest_asyncio.fixture
async def client(service: TransactionService) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client wired to the test service."""
    app.dependency_overrides[get_transaction_service] = lambda: service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
