"""Shared test configuration and fixtures.

Every test gets a fresh in-memory SQLite database (aiosqlite) for pending
payments. The booking backend and Khalti are faked with ``httpx.MockTransport``
so tests can assert on exactly which outbound calls were made. Stripe calls
are patched per test with ``AsyncMock``.
"""

import os

# Must be set before any homestay_checkout module reads settings.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("KHALTI_SECRET_KEY", "test-khalti-secret")

import asyncio
import json
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import homestay_checkout.models  # noqa: F401  (registers tables on Base.metadata)
from homestay_checkout.api.deps import get_orchestrator
from homestay_checkout.config import settings
from homestay_checkout.database import Base
from homestay_checkout.main import app
from homestay_checkout.payments.khalti_client import KhaltiClient
from homestay_checkout.payments.router import build_payment_router
from homestay_checkout.services.booking_client import BookingServiceClient
from homestay_checkout.services.orchestrator import CheckoutOrchestrator, SubmissionGuard
from homestay_checkout.services.reconciler import CallbackReconciler

BOOKING_API = "http://booking.test/api"
KHALTI_API = "http://khalti.test/api/v2"

# ---------------------------------------------------------------------------
# Fakes for outbound HTTP collaborators
# ---------------------------------------------------------------------------


class FakeBookingBackend:
    """In-memory booking backend behind an httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.bookings: dict[str, dict] = {}
        self.total_price: Decimal | None = Decimal("5000")
        self.created_status = "PENDING"
        self.fail_create_with: tuple[int, dict] | None = None
        self.fail_confirm_with: tuple[int, dict] | None = None
        self.delay: float = 0.0

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == f"/api{path}"]

    @property
    def create_calls(self) -> list[httpx.Request]:
        return self.calls("POST", "/bookings") + self.calls("POST", "/bookings/guest")

    @property
    def confirm_calls(self) -> list[httpx.Request]:
        return self.calls("POST", "/bookings/confirm-payment")

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)

        path = request.url.path.removeprefix("/api")

        if request.method == "POST" and path in ("/bookings", "/bookings/guest"):
            if self.fail_create_with:
                status_code, body = self.fail_create_with
                return httpx.Response(status_code, json=body)
            payload = json.loads(request.content)
            booking_id = f"BK-{len(self.bookings) + 1:04d}"
            booking = {
                "bookingId": booking_id,
                "status": self.created_status,
                "checkInDate": payload["checkInDate"],
                "checkOutDate": payload["checkOutDate"],
                "totalGuests": payload["totalGuests"],
                "paymentMethod": payload["paymentMethod"],
            }
            if self.total_price is not None:
                booking["totalPrice"] = str(self.total_price)
            self.bookings[booking_id] = booking
            return httpx.Response(201, json=booking)

        if request.method == "POST" and path == "/bookings/confirm-payment":
            if self.fail_confirm_with:
                status_code, body = self.fail_confirm_with
                return httpx.Response(status_code, json=body)
            payload = json.loads(request.content)
            booking = self.bookings.get(payload["groupBookingId"])
            if booking is None:
                return httpx.Response(404, json={"message": "Booking not found"})
            booking["status"] = "CONFIRMED"
            booking["transactionId"] = payload["transactionId"]
            return httpx.Response(200, json={"success": True})

        if request.method == "GET" and path.startswith("/bookings/"):
            booking = self.bookings.get(path.rsplit("/", 1)[-1])
            if booking is None:
                return httpx.Response(404, json={"message": "Booking not found"})
            return httpx.Response(200, json=booking)

        return httpx.Response(404, json={"message": "Not found"})


class FakeKhalti:
    """Khalti ePayment v2 behind an httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.amounts: dict[str, int] = {}
        self.lookup_status: str = "Completed"
        self.fail_initiate_with: tuple[int, dict] | None = None
        self.fail_lookup_with: tuple[int, dict] | None = None

    def calls(self, endpoint: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(f"/epayment/{endpoint}/")]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        payload = json.loads(request.content)

        if request.url.path.endswith("/epayment/initiate/"):
            if self.fail_initiate_with:
                status_code, body = self.fail_initiate_with
                return httpx.Response(status_code, json=body)
            pidx = f"pidx-{payload['purchase_order_id']}"
            self.amounts[pidx] = payload["amount"]
            return httpx.Response(
                200,
                json={
                    "pidx": pidx,
                    "payment_url": f"https://test-pay.khalti.com/?pidx={pidx}",
                    "expires_in": 1800,
                },
            )

        if request.url.path.endswith("/epayment/lookup/"):
            if self.fail_lookup_with:
                status_code, body = self.fail_lookup_with
                return httpx.Response(status_code, json=body)
            pidx = payload["pidx"]
            return httpx.Response(
                200,
                json={
                    "pidx": pidx,
                    "status": self.lookup_status,
                    "total_amount": self.amounts.get(pidx),
                    "transaction_id": f"txn-{pidx}",
                },
            )

        return httpx.Response(404, json={"detail": "Not found"})


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory SQLite database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Outbound collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def booking_backend() -> FakeBookingBackend:
    return FakeBookingBackend()


@pytest.fixture
def khalti() -> FakeKhalti:
    return FakeKhalti()


@pytest_asyncio.fixture
async def booking_client(booking_backend: FakeBookingBackend) -> AsyncGenerator[BookingServiceClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(booking_backend.handler)) as http_client:
        yield BookingServiceClient(base_url=BOOKING_API, http_client=http_client)


@pytest_asyncio.fixture
async def khalti_client(khalti: FakeKhalti) -> AsyncGenerator[KhaltiClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(khalti.handler)) as http_client:
        yield KhaltiClient(secret_key="test-khalti-secret", base_url=KHALTI_API, http_client=http_client)


@pytest.fixture
def orchestrator(
    db_session: AsyncSession,
    booking_client: BookingServiceClient,
    khalti_client: KhaltiClient,
) -> CheckoutOrchestrator:
    """Production wiring with faked transports and a private submission guard."""
    return CheckoutOrchestrator(
        booking_client=booking_client,
        payment_router=build_payment_router(db_session, khalti_client=khalti_client),
        reconciler=CallbackReconciler(db_session, booking_client, khalti_client),
        guard=SubmissionGuard(),
    )


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(orchestrator: CheckoutOrchestrator) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to the faked orchestrator."""
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    """Authorization headers for a signed-in platform user."""
    token = create_access_token({"sub": "user-42"})
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def guest_profile(**overrides) -> dict:
    profile = {
        "first_name": "Sita",
        "last_name": "Sharma",
        "email": "sita@example.com",
        "calling_code": "+977",
        "local_number": "9841234567",
    }
    profile.update(overrides)
    return profile


def checkout_payload(
    payment_method: str = "pay-at-property",
    amount: str = "5000",
    guest: dict | None = None,
    session_id: str = "sess-1",
) -> dict:
    return {
        "session_id": session_id,
        "property_id": 7,
        "check_in": "2026-11-01",
        "check_out": "2026-11-04",
        "occupancy": {"adults": 2, "children": 1},
        "total_price": {"amount": amount, "currency": "NPR"},
        "payment_method": payment_method,
        "guest": guest,
    }


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Sign a token the way the platform's auth service does."""
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=30))
    to_encode.update({"exp": expire, "iat": now, "type": "access"})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
