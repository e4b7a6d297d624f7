"""Test fixtures for the stays booking backend."""
from __future__ import annotations

import os
import uuid
from collections.abc import AsyncIterator
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("PAYMENTS_WEBHOOK_VERIFY", "false")
os.environ.setdefault("APP_ENV", "local")
os.environ.setdefault("PAYMENT_VERIFY_BACKOFF_SECONDS", "0")

from app.api import deps
from app.core.config import get_settings
from app.core.security import get_password_hash
from app.db.base import Base
from app.db.session import dispose_engine, get_sessionmaker
from app.integrations import (
    CheckoutSession,
    PaymentGatewayError,
    PaymentGatewayNotFound,
    PaymentIntent,
    Refund,
)
from app.main import app
from app.models import (
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    Property,
    User,
    UserRole,
    UserStatus,
)
from app.services.email_service import BookingEmailContext
from app.services.notification_service import BookingNotifier


class FakeGateway:
    """In-memory stand-in for :class:`app.integrations.StripeClient`."""

    def __init__(self) -> None:
        self.sessions: dict[str, list[CheckoutSession]] = {}
        self.intents: dict[str, PaymentIntent] = {}
        self.refunds: list[dict[str, Any]] = []
        self.created_sessions: list[dict[str, Any]] = []
        self.retrieve_calls: dict[str, int] = {}
        self.refund_error: str | None = None

    def script_session(self, *snapshots: CheckoutSession) -> None:
        """Queue the snapshots successive retrievals return; the last one repeats."""
        self.sessions[snapshots[0].id] = list(snapshots)

    def create_checkout_session(self, **kwargs: Any) -> CheckoutSession:
        self.created_sessions.append(kwargs)
        session_id = f"cs_test_{uuid.uuid4().hex[:12]}"
        return CheckoutSession(
            id=session_id,
            status="open",
            payment_status="unpaid",
            url=f"https://checkout.test/{session_id}",
            metadata={"booking_id": str(kwargs["booking_id"])},
        )

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        snapshots = self.sessions.get(session_id)
        if not snapshots:
            raise PaymentGatewayNotFound("Checkout session not found")
        calls = self.retrieve_calls.get(session_id, 0)
        self.retrieve_calls[session_id] = calls + 1
        return snapshots[min(calls, len(snapshots) - 1)]

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        intent = self.intents.get(payment_intent_id)
        if intent is None:
            raise PaymentGatewayNotFound("Payment intent not found")
        return intent

    def create_refund(
        self,
        payment_intent_id: str,
        *,
        amount_minor_units: int,
        reason: str = "requested_by_customer",
        metadata: dict[str, Any] | None = None,
        idempotency_seed: str | None = None,
    ) -> Refund:
        if self.refund_error:
            raise PaymentGatewayError(self.refund_error)
        self.refunds.append(
            {
                "payment_intent": payment_intent_id,
                "amount": amount_minor_units,
                "reason": reason,
                "metadata": metadata or {},
                "idempotency_seed": idempotency_seed,
            }
        )
        return Refund(id=f"re_test_{len(self.refunds)}", status="succeeded", amount=amount_minor_units)


class RecordingNotifier(BookingNotifier):
    """Keeps notification rows but records emails instead of sending them."""

    def __init__(self) -> None:
        self.emails: list[tuple[str, BookingEmailContext]] = []
        self.fail_emails = False

    async def _record(self, kind: str, ctx: BookingEmailContext) -> bool:
        if self.fail_emails:
            raise RuntimeError("smtp unavailable")
        self.emails.append((kind, ctx))
        return True

    async def send_booking_request_email(self, ctx: BookingEmailContext) -> bool:
        return await self._record("booking_request", ctx)

    async def send_booking_confirmation_email(self, ctx: BookingEmailContext) -> bool:
        return await self._record("booking_confirmation", ctx)

    async def send_host_notification_email(self, ctx: BookingEmailContext) -> bool:
        return await self._record("host_notification", ctx)

    async def send_cancellation_email(self, ctx: BookingEmailContext) -> bool:
        return await self._record("cancellation", ctx)


async def _authenticate(client: AsyncClient, email: str, password: str) -> dict[str, str]:
    response = await client.post(
        "/api/v1/auth/token",
        data={"username": email, "password": password},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


async def _create_booking(
    session: AsyncSession,
    listing: Property,
    *,
    guest_id: uuid.UUID | None = None,
    check_in: date | None = None,
    nights: int = 3,
    total_amount: Decimal = Decimal("200.00"),
    status: BookingStatus = BookingStatus.PENDING,
    payment_status: BookingPaymentStatus = BookingPaymentStatus.PENDING,
    payment_intent_id: str | None = None,
    payment_method: str | None = None,
) -> Booking:
    check_in = check_in or date.today() + timedelta(days=30)
    booking = Booking(
        property_id=listing.id,
        host_id=listing.host_id,
        guest_id=guest_id,
        check_in_date=check_in,
        check_out_date=check_in + timedelta(days=nights),
        guests_count=2,
        total_amount=total_amount,
        currency="cad",
        guest_name="Gail Guest",
        guest_email="guest@example.com",
        status=status,
        payment_status=payment_status,
        payment_intent_id=payment_intent_id,
        payment_method=payment_method,
    )
    session.add(booking)
    await session.commit()
    await session.refresh(booking)
    return booking


@pytest.fixture(scope="session")
def db_url(tmp_path_factory: pytest.TempPathFactory) -> str:
    """Provide a temporary SQLite database URL for the test session."""
    db_path = tmp_path_factory.mktemp("db") / "test.db"
    return f"sqlite+aiosqlite:///{db_path}"


@pytest_asyncio.fixture()
async def reset_database(db_url: str) -> AsyncIterator[None]:
    """Drop and recreate the database schema for an isolated test."""
    os.environ["DATABASE_URL"] = db_url
    get_settings.cache_clear()
    get_settings()

    await dispose_engine(db_url)
    engine = create_async_engine(db_url, future=True)
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.drop_all)
        await connection.run_sync(Base.metadata.create_all)
    await engine.dispose()
    yield
    await dispose_engine(db_url)


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture()
async def seeded(reset_database: None, db_url: str) -> dict[str, Any]:
    """Seed a host, a registered guest, an admin and one active listing."""
    sessionmaker = get_sessionmaker(db_url)
    password = "Passw0rd!"
    async with sessionmaker() as session:
        host = User(
            email="host@example.com",
            hashed_password=get_password_hash(password),
            first_name="Hana",
            last_name="Host",
            role=UserRole.HOST,
            status=UserStatus.ACTIVE,
        )
        guest = User(
            email="guest@example.com",
            hashed_password=get_password_hash(password),
            first_name="Gail",
            last_name="Guest",
            role=UserRole.GUEST,
            status=UserStatus.ACTIVE,
        )
        admin = User(
            email="admin@example.com",
            hashed_password=get_password_hash(password),
            first_name="Ada",
            last_name="Admin",
            role=UserRole.ADMIN,
            status=UserStatus.ACTIVE,
        )
        session.add_all([host, guest, admin])
        await session.flush()

        listing = Property(
            host_id=host.id,
            title="Lakeside Cabin",
            city="Kelowna",
            state="BC",
            images=[],
            max_guests=4,
            is_active=True,
        )
        session.add(listing)
        await session.commit()

    return {
        "sessionmaker": sessionmaker,
        "password": password,
        "host": host,
        "guest": guest,
        "admin": admin,
        "listing": listing,
    }


@pytest_asyncio.fixture()
async def app_context(
    seeded: dict[str, Any], gateway: FakeGateway, notifier: RecordingNotifier
) -> AsyncIterator[dict[str, Any]]:
    """Yield an async client wired to the fake gateway and recording notifier."""
    app.dependency_overrides[deps.get_payment_gateway] = lambda: gateway
    app.dependency_overrides[deps.get_booking_notifier] = lambda: notifier
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield {**seeded, "client": client, "gateway": gateway, "notifier": notifier}
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def make_booking(seeded: dict[str, Any]):
    """Insert a booking on the seeded listing directly, bypassing validation."""

    async def _make(**kwargs: Any) -> Booking:
        async with seeded["sessionmaker"]() as session:
            return await _create_booking(session, seeded["listing"], **kwargs)

    return _make


@pytest.fixture()
def login(app_context: dict[str, Any]):
    """Return bearer headers for one of the seeded users (``host``, ``guest``, ``admin``)."""

    async def _login(who: str) -> dict[str, str]:
        user = app_context[who]
        return await _authenticate(app_context["client"], user.email, app_context["password"])

    return _login
