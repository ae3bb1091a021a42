from __future__ import annotations

import os

os.environ.setdefault("APP_ENV", "test")

from datetime import datetime, timedelta, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402
from itertools import count  # noqa: E402
from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from notifier.core.config import settings  # noqa: E402
from notifier.db import session as db_session_module  # noqa: E402
from notifier.db.base_class import Base  # noqa: E402
from notifier.db.session import SessionLocal  # noqa: E402
from notifier.models.models import Customer, Order, ReminderRecord  # noqa: E402
from notifier.services import generic_retry  # noqa: E402,F401  (flush hook)
from notifier.services.notification.channels.base import ChannelResult  # noqa: E402
from notifier.services.notification.service import NotificationService  # noqa: E402

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")

NOW = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)

test_engine = create_engine(
    TEST_DATABASE_URL,
    future=True,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Ensure application code uses the test engine
settings.DATABASE_URL = TEST_DATABASE_URL  # type: ignore[attr-defined]
settings.ENV = "test"  # type: ignore[attr-defined]
settings.REMINDER_PROCESSING_DELAY_MS = 0  # type: ignore[attr-defined]
settings.CHANNEL_RETRY_BASE_SECONDS = 0  # type: ignore[attr-defined]
db_session_module.engine = test_engine  # type: ignore[assignment]
SessionLocal.configure(bind=test_engine)


@pytest.fixture(autouse=True)
def _reset_database_state():
    """Ensure each test sees a fresh database schema."""
    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    yield


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def now() -> datetime:
    return NOW


class RecordingChannel:
    """Stand-in for a provider channel; records every call.

    ``fail_for`` holds destinations that get a failed result and
    ``raise_for`` destinations that make the call raise.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.calls: list[dict] = []
        self.succeed = True
        self.fail_for: set[str] = set()
        self.raise_for: set[str] = set()

    def _result(self, destination: str | None) -> ChannelResult:
        if destination in self.raise_for:
            raise RuntimeError(f"{self.name} exploded")
        if not self.succeed or destination in self.fail_for:
            return ChannelResult.failed(f"{self.name} unavailable")
        return ChannelResult.ok(f"{self.name}-{len(self.calls)}")

    async def send_template(self, phone, template_name, parameters) -> ChannelResult:
        self.calls.append({"phone": phone, "template_name": template_name, "parameters": parameters})
        return self._result(phone)

    async def send(self, to_email, subject, html) -> ChannelResult:
        self.calls.append({"to": to_email, "subject": subject, "html": html})
        return self._result(to_email)


@pytest.fixture
def channels():
    whatsapp = RecordingChannel("whatsapp")
    email = RecordingChannel("email")
    return SimpleNamespace(
        whatsapp=whatsapp,
        email=email,
        service=NotificationService(whatsapp=whatsapp, email=email),  # type: ignore[arg-type]
    )


@pytest.fixture
def make_customer(db_session):
    def _make(**overrides) -> Customer:
        fields = {
            "customer_id": "CUST-001",
            "name": "Jane Wanjiku",
            "phone": "0712345678",
            "email": "jane@example.com",
        }
        fields.update(overrides)
        customer = Customer(**fields)
        db_session.add(customer)
        db_session.commit()
        return customer

    return _make


@pytest.fixture
def make_order(db_session):
    def _make(**overrides) -> Order:
        fields = {
            "order_id": "ORD-001",
            "customer_id": "CUST-001",
            "status": "ready",
            "return_method": "customer_collects",
            "payment_status": "paid",
            "total_amount": Decimal("1500"),
            "paid_amount": Decimal("1500"),
            "actual_completion": NOW - timedelta(days=8, hours=2),
        }
        fields.update(overrides)
        order = Order(**fields)
        db_session.add(order)
        db_session.commit()
        return order

    return _make


@pytest.fixture
def make_reminder(db_session):
    seq = count(1)

    def _make(**overrides) -> ReminderRecord:
        fields = {
            "reminder_id": f"REM-{next(seq):04d}",
            "order_id": "ORD-001",
            "customer_id": "CUST-001",
            "customer_name": "Jane Wanjiku",
            "customer_phone": "+254712345678",
            "reminder_type": "7_days",
            "scheduled_date": NOW - timedelta(hours=1),
            "status": "pending",
            "retry_count": 0,
            "message_content": "Your items are ready for collection.",
        }
        fields.update(overrides)
        reminder = ReminderRecord(**fields)
        db_session.add(reminder)
        db_session.commit()
        return reminder

    return _make
