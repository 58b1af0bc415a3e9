"""
Shared test fixtures for the AfroFuture ticket bot

- In-memory SQLite (StaticPool) schema created and dropped per test
- Paystack client with the HTTP layer patched (no network)
- Telegram sends replaced by AsyncMock notifier
"""

import os

# Must be set before config/database are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_afrofuture"
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "123456:TEST-TOKEN")
os.environ["OUTBOUND_SEND_DELAY_SECONDS"] = "0"
os.environ["VIP_ADDITIONAL_AVAILABLE"] = "50"

import json
import logging
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select

from database import SessionLocal, engine
from models import Base, Payment, PaymentStatus
from services.coupon_service import CouponService
from services.payment_reconciliation import PaymentReconciler
from services.payment_service import PaymentService
from services.paystack_service import PaystackService
from services.session_store import SessionStore
from services.ticket_availability import TicketAvailabilityService
from handlers.conversation import ConversationEngine

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

TEST_SECRET = "sk_test_afrofuture"


@pytest.fixture
def session_factory():
    """Fresh schema per test"""
    Base.metadata.create_all(bind=engine)
    yield SessionLocal
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(session_factory):
    return SessionStore(session_factory)


@pytest.fixture
def paystack():
    """Real PaystackService with the HTTP layer replaced; initialize echoes the reference"""
    service = PaystackService(
        secret_key=TEST_SECRET,
        base_url="https://api.paystack.test",
        currency="GHS",
        channels=["mobile_money"],
        callback_url="https://tickets.example/api/payments/callback",
    )

    async def fake_request(method, path, payload=None):
        if path == "/transaction/initialize":
            reference = payload["reference"]
            return {
                "status": True,
                "message": "Authorization URL created",
                "data": {
                    "authorization_url": f"https://checkout.paystack.com/{reference}",
                    "access_code": f"access_{reference[-6:]}",
                    "reference": reference,
                },
            }
        raise AssertionError(f"Unexpected Paystack call {method} {path}")

    service._request = AsyncMock(side_effect=fake_request)
    return service


@pytest.fixture
def notifier():
    mock = MagicMock()
    mock.send_text = AsyncMock(return_value=None)
    mock.throttle = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def payment_service(paystack, session_factory):
    return PaymentService(paystack, session_factory)


@pytest.fixture
def coupon_service(session_factory):
    return CouponService(session_factory)


@pytest.fixture
def availability(payment_service, session_factory):
    return TicketAvailabilityService(payment_service, additional_available=50, session_factory=session_factory)


@pytest.fixture
def conversation(store, payment_service, coupon_service, availability, notifier):
    return ConversationEngine(store, payment_service, coupon_service, availability, notifier)


@pytest.fixture
def reconciler(paystack, store, notifier, session_factory, coupon_service):
    return PaymentReconciler(paystack, store, notifier, session_factory, coupon_service)


@pytest.fixture
def sign():
    """HMAC-SHA512 signature Paystack would send for a raw body"""
    signer = PaystackService(secret_key=TEST_SECRET)
    return signer.compute_signature


@pytest.fixture
def charge_event():
    """Build a raw charge.success (or other) webhook body"""

    def build(reference, amount, currency="GHS", status="success", event="charge.success", metadata=None):
        body = {
            "event": event,
            "data": {
                "reference": reference,
                "status": status,
                "amount": int(Decimal(str(amount)) * 100),
                "currency": currency,
                "paid_at": "2025-11-20T10:15:00.000Z",
                "metadata": metadata or {},
            },
        }
        return json.dumps(body).encode("utf-8")

    return build


@pytest.fixture
def add_payment(session_factory):
    """Insert a Payment row directly"""

    def add(reference, chat_id="1001", amount="918.75", status=PaymentStatus.PENDING, ticket_type="GA",
            payment_type="full", installment_number=None):
        db = session_factory()
        try:
            db.add(Payment(
                reference=reference,
                chat_id=chat_id,
                amount=Decimal(amount),
                currency="GHS",
                status=status.value,
                ticket_type=ticket_type,
                payment_type=payment_type,
                installment_number=installment_number,
            ))
            db.commit()
        finally:
            db.close()

    return add


@pytest.fixture
def get_payment(session_factory):
    def get(reference):
        db = session_factory()
        try:
            return db.execute(select(Payment).where(Payment.reference == reference)).scalar_one_or_none()
        finally:
            db.close()

    return get
