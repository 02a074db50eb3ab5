# tests/conftest.py

import hashlib
import hmac
import json
import os
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_fulfillment")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_fulfillment")
os.environ.setdefault("PUBLIC_BASE_URL", "https://tickets.example.test")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from src.api.routes.routes import get_db, get_payment_gateway
from src.domain.statuses import EventStatus, VerificationStatus
from src.infrastructure.db.models import Base, Event, Organizer, TicketType
from src.infrastructure.payments.stripe_gateway import CheckoutSession, StripeGateway
from src.main import app


WEBHOOK_SECRET = "whsec_test_fulfillment"


class FakeStripeGateway(StripeGateway):
    """Real signature verification, recorded checkout sessions."""

    def __init__(self):
        super().__init__(
            secret_key="sk_test_fulfillment",
            webhook_secret=WEBHOOK_SECRET,
            tolerance=300,
        )
        self.sessions: list[dict] = []
        self.fail_with: Exception | None = None

    def create_checkout_session(self, **kwargs) -> CheckoutSession:
        if self.fail_with:
            raise self.fail_with
        self.sessions.append(kwargs)
        session_id = f"cs_test_{len(self.sessions)}"
        return CheckoutSession(
            session_id=session_id,
            url=f"https://checkout.stripe.test/pay/{session_id}",
        )


# ---------------------
# DATABASE
# ---------------------

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs these two hooks for SAVEPOINT to behave.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = Session(bind=engine, autoflush=False)
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakeStripeGateway()


@pytest.fixture
def client(db_session, gateway):
    def _get_db():
        try:
            yield db_session
            db_session.commit()
        except Exception:
            db_session.rollback()
            raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


# ---------------------
# CATALOG FACTORIES
# ---------------------

@pytest.fixture
def make_organizer(db_session):
    def _make(
        payment_account_id: str | None = "acct_test_organizer",
        verification_status: VerificationStatus = VerificationStatus.VERIFIED,
    ) -> Organizer:
        organizer = Organizer(
            name="Harbor Lights Promotions",
            payment_account_id=payment_account_id,
            verification_status=verification_status,
        )
        db_session.add(organizer)
        db_session.flush()
        return organizer

    return _make


@pytest.fixture
def make_event(db_session, make_organizer):
    def _make(
        organizer: Organizer | None = None,
        status: EventStatus = EventStatus.PUBLISHED,
        starts_at: datetime | None = None,
        title: str = "Harbor Lights Jazz Night",
    ) -> Event:
        event = Event(
            organizer_id=(organizer or make_organizer()).id,
            title=title,
            status=status,
            starts_at=starts_at or datetime.now(timezone.utc) + timedelta(days=7),
        )
        db_session.add(event)
        db_session.flush()
        return event

    return _make


@pytest.fixture
def make_ticket_type(db_session):
    def _make(
        event: Event,
        name: str = "General Admission",
        price: str = "35.00",
        quantity_available: int = 100,
        quantity_sold: int = 0,
        max_per_order: int | None = None,
        sale_starts_at: datetime | None = None,
        sale_ends_at: datetime | None = None,
        is_active: bool = True,
    ) -> TicketType:
        ticket_type = TicketType(
            event_id=event.id,
            name=name,
            price=Decimal(price),
            quantity_available=quantity_available,
            quantity_sold=quantity_sold,
            max_per_order=max_per_order,
            sale_starts_at=sale_starts_at,
            sale_ends_at=sale_ends_at,
            is_active=is_active,
        )
        db_session.add(ticket_type)
        db_session.flush()
        return ticket_type

    return _make


# ---------------------
# SIGNED NOTIFICATIONS
# ---------------------

def sign_payload(body: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{body.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def build_notification(event_type: str, payload: dict, notification_id: str | None = None) -> bytes:
    envelope = {
        "id": notification_id or f"evt_{uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "data": {"object": payload},
    }
    return json.dumps(envelope).encode("utf-8")


def completed_session(
    session_id: str,
    metadata: dict,
    amount_total: int | None = None,
    payment_intent: str = "pi_test_1",
    customer_email: str = "ada@example.com",
    customer_name: str = "Ada Lovelace",
) -> dict:
    return {
        "id": session_id,
        "object": "checkout.session",
        "payment_intent": payment_intent,
        "amount_total": amount_total,
        "customer_email": customer_email,
        "customer_details": {"email": customer_email, "name": customer_name, "phone": None},
        "metadata": metadata,
    }


@pytest.fixture
def deliver(client):
    """Posts a signed notification to the webhook endpoint."""

    def _deliver(
        event_type: str,
        payload: dict,
        notification_id: str | None = None,
        secret: str = WEBHOOK_SECRET,
        timestamp: int | None = None,
    ):
        body = build_notification(event_type, payload, notification_id)
        return client.post(
            "/webhooks/payment",
            content=body,
            headers={
                "Content-Type": "application/json",
                "Stripe-Signature": sign_payload(body, secret=secret, timestamp=timestamp),
            },
        )

    return _deliver
