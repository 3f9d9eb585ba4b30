import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ["EXPOSE_VERIFICATION_CODE"] = "true"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.deps import get_gateway
from app.db.session import Base, get_db
from app.main import app
from app.services import email_service
from app.services.stripe_gateway import Authorization


class FakeGateway:
    """Records every call; `fail_on` makes one step raise."""

    def __init__(self):
        self.calls = []
        self.intents = {}
        self.fail_on = {}
        self.confirm_status = "requires_capture"
        self.capture_status = "succeeded"
        self._seq = 0

    def _next_id(self):
        self._seq += 1
        return f"pi_test_{self._seq}"

    def _maybe_fail(self, step):
        if step in self.fail_on:
            raise self.fail_on[step]

    def steps(self):
        return [c[0] for c in self.calls]

    def tokenize_card(self, *, number, exp_month, exp_year, cvc):
        self.calls.append(("tokenize", number, exp_month, exp_year))
        self._maybe_fail("tokenize")
        return "pm_test_123"

    def authorize(self, *, token, amount, currency=None, confirm=False, capture_method="manual", description="", metadata=None):
        pid = self._next_id()
        self.calls.append(("authorize", pid, token, amount, currency, confirm, capture_method))
        self._maybe_fail("authorize")
        self.intents[pid] = "requires_confirmation"
        return Authorization(id=pid, status="requires_confirmation")

    def confirm_authorization(self, authorization_id):
        self.calls.append(("confirm", authorization_id))
        self._maybe_fail("confirm")
        self.intents[authorization_id] = self.confirm_status
        return Authorization(id=authorization_id, status=self.confirm_status)

    def cancel_authorization(self, authorization_id):
        self.calls.append(("cancel", authorization_id))
        self._maybe_fail("cancel")
        self.intents[authorization_id] = "canceled"

    def capture(self, *, token, amount, currency=None, description="", metadata=None):
        pid = self._next_id()
        self.calls.append(("capture", pid, token, amount, currency))
        self._maybe_fail("capture")
        self.intents[pid] = self.capture_status
        return Authorization(id=pid, status=self.capture_status)


@pytest.fixture
def session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def sent_emails(monkeypatch):
    sent = []
    monkeypatch.setattr(email_service, "send_email", lambda to, subject, body: sent.append((to, subject, body)))
    return sent


@pytest.fixture
def client(session_factory, gateway, sent_emails):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def booking_payload():
    def _build(**overrides):
        data = {
            "firstName": "Amira",
            "lastName": "Haddad",
            "email": "amira@example.com",
            "phone": "+971500000000",
            "nationality": "AE",
            "passportNumber": "P1234567",
            "flightNumber": "EK202",
            "airline": "Emirates",
            "tripType": "oneWay",
            "departureDate": "2025-06-01",
            "departureTime": "10:30",
            "selectedServices": [{"id": "meet_greet", "name": "Meet & Greet", "price": 50, "quantity": 1}],
            "totalPrice": 50,
            "paymentMethod": "card",
            "cardNumber": "4242 4242 4242 4242",
            "cardName": "Amira Haddad",
            "cardExpiry": "12/26",
            "cardCVV": "123",
        }
        data.update(overrides)
        return data
    return _build


@pytest.fixture
def created_booking(client, booking_payload, gateway):
    r = client.post("/api/bookings", json=booking_payload())
    assert r.status_code == 201, r.text
    gateway.calls.clear()
    return r.json()["data"]
