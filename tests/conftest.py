import json
import time
from datetime import datetime
from decimal import Decimal

import pytest
import stripe

from orderdesk.checkout import CheckoutInitiator
from orderdesk.config import Settings
from orderdesk.database import make_session_factory
from orderdesk.models import Order, Payment
from orderdesk.numbering import OrderNumberService
from orderdesk.reconciliation import ReconciliationEngine
from orderdesk.schemas import CheckoutRequest
from orderdesk.stores import (
    Backend,
    JsonCounterStore,
    JsonFileDatabase,
    JsonRecordStore,
    SqlCounterStore,
    SqlRecordStore,
)

NOW = datetime(2026, 10, 19, 14, 30, 0)


class FakeProvider:
    """Stands in for orderdesk.stripe_service."""

    def __init__(self):
        self.created = []
        self.sessions = {}
        self.payment_intent = None

    def create_checkout_session(self, **kwargs):
        self.created.append(kwargs)
        session_id = f"cs_test_{len(self.created)}"
        return {
            "id": session_id,
            "url": f"https://checkout.stripe.test/pay/{session_id}",
            "payment_intent": self.payment_intent,
        }

    def retrieve_session(self, session_id):
        if session_id in self.sessions:
            return self.sessions[session_id]
        return {
            "id": session_id,
            "payment_intent": f"pi_{session_id}",
            "payment_status": "paid",
            "metadata": {},
        }


@pytest.fixture
def settings(tmp_path):
    return Settings(
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret="whsec_test",
        frontend_url="https://agency.example",
        database_url=f"sqlite:///{tmp_path / 'orderdesk.db'}",
        json_store_path=str(tmp_path / "orderdesk.json"),
        jwt_secret="test-jwt-secret",
    )


@pytest.fixture
def sql_backend(settings):
    session_factory = make_session_factory(settings.database_url)
    yield Backend(
        payments=SqlRecordStore(session_factory, Payment),
        orders=SqlRecordStore(session_factory, Order),
        counters=SqlCounterStore(session_factory),
    )
    session_factory.kw["bind"].dispose()


@pytest.fixture
def json_backend(settings):
    database = JsonFileDatabase(settings.json_store_path)
    return Backend(
        payments=JsonRecordStore(database, Payment),
        orders=JsonRecordStore(database, Order),
        counters=JsonCounterStore(database),
    )


@pytest.fixture(params=["sql", "json"])
def backend(request):
    return request.getfixturevalue(f"{request.param}_backend")


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def checkout(backend, settings, provider):
    return CheckoutInitiator(backend.payments, settings, provider=provider)


@pytest.fixture
def engine(backend, provider):
    numbering = OrderNumberService(backend.orders, backend.counters)
    return ReconciliationEngine(backend.payments, backend.orders, numbering, provider=provider)


def pro_request(**overrides):
    fields = {
        "package_name": "Pro",
        "package_price": Decimal("99.00"),
        "customer_email": "a@b.com",
        "customer_name": "A",
    }
    fields.update(overrides)
    return CheckoutRequest(**fields)


def order_record(payment_id, order_number, created_at, **overrides):
    record = {
        "order_number": order_number,
        "customer_email": "a@b.com",
        "customer_name": "A",
        "package_name": "Pro",
        "package_price": Decimal("99.00"),
        "payment_id": payment_id,
        "status": "paid",
        "created_at": created_at,
    }
    record.update(overrides)
    return record


def signed_webhook(event, secret="whsec_test"):
    """Body and headers for a delivery signed the way Stripe signs it."""
    payload = event if isinstance(event, str) else json.dumps(event)
    timestamp = int(time.time())
    signature = stripe.WebhookSignature._compute_signature(f"{timestamp}.{payload}", secret)
    return payload.encode(), {"stripe-signature": f"t={timestamp},v1={signature}"}


def stripe_event(event_type, obj):
    return {
        "id": "evt_test",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }
