import pytest
import stripe
from fastapi.testclient import TestClient
from jose import jwt

from conftest import FakeProvider, NOW, pro_request, signed_webhook, stripe_event
from orderdesk.checkout import CheckoutInitiator
from orderdesk.main import create_app
from orderdesk.numbering import OrderNumberService
from orderdesk.reconciliation import ReconciliationEngine


@pytest.fixture
def client(settings, backend):
    with TestClient(create_app(settings, backend=backend)) as c:
        yield c


@pytest.fixture
def pending_session(settings, backend):
    return CheckoutInitiator(backend.payments, settings, provider=FakeProvider()).start_checkout(pro_request())


@pytest.fixture
def paid_order(backend, pending_session):
    engine = ReconciliationEngine(
        backend.payments, backend.orders, OrderNumberService(backend.orders, backend.counters)
    )
    return engine.reconcile(session_id=pending_session.session_id, payment_intent="pi_1", now=NOW).order


@pytest.fixture
def admin_headers(settings):
    token = jwt.encode({"sub": "admin@agency.example"}, settings.jwt_secret, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_correlation_id_is_echoed(client):
    response = client.get("/health", headers={"X-Correlation-ID": "req-123"})

    assert response.headers["X-Correlation-ID"] == "req-123"


def test_start_checkout_accepts_snake_case(client, mocker):
    session = stripe.checkout.Session.construct_from(
        {"id": "cs_123", "object": "checkout.session",
         "url": "https://checkout.stripe.com/c/pay/cs_123", "payment_intent": None},
        "sk_test_123",
    )
    mocker.patch("stripe.checkout.Session.create", return_value=session)

    response = client.post("/checkout", json={
        "package_name": "Starter",
        "package_price": "49.99",
        "customer_email": "owner@shop.example",
        "customer_name": "Shop Owner",
        "billing_address": {"city": "Springfield", "zipCode": "12345"},
    })

    assert response.status_code == 200
    assert response.json()["session_id"] == "cs_123"


def test_start_checkout_missing_fields(client, backend, mocker):
    create = mocker.patch("stripe.checkout.Session.create")

    response = client.post("/checkout", json={"packageName": "Pro"})

    assert response.status_code == 400
    body = response.json()
    assert "packagePrice is required" in body["errors"]
    assert "customerEmail is required" in body["errors"]
    assert body["correlation_id"]
    create.assert_not_called()
    assert backend.payments.count({}) == 0


def test_start_checkout_malformed_price(client):
    response = client.post("/checkout", json={
        "packageName": "Pro", "packagePrice": "ninety", "customerEmail": "a@b.com", "customerName": "A",
    })

    assert response.status_code == 400


def test_stripe_webhook_invalid_signature(client, backend, pending_session):
    body, headers = signed_webhook(
        stripe_event("checkout.session.completed", {"id": pending_session.session_id}),
        secret="whsec_other",
    )

    response = client.post("/checkout/webhook", content=body, headers=headers)

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid signature"
    payment = backend.payments.find_one({"session_id": pending_session.session_id})
    assert payment["status"] == "pending"
    assert backend.orders.count({}) == 0


def test_stripe_webhook_missing_signature(client, mocker):
    construct = mocker.patch("stripe.Webhook.construct_event")

    response = client.post("/checkout/webhook", content=b"{}")

    assert response.status_code == 400
    construct.assert_not_called()


def test_stripe_webhook_invalid_payload(client):
    body, headers = signed_webhook("{")

    response = client.post("/checkout/webhook", content=body, headers=headers)

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid payload"


def test_stripe_webhook_payment_failed(client, backend, pending_session):
    payment = backend.payments.find_one({"session_id": pending_session.session_id})
    body, headers = signed_webhook(stripe_event(
        "payment_intent.payment_failed",
        {"id": payment["payment_intent_id"], "object": "payment_intent", "status": "requires_payment_method"},
    ))

    response = client.post("/checkout/webhook", content=body, headers=headers)

    assert response.status_code == 200
    assert backend.payments.find_one({"id": payment["id"]})["status"] == "failed"


def test_return_requires_session_id(client):
    response = client.get("/checkout/return")

    assert response.status_code == 400
    assert response.json()["detail"] == "Session ID is required"


def test_return_unknown_session(client, mocker):
    session = stripe.checkout.Session.construct_from(
        {"id": "cs_unknown", "object": "checkout.session", "payment_intent": "pi_x",
         "payment_status": "paid", "metadata": {}},
        "sk_test_123",
    )
    mocker.patch("stripe.checkout.Session.retrieve", return_value=session)

    response = client.get("/checkout/return", params={"session_id": "cs_unknown"})

    assert response.status_code == 404
    assert response.json()["detail"] == "Payment record not found"


def test_cancel(client, backend, pending_session):
    response = client.get("/checkout/cancel", params={"session_id": pending_session.session_id})

    assert response.status_code == 200
    assert response.json() == {"session_id": pending_session.session_id, "status": "canceled"}


def test_cancel_without_session(client):
    response = client.get("/checkout/cancel")

    assert response.status_code == 200
    assert response.json() == {"session_id": None, "status": None}


def test_cancel_after_success_keeps_succeeded(client, paid_order, pending_session):
    response = client.get("/checkout/cancel", params={"session_id": pending_session.session_id})

    assert response.json()["status"] == "succeeded"


def test_status(client, pending_session):
    response = client.get(f"/checkout/status/{pending_session.session_id}")

    assert response.status_code == 200
    payment = response.json()["payment"]
    assert payment["status"] == "pending"
    assert payment["amount"] == 9900
    assert payment["package_name"] == "Pro"


def test_status_unknown(client):
    assert client.get("/checkout/status/cs_nope").status_code == 404


def test_orders_require_token(client, paid_order):
    assert client.get(f"/orders/{paid_order['order_number']}").status_code == 401
    response = client.get(
        f"/orders/{paid_order['order_number']}", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert response.status_code == 401


def test_get_order(client, paid_order, admin_headers):
    response = client.get(f"/orders/{paid_order['order_number']}", headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["order_number"] == "SN-20261019-0001"
    assert response.json()["status"] == "paid"
    assert response.json()["is_subscription"] is False
    assert response.json()["next_billing_date"] is None
    assert response.json()["subscription_id"] is None


def test_get_unknown_order(client, admin_headers):
    response = client.get("/orders/SN-20261019-9999", headers=admin_headers)

    assert response.status_code == 404
    assert response.json()["detail"] == "Order not found"


def test_update_order_status(client, paid_order, admin_headers):
    url = f"/orders/{paid_order['order_number']}/status"

    response = client.patch(url, json={"status": "processing"}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "processing"

    bad = client.patch(url, json={"status": "shipped"}, headers=admin_headers)
    assert bad.status_code == 400


def test_add_admin_note(client, paid_order, admin_headers):
    url = f"/orders/{paid_order['order_number']}/notes"

    response = client.post(url, json={"note": "Kickoff call booked"}, headers=admin_headers)

    assert response.status_code == 200
    notes = response.json()["admin_notes"]
    assert len(notes) == 1
    assert notes[0]["note"] == "Kickoff call booked"
    assert notes[0]["added_by"] == "admin@agency.example"

    assert client.post(url, json={"note": "  "}, headers=admin_headers).status_code == 400
