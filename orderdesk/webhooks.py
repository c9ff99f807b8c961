import logging
from dataclasses import dataclass
from datetime import datetime

from orderdesk import stripe_service
from orderdesk.errors import PaymentNotFound
from orderdesk.reconciliation import PAID_SESSION_STATUSES, ReconciliationEngine

logger = logging.getLogger(__name__)


@dataclass
class WebhookResult:
    event_type: str
    result: str  # processed | skipped | not_found | ignored


def _session_completed(engine: ReconciliationEngine, session, now):
    if session.get("payment_status") not in PAID_SESSION_STATUSES:
        logger.info(
            "Session %s completed with payment_status=%s, waiting for async payment",
            session.get("id"), session.get("payment_status"),
        )
        return "skipped"
    engine.reconcile(
        session_id=session["id"],
        payment_intent=session.get("payment_intent"),
        metadata=dict(session.get("metadata") or {}),
        via_webhook=True,
        now=now,
    )
    return "processed"


def _async_payment_succeeded(engine: ReconciliationEngine, session, now):
    engine.reconcile(
        session_id=session["id"],
        payment_intent=session.get("payment_intent"),
        metadata=dict(session.get("metadata") or {}),
        via_webhook=True,
        now=now,
    )
    return "processed"


def _async_payment_failed(engine: ReconciliationEngine, session, now):
    payment = engine.mark_failed(session_id=session["id"])
    return "processed" if payment is not None else "not_found"


def _session_expired(engine: ReconciliationEngine, session, now):
    payment = engine.mark_canceled(session["id"])
    return "processed" if payment is not None else "not_found"


def _intent_succeeded(engine: ReconciliationEngine, intent, now):
    engine.reconcile(payment_intent=intent["id"], via_webhook=True, now=now)
    return "processed"


def _intent_failed(engine: ReconciliationEngine, intent, now):
    payment = engine.mark_failed(payment_intent=intent["id"])
    return "processed" if payment is not None else "not_found"


EVENT_HANDLERS = {
    "checkout.session.completed": _session_completed,
    "checkout.session.async_payment_succeeded": _async_payment_succeeded,
    "checkout.session.async_payment_failed": _async_payment_failed,
    "checkout.session.expired": _session_expired,
    "payment_intent.succeeded": _intent_succeeded,
    "payment_intent.payment_failed": _intent_failed,
}


def handle_event(
    engine: ReconciliationEngine,
    payload: bytes,
    signature: str | None,
    provider=stripe_service,
    now: datetime | None = None,
) -> WebhookResult:
    """Verify a raw Stripe webhook delivery and apply it.

    Signature problems raise before anything is read or written. Unknown
    payments and unhandled event types are acknowledged so Stripe stops
    retrying; any other error propagates and the delivery is retried.
    """
    event = provider.construct_event(payload, signature)
    event_type = event["type"]
    obj = event["data"]["object"]

    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info("Unhandled event type %s", event_type)
        return WebhookResult(event_type=event_type, result="ignored")

    try:
        result = handler(engine, obj, now)
    except PaymentNotFound:
        result = "not_found"
    if result == "not_found":
        logger.warning("Webhook %s (%s) matched no payment", event_type, obj.get("id"))
    else:
        logger.info("Webhook %s (%s) %s", event_type, obj.get("id"), result)
    return WebhookResult(event_type=event_type, result=result)
