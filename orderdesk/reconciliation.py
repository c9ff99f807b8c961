"""Payment-to-order reconciliation.

Stripe confirms a payment twice, in no particular order and possibly more
than once: when the browser comes back from the hosted checkout page
(``confirm_redirect``) and through webhooks (see ``orderdesk.webhooks``).
Both paths end in ``ReconciliationEngine.reconcile``, which marks the Payment
``succeeded`` and creates its Order at most once.

Two store-level rules carry the correctness:

* status writes other than the success transition are conditional and never
  match a ``succeeded`` payment;
* ``orders.payment_id`` is unique, so of two racing inserts for the same
  payment only one lands. The loser reads back the winner's order.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from orderdesk import stripe_service
from orderdesk.checkout import is_placeholder_intent
from orderdesk.errors import InternalStoreError, InvalidRequest, PaymentNotFound
from orderdesk.models import PAYMENT_CANCELED, PAYMENT_FAILED, PAYMENT_SUCCEEDED
from orderdesk.numbering import OrderNumberService
from orderdesk.stores import DuplicateRecordError, RecordStore

logger = logging.getLogger(__name__)

ADDRESS_FIELDS = ("street", "city", "state", "zip_code", "country")
PAID_SESSION_STATUSES = ("paid", "no_payment_required")
MAX_ORDER_NUMBER_ATTEMPTS = 5


@dataclass
class Reconciliation:
    payment: dict
    order: dict | None
    created: bool = False


def parse_billing_address(raw) -> dict | None:
    """Billing address from checkout metadata (JSON text or a mapping)."""
    if not raw:
        return None
    value = json.loads(raw) if isinstance(raw, str) else raw
    if not isinstance(value, dict):
        raise ValueError(f"billing address is a {type(value).__name__}, not an object")
    if "zipCode" in value and "zip_code" not in value:
        value = dict(value, zip_code=value["zipCode"])
    address = {key: value[key] for key in ADDRESS_FIELDS if value.get(key)}
    return address or None


class ReconciliationEngine:
    def __init__(
        self,
        payments: RecordStore,
        orders: RecordStore,
        numbering: OrderNumberService,
        provider=stripe_service,
        service_days: int = 30,
    ):
        self._payments = payments
        self._orders = orders
        self._numbering = numbering
        self._provider = provider
        self._service_days = service_days

    # --- lookups ---

    def _find_payment(self, session_id=None, payment_intent=None) -> dict | None:
        if session_id:
            return self._payments.find_one({"session_id": session_id})
        if payment_intent:
            return self._payments.find_one({"payment_intent_id": payment_intent})
        return None

    def payment_status(self, session_id: str) -> dict:
        payment = self._find_payment(session_id=session_id)
        if payment is None:
            raise PaymentNotFound(f"No payment for session {session_id}")
        return payment

    def find_order(self, payment_id: str) -> dict | None:
        return self._orders.find_one({"payment_id": payment_id})

    # --- channel A ---

    def confirm_redirect(self, session_id: str | None, now: datetime | None = None) -> Reconciliation:
        """Handle the browser returning from the hosted checkout page."""
        if not session_id or not session_id.strip():
            raise InvalidRequest("Session ID is required")

        # provider errors surface before anything is written
        session = self._provider.retrieve_session(session_id)

        if session.get("payment_status") not in PAID_SESSION_STATUSES:
            payment = self.payment_status(session_id)
            logger.info(
                "Session %s returned with payment_status=%s, leaving payment %s as %s",
                session_id, session.get("payment_status"), payment["id"], payment["status"],
            )
            return Reconciliation(payment=payment, order=self.find_order(payment["id"]))

        return self.reconcile(
            session_id=session_id,
            payment_intent=session.get("payment_intent"),
            metadata=session.get("metadata"),
            now=now,
            channel="redirect",
        )

    # --- core ---

    def reconcile(
        self,
        session_id: str | None = None,
        payment_intent: str | None = None,
        metadata: dict | None = None,
        via_webhook: bool = False,
        now: datetime | None = None,
        channel: str = "webhook",
    ) -> Reconciliation:
        now = now or datetime.now()

        payment = self._find_payment(session_id, payment_intent)
        if payment is None:
            raise PaymentNotFound(
                f"No payment for session={session_id} payment_intent={payment_intent}"
            )

        if payment["status"] == PAYMENT_SUCCEEDED:
            order = self.find_order(payment["id"])
            if order is not None:
                logger.info(
                    "Payment %s already reconciled as order %s (%s)",
                    payment["id"], order["order_number"], channel,
                )
                return Reconciliation(payment=payment, order=order)
            logger.warning("Payment %s succeeded without an order, creating it now", payment["id"])
        else:
            payment = self._mark_succeeded(payment, payment_intent, via_webhook, now)

        order, created = self._find_or_create_order(payment, metadata, now, channel)
        return Reconciliation(payment=payment, order=order, created=created)

    def _mark_succeeded(self, payment: dict, payment_intent, via_webhook: bool, now: datetime) -> dict:
        patch = {
            "status": PAYMENT_SUCCEEDED,
            "paid_at": now,
            "charge_id": payment_intent or payment["charge_id"],
        }
        if via_webhook:
            patch["webhook_processed"] = True
        if payment_intent and is_placeholder_intent(payment["payment_intent_id"]):
            patch["payment_intent_id"] = payment_intent

        updated = self._payments.update_one(payment["id"], patch, unless={"status": PAYMENT_SUCCEEDED})
        if updated is None:
            # a concurrent reconcile got there first
            logger.info("Payment %s was marked succeeded concurrently", payment["id"])
            return self._payments.find_one({"id": payment["id"]})

        logger.info(
            "Payment %s %s -> %s (session %s)",
            payment["id"], payment["status"], PAYMENT_SUCCEEDED, payment["session_id"],
        )
        return updated

    def _billing_address(self, payment: dict, metadata: dict | None) -> dict | None:
        raw = (metadata or {}).get("billing_address")
        if raw:
            try:
                return parse_billing_address(raw)
            except (TypeError, ValueError) as exc:
                logger.error("Error parsing billing address for payment %s: %s", payment["id"], exc)
                return None
        stored = (payment.get("checkout_metadata") or {}).get("billing_address")
        try:
            return parse_billing_address(stored)
        except (TypeError, ValueError):
            return None

    def _find_or_create_order(self, payment: dict, metadata: dict | None, now: datetime, channel: str):
        existing = self.find_order(payment["id"])
        if existing is not None:
            return existing, False

        checkout_metadata = payment.get("checkout_metadata") or {}
        record = {
            "customer_email": payment["customer_email"],
            "customer_name": payment["customer_name"],
            "customer_phone": checkout_metadata.get("customer_phone") or None,
            "package_name": payment["package_name"],
            "package_price": payment["package_price"],
            "currency": payment["currency"],
            "billing_address": self._billing_address(payment, metadata),
            "payment_id": payment["id"],
            "status": "paid",
            "service_start_date": now,
            "service_end_date": now + timedelta(days=self._service_days),
            "notes": f"Payment completed via Stripe {channel}. Session ID: {payment['session_id']}",
            "admin_notes": [],
            "is_subscription": False,
            "created_at": now,
        }

        # A losing concurrent insert has already consumed its counter value, leaving a gap.
        for attempt in range(1, MAX_ORDER_NUMBER_ATTEMPTS + 1):
            record["order_number"] = self._numbering.next_order_number(now)
            try:
                order = self._orders.insert(record)
            except DuplicateRecordError:
                winner = self.find_order(payment["id"])
                if winner is not None:
                    logger.info(
                        "Order for payment %s was created concurrently as %s",
                        payment["id"], winner["order_number"],
                    )
                    return winner, False
                logger.warning(
                    "Order number %s already taken (attempt %d/%d)",
                    record["order_number"], attempt, MAX_ORDER_NUMBER_ATTEMPTS,
                )
                continue

            logger.info(
                "Order %s created for payment %s via %s",
                order["order_number"], payment["id"], channel,
            )
            return order, True

        raise InternalStoreError(f"Could not allocate a unique order number for payment {payment['id']}")

    # --- failure paths ---

    def mark_failed(self, payment_intent: str | None = None, session_id: str | None = None) -> dict | None:
        payment = self._find_payment(session_id, payment_intent)
        if payment is None:
            return None
        return self._set_terminal(payment, {"status": PAYMENT_FAILED, "webhook_processed": True})

    def mark_canceled(self, session_id: str) -> dict | None:
        payment = self._find_payment(session_id=session_id)
        if payment is None:
            return None
        return self._set_terminal(payment, {"status": PAYMENT_CANCELED})

    def _set_terminal(self, payment: dict, patch: dict) -> dict:
        if payment["status"] == PAYMENT_SUCCEEDED:
            logger.warning(
                "Ignoring %s for payment %s, it already succeeded", patch["status"], payment["id"]
            )
            return payment

        updated = self._payments.update_one(payment["id"], patch, unless={"status": PAYMENT_SUCCEEDED})
        if updated is None:
            logger.warning(
                "Payment %s succeeded before it could be marked %s", payment["id"], patch["status"]
            )
            return self._payments.find_one({"id": payment["id"]})

        logger.info("Payment %s %s -> %s", payment["id"], payment["status"], patch["status"])
        return updated
