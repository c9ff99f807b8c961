import json
import logging
import re
import secrets
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from orderdesk import stripe_service
from orderdesk.errors import InvalidRequest
from orderdesk.models import PAYMENT_PENDING, PLACEHOLDER_INTENT_PREFIX
from orderdesk.schemas import CheckoutRequest
from orderdesk.stores import RecordStore

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")


@dataclass
class CheckoutSession:
    session_id: str
    url: str
    payment_id: str


def to_minor_units(price: Decimal) -> int:
    return int((Decimal(price) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def placeholder_intent_id() -> str:
    return f"{PLACEHOLDER_INTENT_PREFIX}{time.time_ns() // 1_000_000}_{secrets.token_hex(5)}"


def is_placeholder_intent(payment_intent_id: str | None) -> bool:
    return not payment_intent_id or payment_intent_id.startswith(PLACEHOLDER_INTENT_PREFIX)


def validate_checkout_request(request: CheckoutRequest) -> None:
    errors = []
    if not (request.package_name or "").strip():
        errors.append("packageName is required")
    if request.package_price is None:
        errors.append("packagePrice is required")
    elif not request.package_price.is_finite() or request.package_price <= 0:
        errors.append("packagePrice must be a positive amount")
    if not (request.customer_email or "").strip():
        errors.append("customerEmail is required")
    elif not EMAIL_RE.match(request.customer_email.strip()):
        errors.append("customerEmail is not a valid email address")
    if not (request.customer_name or "").strip():
        errors.append("customerName is required")
    if errors:
        raise InvalidRequest(errors=errors)


class CheckoutInitiator:
    """Opens a hosted Stripe Checkout and records the pending Payment."""

    def __init__(self, payments: RecordStore, settings, provider=stripe_service):
        self._payments = payments
        self._settings = settings
        self._provider = provider

    def start_checkout(self, request: CheckoutRequest) -> CheckoutSession:
        validate_checkout_request(request)

        package_name = request.package_name.strip()
        customer_email = request.customer_email.strip()
        customer_name = request.customer_name.strip()
        price = request.package_price.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        amount = to_minor_units(price)
        billing_address = (
            request.billing_address.model_dump(exclude_none=True) if request.billing_address else {}
        )

        frontend_url = self._settings.frontend_url
        session = self._provider.create_checkout_session(
            package_name=package_name,
            amount=amount,
            currency=self._settings.currency,
            customer_email=customer_email,
            success_url=f"{frontend_url}/payment/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{frontend_url}/payment/cancel?session_id={{CHECKOUT_SESSION_ID}}",
            metadata={
                "package_name": package_name,
                "package_price": str(price),
                "customer_name": customer_name,
                "customer_phone": request.customer_phone or "",
                "billing_address": json.dumps(billing_address) if billing_address else "",
            },
        )

        # only persisted once Stripe has accepted the session
        payment = self._payments.insert({
            "session_id": session["id"],
            "payment_intent_id": session.get("payment_intent") or placeholder_intent_id(),
            "customer_email": customer_email,
            "customer_name": customer_name,
            "package_name": package_name,
            "package_price": price,
            "currency": self._settings.currency,
            "amount": amount,
            "status": PAYMENT_PENDING,
            "checkout_metadata": {
                "package_name": package_name,
                "package_price": str(price),
                "customer_phone": request.customer_phone or "",
                "billing_address": billing_address,
            },
        })
        logger.info(
            "Checkout session %s opened for %s (%s, %d %s)",
            session["id"], customer_email, package_name, amount, self._settings.currency,
        )
        return CheckoutSession(session_id=session["id"], url=session["url"], payment_id=payment["id"])
