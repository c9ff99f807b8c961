import logging

import stripe

from orderdesk.errors import CheckoutError, InvalidRequest, PaymentProviderError, SignatureInvalid

logger = logging.getLogger(__name__)

_webhook_secret = None


def configure(settings):
    global _webhook_secret
    stripe.api_key = settings.stripe_secret_key
    stripe.default_http_client = stripe.RequestsClient(timeout=settings.stripe_timeout)
    stripe.max_network_retries = 2
    _webhook_secret = settings.stripe_webhook_secret


def _provider_error(action: str, exc: Exception) -> PaymentProviderError:
    transient = isinstance(exc, (stripe.APIConnectionError, stripe.RateLimitError))
    code = getattr(exc, "code", None)
    logger.error("Stripe %s failed: %s (code: %s)", action, exc, code)
    return PaymentProviderError(f"Stripe {action} failed: {exc}", transient=transient, code=code)


def create_checkout_session(
    *,
    package_name: str,
    amount: int,
    currency: str,
    customer_email: str,
    success_url: str,
    cancel_url: str,
    metadata: dict,
):
    try:
        session = stripe.checkout.Session.create(
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {
                            "name": package_name,
                            "description": f"Digital Marketing Package - {package_name}",
                        },
                        "unit_amount": amount,
                    },
                    "quantity": 1,
                }
            ],
            mode="payment",
            success_url=success_url,
            cancel_url=cancel_url,
            customer_email=customer_email,
            metadata=metadata,
            customer_creation="always",
            billing_address_collection="required",
        )
    except stripe.StripeError as exc:
        raise _provider_error("checkout session creation", exc) from exc

    return {
        "id": session.id,
        "url": session.url,
        "payment_intent": session.payment_intent,
    }


def retrieve_session(session_id: str):
    try:
        session = stripe.checkout.Session.retrieve(session_id)
    except stripe.StripeError as exc:
        raise _provider_error("session retrieval", exc) from exc

    return {
        "id": session.id,
        "payment_intent": session.payment_intent,
        "payment_status": session.payment_status,
        "metadata": session.metadata.to_dict() if session.metadata else {},
    }


def construct_event(payload: bytes, signature: str | None):
    """Verify ``payload`` against the Stripe-Signature header and return the event as plain dicts."""
    if not _webhook_secret:
        raise CheckoutError("STRIPE_WEBHOOK_SECRET is not set")
    if not signature:
        raise SignatureInvalid("Missing Stripe-Signature header")
    try:
        event = stripe.Webhook.construct_event(payload, signature, _webhook_secret)
    except ValueError as exc:
        raise InvalidRequest("Invalid payload") from exc
    except stripe.SignatureVerificationError as exc:
        logger.warning("Webhook signature verification failed: %s", exc)
        raise SignatureInvalid(str(exc)) from exc
    return event.to_dict()
