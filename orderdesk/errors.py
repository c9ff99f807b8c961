class CheckoutError(Exception):
    """Base class for errors surfaced to API clients.

    ``public_message`` is what a client may see; ``str(exc)`` may carry
    internal detail and is only logged.
    """

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str | None = None, *, public_message: str | None = None):
        super().__init__(message or self.public_message)
        if public_message is not None:
            self.public_message = public_message


class InvalidRequest(CheckoutError):
    status_code = 400
    public_message = "Invalid request"

    def __init__(self, message: str | None = None, errors: list[str] | None = None):
        self.errors = errors or []
        text = message or "; ".join(self.errors) or None
        # client input problems are safe to echo back
        super().__init__(text, public_message=text)


class SignatureInvalid(CheckoutError):
    status_code = 400
    public_message = "Invalid signature"


class PaymentNotFound(CheckoutError):
    status_code = 404
    public_message = "Payment record not found"


class OrderNotFound(CheckoutError):
    status_code = 404
    public_message = "Order not found"


class PaymentProviderError(CheckoutError):
    status_code = 502
    public_message = "Payment provider error"

    def __init__(self, message: str | None = None, *, transient: bool = False, code: str | None = None):
        super().__init__(message)
        self.transient = transient
        self.code = code
        if transient:
            self.status_code = 503
            self.public_message = "Payment provider unavailable, please retry"


class InternalStoreError(CheckoutError):
    status_code = 500
