from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    # the site's frontend posts camelCase; snake_case is accepted as well
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BillingAddress(CamelModel):
    street: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str | None = None


class CheckoutRequest(CamelModel):
    package_name: str | None = None
    package_price: Decimal | None = None
    customer_email: str | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    billing_address: BillingAddress | None = None


class CheckoutResponse(BaseModel):
    session_id: str
    url: str


class PaymentOut(BaseModel):
    id: str
    session_id: str
    status: str
    package_name: str
    package_price: Decimal
    amount: int
    currency: str | None = None
    customer_email: str
    customer_name: str
    paid_at: datetime | None = None
    created_at: datetime | None = None


class OrderOut(BaseModel):
    id: str
    order_number: str
    status: str
    package_name: str
    package_price: Decimal
    currency: str | None = None
    customer_email: str
    customer_name: str
    customer_phone: str | None = None
    billing_address: dict[str, Any] | None = None
    payment_id: str
    service_start_date: datetime | None = None
    service_end_date: datetime | None = None
    notes: str | None = None
    admin_notes: list[dict[str, Any]] | None = None
    is_subscription: bool = False
    subscription_id: str | None = None
    next_billing_date: datetime | None = None
    created_at: datetime | None = None


class ReconciliationResponse(BaseModel):
    payment: PaymentOut
    order: OrderOut | None = None


class PaymentStatusResponse(BaseModel):
    payment: PaymentOut


class CancelResponse(BaseModel):
    session_id: str | None = None
    status: str | None = None


class WebhookResponse(BaseModel):
    received: bool = True
    event_type: str
    result: str


class OrderStatusUpdate(BaseModel):
    status: str


class AdminNoteRequest(BaseModel):
    note: str
