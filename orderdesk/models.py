from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, Numeric, String

from orderdesk.database import Base

PAYMENT_PENDING = "pending"
PAYMENT_PROCESSING = "processing"
PAYMENT_SUCCEEDED = "succeeded"
PAYMENT_FAILED = "failed"
PAYMENT_CANCELED = "canceled"
PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PROCESSING, PAYMENT_SUCCEEDED, PAYMENT_FAILED, PAYMENT_CANCELED)

ORDER_STATUSES = ("pending", "paid", "processing", "completed", "cancelled", "refunded")

# Stored in place of the payment-intent id until Stripe assigns one
PLACEHOLDER_INTENT_PREFIX = "pending_"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String, primary_key=True)
    session_id = Column(String, unique=True, index=True, nullable=False)         # Stripe Checkout Session ID
    payment_intent_id = Column(String, unique=True, index=True, nullable=True)  # real pi_... or placeholder
    customer_email = Column(String, index=True, nullable=False)
    customer_name = Column(String, nullable=False)
    package_name = Column(String, nullable=False)
    package_price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String, default="usd")
    amount = Column(Integer, nullable=False)                                     # minor units
    status = Column(String, index=True, default=PAYMENT_PENDING)
    charge_id = Column(String, nullable=True)
    checkout_metadata = Column(JSON, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    webhook_processed = Column(Boolean, default=False)
    created_at = Column(DateTime, index=True)
    updated_at = Column(DateTime)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True)
    order_number = Column(String, unique=True, index=True, nullable=False)       # SN-YYYYMMDD-NNNN
    customer_email = Column(String, index=True, nullable=False)
    customer_name = Column(String, nullable=False)
    customer_phone = Column(String, nullable=True)
    package_name = Column(String, nullable=False)
    package_price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String, default="usd")
    billing_address = Column(JSON, nullable=True)
    status = Column(String, index=True, default="pending")
    payment_id = Column(String, unique=True, index=True, nullable=False)         # at most one order per payment
    service_start_date = Column(DateTime, nullable=True)
    service_end_date = Column(DateTime, nullable=True)
    notes = Column(String, nullable=True)
    admin_notes = Column(JSON, nullable=True)
    is_subscription = Column(Boolean, default=False)
    subscription_id = Column(String, nullable=True)
    next_billing_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, index=True)
    updated_at = Column(DateTime)


class Counter(Base):
    __tablename__ = "counters"

    name = Column(String, primary_key=True)                                      # order-number:YYYYMMDD
    value = Column(Integer, nullable=False)
