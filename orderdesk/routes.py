from fastapi import APIRouter, Depends, Header, Request
from starlette.concurrency import run_in_threadpool

from orderdesk.auth import token_subject, verify_token
from orderdesk.reconciliation import Reconciliation
from orderdesk.schemas import (
    AdminNoteRequest,
    CancelResponse,
    CheckoutRequest,
    CheckoutResponse,
    OrderOut,
    OrderStatusUpdate,
    PaymentOut,
    PaymentStatusResponse,
    ReconciliationResponse,
    WebhookResponse,
)
from orderdesk.webhooks import handle_event

router = APIRouter(prefix="/checkout", tags=["checkout"])
admin_router = APIRouter(prefix="/orders", tags=["orders"])


def get_services(request: Request):
    return request.app.state.services


def _reconciliation_response(result: Reconciliation) -> ReconciliationResponse:
    return ReconciliationResponse(
        payment=PaymentOut.model_validate(result.payment),
        order=OrderOut.model_validate(result.order) if result.order else None,
    )


@router.post("", response_model=CheckoutResponse)
def start_checkout(request: CheckoutRequest, services=Depends(get_services)):
    session = services.checkout.start_checkout(request)
    return CheckoutResponse(session_id=session.session_id, url=session.url)


@router.get("/return", response_model=ReconciliationResponse)
def checkout_return(session_id: str | None = None, services=Depends(get_services)):
    return _reconciliation_response(services.engine.confirm_redirect(session_id))


@router.get("/cancel", response_model=CancelResponse)
def checkout_cancel(session_id: str | None = None, services=Depends(get_services)):
    payment = services.engine.mark_canceled(session_id) if session_id else None
    return CancelResponse(session_id=session_id, status=payment["status"] if payment else None)


@router.post("/webhook", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None),
    services=Depends(get_services),
):
    # signature is checked against the exact bytes Stripe sent
    payload = await request.body()
    result = await run_in_threadpool(handle_event, services.engine, payload, stripe_signature)
    return WebhookResponse(event_type=result.event_type, result=result.result)


@router.get("/status/{session_id}", response_model=PaymentStatusResponse)
def checkout_status(session_id: str, services=Depends(get_services)):
    payment = services.engine.payment_status(session_id)
    return PaymentStatusResponse(payment=PaymentOut.model_validate(payment))


@admin_router.get("/{order_number}", response_model=OrderOut)
def get_order(order_number: str, claims=Depends(verify_token), services=Depends(get_services)):
    return OrderOut.model_validate(services.orders.get_order(order_number))


@admin_router.patch("/{order_number}/status", response_model=OrderOut)
def update_order_status(
    order_number: str,
    update: OrderStatusUpdate,
    claims=Depends(verify_token),
    services=Depends(get_services),
):
    return OrderOut.model_validate(services.orders.update_status(order_number, update.status))


@admin_router.post("/{order_number}/notes", response_model=OrderOut)
def add_order_note(
    order_number: str,
    body: AdminNoteRequest,
    claims=Depends(verify_token),
    services=Depends(get_services),
):
    order = services.orders.add_note(order_number, body.note, added_by=token_subject(claims))
    return OrderOut.model_validate(order)
