import json

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse, Response

from tuckshop.api.auth import require_user
from tuckshop.api.normalize import extract_inbound_messages
from tuckshop.api.schemas import (
    ArtifactResponse,
    CheckoutRequest,
    CheckoutResponse,
    OrderResponse,
    PaymentConfirmRequest,
    PaymentConfirmResponse,
    WebhookAck,
)
from tuckshop.core.artifacts import ArtifactView, render_qr_png
from tuckshop.observability.logging import log
from tuckshop.queue.jobs import process_inbound_message_job
from tuckshop.queue.rq_conn import get_queue
from tuckshop.services import Services
from tuckshop.settings import settings
from tuckshop.store.shop_repo import OrderView
from tuckshop.transport.whatsapp_client import verify_signature
from tuckshop.utils.time import to_iso, utc_now

router = APIRouter()

PAID_STATUSES = ("paid", "ok", "success", "completed", "awaiting delivery", "delivered")


def get_services(request: Request) -> Services:
    return request.app.state.services


def artifact_response(a: ArtifactView) -> ArtifactResponse:
    return ArtifactResponse(
        id=a.id,
        orderId=a.order_id,
        paymentType=a.payment_type,
        status=a.status,
        token=a.payload,
        pointerUrl=a.pointer_url,
        qrUrl=a.qr_url,
        expiresAt=to_iso(a.expires_at),
        expired=a.is_expired(utc_now()),
    )


def order_response(o: OrderView) -> OrderResponse:
    return OrderResponse(
        id=o.id,
        orderNumber=o.order_number,
        status=o.status,
        paymentType=o.payment_type,
        total=str(o.total_amount),
        itemCount=o.item_count,
        createdAt=to_iso(o.created_at),
        paidAt=to_iso(o.paid_at),
    )


# ---------------------------------------------------------------------------
# WhatsApp webhook
# ---------------------------------------------------------------------------
@router.get("/webhook")
def webhook_verify(
    mode: str = Query(default="", alias="hub.mode"),
    token: str = Query(default="", alias="hub.verify_token"),
    challenge: str = Query(default="", alias="hub.challenge"),
):
    """Meta subscription handshake: echo the challenge when the verify token matches."""
    if mode == "subscribe" and settings.WHATSAPP_VERIFY_TOKEN and token == settings.WHATSAPP_VERIFY_TOKEN:
        log(event="webhook_verified")
        return PlainTextResponse(challenge)
    log(event="webhook_verify_rejected", mode=mode)
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/webhook", response_model=WebhookAck)
async def webhook_receive(
    request: Request,
    background_tasks: BackgroundTasks,
    x_hub_signature_256: str = Header(default="", alias="x-hub-signature-256"),
    services: Services = Depends(get_services),
):
    """
    Acknowledge immediately; the conversation turn runs after the response is sent
    (background task on the thread pool, or an RQ job with INTAKE_MODE=rq).
    """
    body = await request.body()
    if not verify_signature(settings.WHATSAPP_APP_SECRET, body, x_hub_signature_256):
        log(event="webhook_signature_invalid")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        payload = {}

    inbound = extract_inbound_messages(payload)
    for m in inbound:
        if settings.INTAKE_MODE == "rq":
            get_queue().enqueue(process_inbound_message_job, m.sender, m.text, m.message_id, m.display_name)
        else:
            background_tasks.add_task(
                services.orchestrator.process_and_reply, m.sender, m.text, m.message_id, m.display_name
            )

    log(event="webhook_received", messages=len(inbound), intakeMode=settings.INTAKE_MODE)
    return WebhookAck(received=len(inbound))


# ---------------------------------------------------------------------------
# Customer order API
# ---------------------------------------------------------------------------
@router.post("/api/orders/checkout", response_model=CheckoutResponse)
def api_checkout(body: CheckoutRequest, user_id: int = Depends(require_user),
                 services: Services = Depends(get_services)):
    result = services.checkout.checkout(user_id, body.paymentType)
    return CheckoutResponse(
        orderId=result.order_id,
        orderNumber=result.order_number,
        total=str(result.total),
        paymentType=result.payment_type,
        paymentUrl=result.payment_url,
        paymentReference=result.payment_reference,
        artifact=artifact_response(result.artifact) if result.artifact else None,
        warning=str(result.warning) if result.warning else None,
    )


@router.post("/api/orders/{order_id}/cancel", response_model=OrderResponse)
def api_cancel_order(order_id: int, user_id: int = Depends(require_user),
                     services: Services = Depends(get_services)):
    return order_response(services.checkout.cancel_order(user_id, order_id))


@router.post("/api/orders/{order_id}/pickup-code", response_model=ArtifactResponse)
def api_reissue_pickup_code(order_id: int, user_id: int = Depends(require_user),
                            services: Services = Depends(get_services)):
    return artifact_response(services.checkout.reissue_cash_artifact(user_id, order_id))


@router.get("/api/artifacts/{artifact_id}", response_model=ArtifactResponse)
def api_get_artifact(artifact_id: str, services: Services = Depends(get_services)):
    """JSON view of a pickup code, token included."""
    a = services.issuer.get(artifact_id)
    if a is None:
        raise HTTPException(status_code=404, detail="Pickup code not found")
    return artifact_response(a)


@router.get("/api/artifacts/{artifact_id}/qr.png")
def api_get_artifact_qr(artifact_id: str, services: Services = Depends(get_services)):
    """Pickup code as a QR image. Prepaid placeholders have no code until payment clears."""
    a = services.issuer.get(artifact_id)
    if a is None or not a.payload:
        raise HTTPException(status_code=404, detail="Pickup code not found")
    return Response(content=render_qr_png(a.payload), media_type="image/png",
                    headers={"Cache-Control": "no-store"})


# ---------------------------------------------------------------------------
# Payment provider callbacks
# ---------------------------------------------------------------------------
def require_payment_key(x_payment_key: str = Header(default="", alias="x-payment-key")):
    # Secure default: no key configured rejects every confirmation.
    if not settings.PAYMENT_WEBHOOK_KEY:
        raise HTTPException(status_code=403, detail="Payment confirmation disabled (no key configured)")
    if x_payment_key != settings.PAYMENT_WEBHOOK_KEY:
        raise HTTPException(status_code=401, detail="Invalid payment key")


@router.post("/api/payments/confirm", response_model=PaymentConfirmResponse,
             dependencies=[Depends(require_payment_key)])
def api_confirm_payment(body: PaymentConfirmRequest, services: Services = Depends(get_services)):
    if body.status is not None and body.status.strip().lower() not in PAID_STATUSES:
        log(event="payment_status_ignored", reference=body.reference, status=body.status)
        return PaymentConfirmResponse(status="ignored")

    c = services.checkout.confirm_payment(body.reference)
    return PaymentConfirmResponse(status="confirmed", orderNumber=c.order_number, artifactId=c.artifact.id,
                                  alreadyPaid=c.already_paid)


@router.get("/api/payments/test", response_model=PaymentConfirmResponse)
def api_test_payment(ref: str = Query(min_length=1), services: Services = Depends(get_services)):
    """Development stand-in for the hosted payment page. Only exists with PAYMENT_TEST_MODE and no real provider."""
    if not settings.PAYMENT_TEST_MODE or settings.PAYMENT_PROVIDER_URL:
        raise HTTPException(status_code=404, detail="Not found")
    c = services.checkout.confirm_payment(ref)
    return PaymentConfirmResponse(status="confirmed", orderNumber=c.order_number, artifactId=c.artifact.id,
                                  alreadyPaid=c.already_paid)
