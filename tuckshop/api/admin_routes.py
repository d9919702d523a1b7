from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException

from tuckshop.api.auth import require_admin
from tuckshop.api.routes import get_services, order_response
from tuckshop.api.schemas import OrderResponse, ScanRequest, ScanResponse
from tuckshop.observability.logging import log
from tuckshop.services import Services
from tuckshop.transport.whatsapp_client import normalize_phone

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/orders/scan", response_model=ScanResponse)
def scan_pickup_code(body: ScanRequest, _=Depends(require_admin), services: Services = Depends(get_services)):
    """Counter scan: verify a pickup token and, by default, hand the order over."""
    result = services.issuer.verify(body.token)
    completed = False
    order_status = result.order_status
    if result.valid and body.complete:
        order = services.checkout.complete_order(result.order_id)
        completed = True
        order_status = order.status

    log(event="pickup_scanned", valid=result.valid, reason=result.reason, orderId=result.order_id,
        completed=completed)
    return ScanResponse(
        valid=result.valid,
        reason=result.reason,
        orderId=result.order_id,
        orderStatus=order_status,
        completed=completed,
        payload=result.payload,
    )


@router.post("/orders/{order_id}/complete", response_model=OrderResponse)
def complete_order(order_id: int, _=Depends(require_admin), services: Services = Depends(get_services)):
    return order_response(services.checkout.complete_order(order_id))


@router.get("/session/{phone}")
def get_session_snapshot(phone: str, _=Depends(require_admin), services: Services = Depends(get_services)):
    """Compact conversation snapshot for support staff."""
    s = services.sessions.load(normalize_phone(phone))
    if s is None:
        raise HTTPException(status_code=404, detail="No active session")
    return {
        "phone": s.phone,
        "step": s.step.value,
        "authenticated": s.is_authenticated,
        "userId": s.user_id,
        "userName": s.user_name,
        "selection": asdict(s.selection),
        "createdAt": s.created_at,
        "lastActivityAt": s.last_activity_at,
    }


@router.get("/metrics")
def get_metrics(_=Depends(require_admin), services: Services = Depends(get_services)):
    """Pipeline counters backed by Redis."""
    return services.metrics.snapshot()
