from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, Field

PaymentTypeName = Literal["CASH", "PREPAID"]


class InboundMessage(BaseModel):
    sender: str
    text: str
    message_id: str = ""
    display_name: Optional[str] = None


class WebhookAck(BaseModel):
    status: Literal["ok"] = "ok"
    received: int = 0


class CheckoutRequest(BaseModel):
    paymentType: PaymentTypeName = "CASH"


class ArtifactResponse(BaseModel):
    id: str
    orderId: int
    paymentType: str
    status: str
    token: str = ""
    pointerUrl: str
    qrUrl: str
    expiresAt: Optional[str] = None
    expired: bool = False


class CheckoutResponse(BaseModel):
    orderId: int
    orderNumber: str
    total: str
    paymentType: str
    paymentUrl: Optional[str] = None
    paymentReference: Optional[str] = None
    artifact: Optional[ArtifactResponse] = None
    warning: Optional[str] = None


class OrderResponse(BaseModel):
    id: int
    orderNumber: str
    status: str
    paymentType: str
    total: str
    itemCount: int
    createdAt: Optional[str] = None
    paidAt: Optional[str] = None


class PaymentConfirmRequest(BaseModel):
    reference: str = Field(min_length=1)
    status: Optional[str] = None


class PaymentConfirmResponse(BaseModel):
    status: Literal["confirmed", "ignored"]
    orderNumber: Optional[str] = None
    artifactId: Optional[str] = None
    alreadyPaid: bool = False


class ScanRequest(BaseModel):
    token: str = Field(min_length=1)
    complete: bool = True


class ScanResponse(BaseModel):
    valid: bool
    reason: str
    orderId: Optional[int] = None
    orderStatus: Optional[str] = None
    completed: bool = False
    payload: Optional[Dict[str, Any]] = None
