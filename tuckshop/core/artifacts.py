"""
Verification Artifact Issuer
----------------------------
Builds the scannable pickup payload for an order and persists it as a
VerificationArtifact row.

Token format: base64url(json payload) + "." + hex(HMAC-SHA256(secret, base64 part)).
A counter scanner can check authenticity and amount from the token alone; the
database check in `verify` additionally enforces that only the most recently issued,
non-expired artifact is honored.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from io import BytesIO
from typing import Any, Dict, Optional

import qrcode
from sqlalchemy import select, update
from sqlalchemy.orm import selectinload

from tuckshop.core.errors import OrderNotFound, OrderStateError
from tuckshop.observability.logging import log
from tuckshop.settings import settings
from tuckshop.store.orm import (
    ArtifactStatus,
    Order,
    OrderStatus,
    PaymentType,
    VerificationArtifact,
    new_artifact_id,
)
from tuckshop.utils.time import parse_iso, to_iso, utc_now


@dataclass
class ArtifactView:
    id: str
    order_id: int
    payment_type: str
    status: str
    payload: str
    expires_at: Optional[datetime] = None
    payment_reference: Optional[str] = None

    @property
    def pointer_url(self) -> str:
        return f"{settings.PUBLIC_BASE_URL}/api/artifacts/{self.id}"

    @property
    def qr_url(self) -> str:
        return f"{self.pointer_url}/qr.png"

    def is_expired(self, now: datetime = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utc_now()) > self.expires_at


@dataclass
class VerificationResult:
    valid: bool
    reason: str
    payload: Optional[Dict[str, Any]] = None
    order_id: Optional[int] = None
    order_status: Optional[str] = None


def artifact_view(a: VerificationArtifact) -> ArtifactView:
    return ArtifactView(
        id=a.id,
        order_id=a.order_id,
        payment_type=a.payment_type.value,
        status=a.status.value,
        payload=a.payload or "",
        expires_at=a.expires_at,
        payment_reference=a.payment_reference,
    )


def _money(v) -> str:
    return str(Decimal(v).quantize(Decimal("0.01")))


def build_payload(order: Order, artifact_id: str, issued_at: datetime,
                  expires_at: Optional[datetime] = None) -> Dict[str, Any]:
    """Order identity + amount + line snapshot. Reads only snapshotted order data."""
    items = [
        {
            "name": i.product_name,
            "quantity": int(i.quantity),
            "price": _money(i.unit_price),
            "subtotal": _money(i.subtotal),
        }
        for i in order.items
    ]
    payload = {
        "artifactId": artifact_id,
        "orderId": order.id,
        "orderNumber": order.order_number,
        "paymentType": order.payment_type.value,
        "paymentStatus": "PAID" if order.status == OrderStatus.PAID else "PENDING",
        "customer": {"name": order.user.name, "email": order.user.email} if order.user else None,
        "orderSummary": {
            "items": items,
            "totalItems": sum(i["quantity"] for i in items),
            "totalAmount": _money(order.total_amount),
        },
        "issuedAt": to_iso(issued_at),
    }
    if expires_at is not None:
        payload["expiresAt"] = to_iso(expires_at)
    if order.paid_at is not None:
        payload["paidAt"] = to_iso(order.paid_at)
    return payload


def render_qr_png(token: str) -> bytes:
    """The signed token as a scannable PNG, the form the pickup counter reads."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=2,
    )
    qr.add_data(token)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class ArtifactIssuer:
    def __init__(self, session_factory, secret: str = None, cash_ttl_sec: int = None):
        self.session_factory = session_factory
        self.secret = (secret or settings.ARTIFACT_SIGNING_SECRET).encode("utf-8")
        self.cash_ttl_sec = int(cash_ttl_sec or settings.CASH_ARTIFACT_TTL_SEC)

    # ------------------------------------------------------------------
    # Token codec
    # ------------------------------------------------------------------
    def _sign(self, body: str) -> str:
        return hmac.new(self.secret, body.encode("ascii"), hashlib.sha256).hexdigest()

    def encode(self, payload: Dict[str, Any]) -> str:
        raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
        body = base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
        return f"{body}.{self._sign(body)}"

    def decode(self, token: str) -> Optional[Dict[str, Any]]:
        """Return the payload if the signature checks out, else None."""
        if not token or "." not in token:
            return None
        body, _, sig = token.strip().rpartition(".")
        if not hmac.compare_digest(self._sign(body), sig):
            return None
        try:
            padded = body + "=" * (-len(body) % 4)
            return json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        except (ValueError, TypeError):
            return None

    # ------------------------------------------------------------------
    # Issuance (callers own the transaction for the *_in variants)
    # ------------------------------------------------------------------
    @staticmethod
    def supersede_active(db, order_id: int) -> None:
        db.execute(
            update(VerificationArtifact)
            .where(
                VerificationArtifact.order_id == order_id,
                VerificationArtifact.status.in_([ArtifactStatus.ACTIVE, ArtifactStatus.AWAITING_PAYMENT]),
            )
            .values(status=ArtifactStatus.SUPERSEDED)
        )

    def issue_in(self, db, order: Order, now: datetime = None) -> ArtifactView:
        now = now or utc_now()
        expires_at = None
        if order.payment_type == PaymentType.CASH:
            expires_at = now + timedelta(seconds=self.cash_ttl_sec)

        self.supersede_active(db, order.id)
        artifact_id = new_artifact_id()
        token = self.encode(build_payload(order, artifact_id, now, expires_at))
        a = VerificationArtifact(
            id=artifact_id,
            order_id=order.id,
            payment_type=order.payment_type,
            payload=token,
            expires_at=expires_at,
            status=ArtifactStatus.ACTIVE,
            created_at=now,
        )
        db.add(a)
        db.flush()
        log(event="artifact_issued", orderNumber=order.order_number, paymentType=order.payment_type.value,
            artifactId=artifact_id, expiresAt=to_iso(expires_at))
        return artifact_view(a)

    def placeholder_in(self, db, order: Order, reference: str) -> ArtifactView:
        """Prepaid record created at checkout; carries the payment reference, no payload."""
        self.supersede_active(db, order.id)
        a = VerificationArtifact(
            order_id=order.id,
            payment_type=order.payment_type,
            payload="",
            payment_reference=reference,
            status=ArtifactStatus.AWAITING_PAYMENT,
            created_at=utc_now(),
        )
        db.add(a)
        db.flush()
        return artifact_view(a)

    @staticmethod
    def _load_order(db, order_id: int) -> Optional[Order]:
        return db.scalar(
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.items), selectinload(Order.user))
        )

    def issue_cash(self, order_id: int, now: datetime = None) -> ArtifactView:
        """Short-lived pickup code for a pending cash order. Re-issuing supersedes the previous one."""
        with self.session_factory.begin() as db:
            order = self._load_order(db, order_id)
            if order is None:
                raise OrderNotFound(order_id)
            if order.payment_type != PaymentType.CASH or order.status != OrderStatus.PENDING:
                raise OrderStateError("Pickup codes can only be issued for pending cash orders")
            return self.issue_in(db, order, now=now)

    def issue_prepaid(self, order_id: int, now: datetime = None) -> ArtifactView:
        """Non-expiring pickup code; only valid once the order is PAID."""
        with self.session_factory.begin() as db:
            order = self._load_order(db, order_id)
            if order is None:
                raise OrderNotFound(order_id)
            if order.payment_type != PaymentType.PREPAID or order.status != OrderStatus.PAID:
                raise OrderStateError("Prepaid pickup codes require a paid order")
            return self.issue_in(db, order, now=now)

    def get(self, artifact_id: str) -> Optional[ArtifactView]:
        with self.session_factory() as db:
            a = db.get(VerificationArtifact, artifact_id)
            return artifact_view(a) if a else None

    def active_for_order(self, order_id: int) -> Optional[ArtifactView]:
        with self.session_factory() as db:
            a = db.scalar(
                select(VerificationArtifact)
                .where(VerificationArtifact.order_id == order_id,
                       VerificationArtifact.status == ArtifactStatus.ACTIVE)
                .order_by(VerificationArtifact.created_at.desc())
            )
            return artifact_view(a) if a else None

    # ------------------------------------------------------------------
    # Verification (pickup-counter scan)
    # ------------------------------------------------------------------
    def verify(self, token: str, now: datetime = None) -> VerificationResult:
        now = now or utc_now()
        payload = self.decode(token)
        if payload is None:
            return VerificationResult(False, "invalid_signature")

        # The payload's own expiry is checked first: a well-formed but stale code never passes.
        expires_at = parse_iso(payload.get("expiresAt"))
        if payload.get("paymentType") == PaymentType.CASH.value:
            if expires_at is None or now > expires_at:
                return VerificationResult(False, "expired", payload=payload, order_id=payload.get("orderId"))

        with self.session_factory() as db:
            order = db.get(Order, payload.get("orderId"))
            if order is None:
                return VerificationResult(False, "order_not_found", payload=payload)
            if order.order_number != payload.get("orderNumber"):
                return VerificationResult(False, "order_number_mismatch", payload=payload, order_id=order.id)

            artifact = db.get(VerificationArtifact, payload.get("artifactId") or "")
            base = {"payload": payload, "order_id": order.id, "order_status": order.status.value}
            if artifact is None or artifact.order_id != order.id or artifact.payload != token:
                return VerificationResult(False, "unknown_artifact", **base)
            if artifact.status == ArtifactStatus.AWAITING_PAYMENT:
                return VerificationResult(False, "awaiting_payment", **base)
            if artifact.status == ArtifactStatus.SUPERSEDED:
                return VerificationResult(False, "superseded", **base)
            if artifact.status == ArtifactStatus.USED:
                return VerificationResult(False, "already_used", **base)
            if artifact.expires_at is not None and now > artifact.expires_at:
                return VerificationResult(False, "expired", **base)
            if order.status in (OrderStatus.COMPLETED, OrderStatus.CANCELLED):
                return VerificationResult(False, f"order_{order.status.value.lower()}", **base)
            if order.payment_type == PaymentType.PREPAID and order.status != OrderStatus.PAID:
                return VerificationResult(False, "not_paid", **base)

            return VerificationResult(True, "ok", **base)
