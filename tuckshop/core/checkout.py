"""
Checkout / Fulfillment
----------------------
Turns a cart into an order in one database transaction:

  load cart -> check stock -> insert order + line snapshots
  -> conditional stock decrement -> empty cart -> commit

Everything after the commit (cache invalidation, pickup code, payment link) is
best-effort: a failure there is reported as a caveat on a successful order and is
never rolled back.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from tuckshop.core import messages
from tuckshop.core.artifacts import ArtifactIssuer, ArtifactView, artifact_view
from tuckshop.core.errors import (
    ArtifactIssuanceFailure,
    EmptyCart,
    InsufficientStock,
    OrderNotFound,
    OrderStateError,
    PartialSuccessError,
    PaymentLinkFailure,
    ShopError,
    TransactionFailure,
)
from tuckshop.observability.logging import log
from tuckshop.observability.metrics import Metrics
from tuckshop.payments.provider import PaymentProvider
from tuckshop.store.cache import ShopCache
from tuckshop.store.orm import (
    ArtifactStatus,
    Cart,
    CartItem,
    Order,
    OrderItem,
    OrderStatus,
    PaymentType,
    Product,
    User,
    VerificationArtifact,
)
from tuckshop.store.shop_repo import OrderView, order_view
from tuckshop.utils.ids import build_payment_reference, generate_order_number
from tuckshop.utils.time import utc_now

CENT = Decimal("0.01")


@dataclass
class CheckoutResult:
    order_id: int
    order_number: str
    total: Decimal
    payment_type: str
    artifact: Optional[ArtifactView] = None
    payment_url: Optional[str] = None
    payment_reference: Optional[str] = None
    warning: Optional[PartialSuccessError] = None

    @property
    def ok(self) -> bool:
        return self.warning is None

    def customer_text(self) -> str:
        if isinstance(self.warning, ArtifactIssuanceFailure):
            return messages.order_created_with_caveat(self.order_number, self.total, messages.ARTIFACT_CAVEAT)
        if isinstance(self.warning, PaymentLinkFailure):
            return messages.order_created_with_caveat(self.order_number, self.total, messages.PAYMENT_LINK_CAVEAT)
        if self.payment_type == PaymentType.CASH.value:
            return messages.order_created_cash(self.order_number, self.total, self.artifact.qr_url)
        return messages.order_created_prepaid(self.order_number, self.total, self.payment_url)


@dataclass
class PaymentConfirmation:
    order_id: int
    order_number: str
    artifact: ArtifactView
    phone: Optional[str] = None
    already_paid: bool = False


def compute_total(lines) -> Decimal:
    """Sum of unit_price * quantity in exact decimal, rounded to cents once at the end."""
    total = sum((Decimal(str(price)) * int(qty) for price, qty in lines), Decimal("0"))
    return total.quantize(CENT, rounding=ROUND_HALF_UP)


class CheckoutService:
    def __init__(self, session_factory, issuer: ArtifactIssuer, payments: PaymentProvider,
                 cache: ShopCache, metrics: Metrics, notifier: Callable[[str, str], None] = None):
        self.session_factory = session_factory
        self.issuer = issuer
        self.payments = payments
        self.cache = cache
        self.metrics = metrics
        self.notifier = notifier

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------
    def checkout(self, user_id: int, payment_type, now: datetime = None) -> CheckoutResult:
        payment_type = PaymentType(payment_type)
        now = now or utc_now()

        try:
            order_id, order_number, total, payer = self._place_order(user_id, payment_type, now)
        except EmptyCart:
            self.metrics.checkout_outcome("empty_cart")
            raise
        except InsufficientStock as e:
            self.metrics.checkout_outcome("insufficient_stock")
            log(event="checkout_insufficient_stock", userId=user_id, product=e.product_name, available=e.available)
            raise
        except SQLAlchemyError as e:
            self.metrics.checkout_outcome("transaction_failure")
            log(event="checkout_transaction_failed", userId=user_id, errorType=type(e).__name__, error=str(e)[:300])
            raise TransactionFailure("Checkout transaction failed") from e

        log(event="order_placed", userId=user_id, orderNumber=order_number, paymentType=payment_type.value,
            total=str(total))

        self.cache.invalidate_cart(user_id)
        self.cache.invalidate_products()
        self.cache.invalidate_orders(user_id)

        result = CheckoutResult(order_id=order_id, order_number=order_number, total=total,
                                payment_type=payment_type.value)
        if payment_type == PaymentType.CASH:
            self._attach_cash_artifact(result, now)
        else:
            self._attach_payment_link(result, payer)

        if result.ok:
            self.metrics.checkout_outcome("success")
        return result

    def _place_order(self, user_id: int, payment_type: PaymentType, now: datetime):
        with self.session_factory.begin() as db:
            cart = db.scalar(
                select(Cart)
                .where(Cart.user_id == user_id)
                .options(selectinload(Cart.items).selectinload(CartItem.product))
            )
            if cart is None or not cart.items:
                raise EmptyCart()

            lines = list(cart.items)
            for item in lines:
                if item.product.stock < item.quantity:
                    raise InsufficientStock(item.product.name, item.product.stock)

            total = compute_total((item.product.price, item.quantity) for item in lines)
            order = Order(
                order_number=generate_order_number(),
                user_id=user_id,
                total_amount=total,
                status=OrderStatus.PENDING,
                payment_type=payment_type,
                created_at=now,
            )
            for item in lines:
                unit_price = Decimal(str(item.product.price))
                order.items.append(OrderItem(
                    product_id=item.product_id,
                    product_name=item.product.name,
                    quantity=int(item.quantity),
                    unit_price=unit_price,
                    subtotal=(unit_price * int(item.quantity)).quantize(CENT, rounding=ROUND_HALF_UP),
                ))
            db.add(order)
            db.flush()

            # Guarded decrement: a concurrent checkout that took the stock first leaves rowcount at 0.
            for item in lines:
                res = db.execute(
                    update(Product)
                    .where(Product.id == item.product_id, Product.stock >= item.quantity)
                    .values(stock=Product.stock - item.quantity)
                    .execution_options(synchronize_session=False)
                )
                if res.rowcount != 1:
                    available = db.scalar(select(Product.stock).where(Product.id == item.product_id)) or 0
                    raise InsufficientStock(item.product.name, available)

            db.execute(delete(CartItem).where(CartItem.cart_id == cart.id).execution_options(synchronize_session=False))

            user = db.get(User, user_id)
            payer = user.email if user is not None else ""
            return order.id, order.order_number, total, payer

    def _attach_cash_artifact(self, result: CheckoutResult, now: datetime) -> None:
        try:
            result.artifact = self.issuer.issue_cash(result.order_id, now=now)
        except (SQLAlchemyError, ShopError) as e:
            log(event="artifact_issue_failed", orderNumber=result.order_number, errorType=type(e).__name__,
                error=str(e)[:300])
            result.warning = ArtifactIssuanceFailure("Pickup code could not be issued", result.order_number,
                                                     result.total)
            self.metrics.checkout_outcome("artifact_failure")

    def _attach_payment_link(self, result: CheckoutResult, payer: str) -> None:
        reference = build_payment_reference(result.order_number)
        result.payment_reference = reference
        try:
            with self.session_factory.begin() as db:
                order = db.get(Order, result.order_id)
                result.artifact = self.issuer.placeholder_in(db, order, reference)
        except SQLAlchemyError as e:
            log(event="payment_placeholder_failed", orderNumber=result.order_number, errorType=type(e).__name__,
                error=str(e)[:300])
            result.warning = PaymentLinkFailure("Payment could not be initiated", result.order_number,
                                                result.total, reference=reference)
            self.metrics.checkout_outcome("payment_link_failure")
            return

        result.payment_url = self.payments.create_payment_link(result.total, reference, payer)
        if not result.payment_url:
            result.warning = PaymentLinkFailure("Payment link could not be created", result.order_number,
                                                result.total, reference=reference)
            self.metrics.checkout_outcome("payment_link_failure")

    # ------------------------------------------------------------------
    # Order lifecycle
    # ------------------------------------------------------------------
    def confirm_payment(self, reference: str, now: datetime = None) -> PaymentConfirmation:
        """Provider confirmed payment: PENDING prepaid order -> PAID, real pickup code issued."""
        now = now or utc_now()
        with self.session_factory.begin() as db:
            placeholder = db.scalar(
                select(VerificationArtifact)
                .where(VerificationArtifact.payment_reference == reference)
                .order_by(VerificationArtifact.created_at.desc())
            )
            if placeholder is None:
                raise OrderNotFound(reference)

            order = db.scalar(
                select(Order)
                .where(Order.id == placeholder.order_id)
                .options(selectinload(Order.items), selectinload(Order.user))
            )
            phone = order.user.phone_number if order.user is not None else None

            if order.status == OrderStatus.PAID:
                active = db.scalar(
                    select(VerificationArtifact)
                    .where(VerificationArtifact.order_id == order.id,
                           VerificationArtifact.status == ArtifactStatus.ACTIVE)
                    .order_by(VerificationArtifact.created_at.desc())
                )
                if active is not None:
                    log(event="payment_already_confirmed", reference=reference, orderNumber=order.order_number)
                    return PaymentConfirmation(order.id, order.order_number,
                                               artifact_view(active), phone, already_paid=True)

            if order.payment_type != PaymentType.PREPAID or order.status not in (OrderStatus.PENDING,
                                                                                   OrderStatus.PAID):
                raise OrderStateError(f"Order {order.order_number} cannot be marked paid")

            order.status = OrderStatus.PAID
            order.paid_at = order.paid_at or now
            db.flush()
            artifact = self.issuer.issue_in(db, order, now=now)
            confirmation = PaymentConfirmation(order.id, order.order_number, artifact, phone)

        log(event="payment_confirmed", reference=reference, orderNumber=confirmation.order_number)
        self.cache.invalidate_orders(order.user_id)
        self._notify(confirmation.phone, messages.payment_received(confirmation.order_number,
                                                                   confirmation.artifact.qr_url))
        return confirmation

    def cancel_order(self, user_id: int, order_id: int, now: datetime = None) -> OrderView:
        """PENDING orders only. Restores stock and retires any pickup code."""
        now = now or utc_now()
        with self.session_factory.begin() as db:
            order = db.scalar(
                select(Order)
                .where(Order.id == order_id, Order.user_id == user_id)
                .options(selectinload(Order.items))
            )
            if order is None:
                raise OrderNotFound(order_id)
            if order.status != OrderStatus.PENDING:
                raise OrderStateError(f"Only pending orders can be cancelled (order is {order.status.value})")

            for item in order.items:
                db.execute(
                    update(Product)
                    .where(Product.id == item.product_id)
                    .values(stock=Product.stock + item.quantity)
                    .execution_options(synchronize_session=False)
                )
            order.status = OrderStatus.CANCELLED
            order.cancelled_at = now
            self.issuer.supersede_active(db, order.id)
            view = order_view(order)

        log(event="order_cancelled", userId=user_id, orderNumber=view.order_number)
        self.cache.invalidate_products()
        self.cache.invalidate_orders(user_id)
        return view

    def complete_order(self, order_id: int, now: datetime = None) -> OrderView:
        """Counter hand-over: cash PENDING or prepaid PAID -> COMPLETED; the pickup code is used up."""
        now = now or utc_now()
        with self.session_factory.begin() as db:
            order = db.scalar(select(Order).where(Order.id == order_id).options(selectinload(Order.items)))
            if order is None:
                raise OrderNotFound(order_id)

            collectable = (
                (order.payment_type == PaymentType.CASH and order.status == OrderStatus.PENDING)
                or (order.payment_type == PaymentType.PREPAID and order.status == OrderStatus.PAID)
            )
            if not collectable:
                raise OrderStateError(f"Order {order.order_number} cannot be completed from {order.status.value}")

            if order.paid_at is None:
                order.paid_at = now
            order.status = OrderStatus.COMPLETED
            order.completed_at = now
            db.execute(
                update(VerificationArtifact)
                .where(VerificationArtifact.order_id == order.id,
                       VerificationArtifact.status == ArtifactStatus.ACTIVE)
                .values(status=ArtifactStatus.USED)
                .execution_options(synchronize_session=False)
            )
            view = order_view(order)
            user_id = order.user_id

        log(event="order_completed", orderNumber=view.order_number)
        self.cache.invalidate_orders(user_id)
        return view

    def reissue_cash_artifact(self, user_id: int, order_id: int, now: datetime = None) -> ArtifactView:
        with self.session_factory() as db:
            owner = db.scalar(select(Order.user_id).where(Order.id == order_id))
        if owner is None or owner != user_id:
            raise OrderNotFound(order_id)
        return self.issuer.issue_cash(order_id, now=now)

    def _notify(self, phone: Optional[str], text: str) -> None:
        if not phone or self.notifier is None:
            return
        try:
            self.notifier(phone, text)
        except Exception as e:
            log(event="customer_notify_failed", phone=phone, errorType=type(e).__name__, error=str(e)[:300])
