from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from tuckshop.core.checkout import compute_total
from tuckshop.core.errors import (
    ArtifactIssuanceFailure,
    EmptyCart,
    InsufficientStock,
    OrderNotFound,
    OrderStateError,
    PaymentLinkFailure,
    TransactionFailure,
)
from tuckshop.observability.metrics import K_CHECKOUT_PREFIX
from tuckshop.store.orm import ArtifactStatus, Order, OrderStatus, Product, VerificationArtifact
from tuckshop.utils.time import utc_now


def _order_count(services):
    with services.session_factory() as db:
        return db.scalar(select(func.count(Order.id)))


def _load_order(services, order_id):
    with services.session_factory() as db:
        order = db.get(Order, order_id)
        items = [(i.product_name, i.quantity, i.unit_price, i.subtotal) for i in order.items]
        artifacts = [(a.id, a.status, a.expires_at, a.payload, a.payment_reference) for a in order.artifacts]
        return order, items, artifacts


def test_compute_total_rounds_once_half_up():
    assert compute_total([(Decimal("0.10"), 3)]) == Decimal("0.30")
    assert compute_total([("0.105", 1), ("0.105", 1)]) == Decimal("0.21")
    assert compute_total([("1.005", 1)]) == Decimal("1.01")
    assert compute_total([]) == Decimal("0.00")


def test_cash_checkout_success(services, customer, catalog, stock_of, fake_redis):
    services.repo.add_to_cart(customer.id, catalog["Chips"], 2)
    services.repo.add_to_cart(customer.id, catalog["Water"], 3)
    now = utc_now()

    result = services.checkout.checkout(customer.id, "CASH", now=now)

    assert result.ok
    assert result.total == Decimal("4.80")
    assert result.order_number.startswith("ORD-")
    assert stock_of(catalog["Chips"]) == 38
    assert stock_of(catalog["Water"]) == 57
    assert services.repo.get_cart(customer.id).is_empty

    order, items, artifacts = _load_order(services, result.order_id)
    assert order.status == OrderStatus.PENDING
    assert order.total_amount == Decimal("4.80")
    assert sorted(items) == [("Chips", 2, Decimal("1.20"), Decimal("2.40")),
                             ("Water", 3, Decimal("0.80"), Decimal("2.40"))]
    assert len(artifacts) == 1
    _, status, expires_at, payload, _ = artifacts[0]
    assert status == ArtifactStatus.ACTIVE
    assert expires_at == now + timedelta(seconds=60)
    assert payload and result.artifact.payload == payload
    assert fake_redis.get(f"{K_CHECKOUT_PREFIX}success") == "1"


def test_empty_cart(services, customer, fake_redis):
    with pytest.raises(EmptyCart):
        services.checkout.checkout(customer.id, "CASH")
    assert _order_count(services) == 0
    assert fake_redis.get(f"{K_CHECKOUT_PREFIX}empty_cart") == "1"


def test_insufficient_stock_is_all_or_nothing(services, customer, catalog, stock_of):
    services.repo.add_to_cart(customer.id, catalog["Chips"], 2)
    services.repo.add_to_cart(customer.id, catalog["Chocolate"], 5)

    with pytest.raises(InsufficientStock) as exc:
        services.checkout.checkout(customer.id, "CASH")

    assert exc.value.product_name == "Chocolate"
    assert exc.value.available == 3
    assert stock_of(catalog["Chips"]) == 40
    assert stock_of(catalog["Chocolate"]) == 3
    assert _order_count(services) == 0
    assert len(services.repo.get_cart(customer.id).lines) == 2


def test_transaction_failure_rolls_back(services, customer, catalog, stock_of):
    services.repo.add_to_cart(customer.id, catalog["Water"], 1)
    first = services.checkout.checkout(customer.id, "CASH")
    services.repo.add_to_cart(customer.id, catalog["Chips"], 4)

    # A colliding order number makes the insert fail at flush time
    with patch("tuckshop.core.checkout.generate_order_number", return_value=first.order_number):
        with pytest.raises(TransactionFailure):
            services.checkout.checkout(customer.id, "CASH")

    assert stock_of(catalog["Chips"]) == 40
    assert _order_count(services) == 1
    assert services.repo.get_cart(customer.id).lines[0].quantity == 4


def test_order_snapshot_survives_catalog_edits(services, customer, catalog):
    services.repo.add_to_cart(customer.id, catalog["Chips"], 2)
    result = services.checkout.checkout(customer.id, "CASH")

    with services.session_factory.begin() as db:
        p = db.get(Product, catalog["Chips"])
        p.price = Decimal("9.99")
        p.name = "Renamed Chips"

    order, items, _ = _load_order(services, result.order_id)
    assert items == [("Chips", 2, Decimal("1.20"), Decimal("2.40"))]
    assert order.total_amount == Decimal("2.40")

    payload = services.issuer.decode(result.artifact.payload)
    assert payload["orderSummary"]["totalAmount"] == "2.40"
    assert payload["orderSummary"]["items"][0]["name"] == "Chips"


def test_artifact_failure_is_success_with_caveat(services, customer, catalog, stock_of):
    services.repo.add_to_cart(customer.id, catalog["Chips"], 1)

    with patch.object(services.issuer, "issue_cash", side_effect=SQLAlchemyError("disk full")):
        result = services.checkout.checkout(customer.id, "CASH")

    assert isinstance(result.warning, ArtifactIssuanceFailure)
    assert result.artifact is None
    assert _order_count(services) == 1
    assert stock_of(catalog["Chips"]) == 39
    assert "My Orders" in result.customer_text()


def test_prepaid_checkout_creates_placeholder(services, customer, catalog, payments):
    services.repo.add_to_cart(customer.id, catalog["Water"], 2)

    result = services.checkout.checkout(customer.id, "PREPAID")

    assert result.ok
    assert result.payment_url == "https://pay.example.test/checkout/abc"
    assert result.payment_reference.startswith(f"PAY-{result.order_number}-")
    payments.create_payment_link.assert_called_once_with(Decimal("1.60"), result.payment_reference,
                                                         "ada@example.com")

    _, _, artifacts = _load_order(services, result.order_id)
    assert len(artifacts) == 1
    _, status, expires_at, payload, reference = artifacts[0]
    assert status == ArtifactStatus.AWAITING_PAYMENT
    assert payload == ""
    assert expires_at is None
    assert reference == result.payment_reference


def test_prepaid_link_failure_is_success_with_caveat(services, customer, catalog, payments):
    payments.create_payment_link.return_value = None
    services.repo.add_to_cart(customer.id, catalog["Water"], 1)

    result = services.checkout.checkout(customer.id, "PREPAID")

    assert isinstance(result.warning, PaymentLinkFailure)
    assert result.warning.reference == result.payment_reference
    assert _order_count(services) == 1


def test_confirm_payment_issues_prepaid_code_and_notifies(services, customer, catalog, transport):
    services.repo.add_to_cart(customer.id, catalog["Water"], 1)
    result = services.checkout.checkout(customer.id, "PREPAID")

    confirmation = services.checkout.confirm_payment(result.payment_reference)

    assert not confirmation.already_paid
    order, _, artifacts = _load_order(services, result.order_id)
    assert order.status == OrderStatus.PAID
    assert order.paid_at is not None
    statuses = {a[0]: a[1] for a in artifacts}
    assert statuses[result.artifact.id] == ArtifactStatus.SUPERSEDED
    assert statuses[confirmation.artifact.id] == ArtifactStatus.ACTIVE
    assert confirmation.artifact.expires_at is None
    transport.send_text.assert_called_once()
    phone, text = transport.send_text.call_args[0]
    assert phone == "15550001111"
    assert "Payment Successful" in text

    again = services.checkout.confirm_payment(result.payment_reference)
    assert again.already_paid
    assert again.artifact.id == confirmation.artifact.id
    assert transport.send_text.call_count == 1


def test_confirm_unknown_reference(services):
    with pytest.raises(OrderNotFound):
        services.checkout.confirm_payment("PAY-NOPE")


def test_cancel_restores_stock(services, customer, catalog, stock_of):
    services.repo.add_to_cart(customer.id, catalog["Chips"], 5)
    result = services.checkout.checkout(customer.id, "CASH")
    assert stock_of(catalog["Chips"]) == 35

    view = services.checkout.cancel_order(customer.id, result.order_id)

    assert view.status == OrderStatus.CANCELLED.value
    assert stock_of(catalog["Chips"]) == 40
    _, _, artifacts = _load_order(services, result.order_id)
    assert all(a[1] == ArtifactStatus.SUPERSEDED for a in artifacts)

    with pytest.raises(OrderStateError):
        services.checkout.cancel_order(customer.id, result.order_id)


def test_cancel_requires_owner(services, customer, catalog):
    services.repo.add_to_cart(customer.id, catalog["Chips"], 1)
    result = services.checkout.checkout(customer.id, "CASH")
    with pytest.raises(OrderNotFound):
        services.checkout.cancel_order(customer.id + 100, result.order_id)


def test_complete_cash_order_uses_code(services, customer, catalog):
    services.repo.add_to_cart(customer.id, catalog["Chips"], 1)
    result = services.checkout.checkout(customer.id, "CASH")

    view = services.checkout.complete_order(result.order_id)

    assert view.status == OrderStatus.COMPLETED.value
    order, _, artifacts = _load_order(services, result.order_id)
    assert order.completed_at is not None
    assert artifacts[0][1] == ArtifactStatus.USED

    with pytest.raises(OrderStateError):
        services.checkout.complete_order(result.order_id)


def test_unpaid_prepaid_order_cannot_be_completed(services, customer, catalog):
    services.repo.add_to_cart(customer.id, catalog["Chips"], 1)
    result = services.checkout.checkout(customer.id, "PREPAID")
    with pytest.raises(OrderStateError):
        services.checkout.complete_order(result.order_id)


def test_reissue_supersedes_previous_code(services, customer, catalog):
    services.repo.add_to_cart(customer.id, catalog["Chips"], 1)
    result = services.checkout.checkout(customer.id, "CASH")

    fresh = services.checkout.reissue_cash_artifact(customer.id, result.order_id)

    with services.session_factory() as db:
        rows = {a.id: a.status for a in db.scalars(
            select(VerificationArtifact).where(VerificationArtifact.order_id == result.order_id))}
    assert rows[result.artifact.id] == ArtifactStatus.SUPERSEDED
    assert rows[fresh.id] == ArtifactStatus.ACTIVE

    with pytest.raises(OrderNotFound):
        services.checkout.reissue_cash_artifact(customer.id + 1, result.order_id)
