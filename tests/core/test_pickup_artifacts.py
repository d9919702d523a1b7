from datetime import timedelta

from tuckshop.core.artifacts import ArtifactIssuer, render_qr_png
from tuckshop.utils.time import utc_now


def _cash_order(services, customer, catalog, qty=1, now=None):
    services.repo.add_to_cart(customer.id, catalog["Chips"], qty)
    return services.checkout.checkout(customer.id, "CASH", now=now)


def test_token_round_trip_and_tamper(services):
    token = services.issuer.encode({"orderId": 7, "orderNumber": "ORD-X"})
    assert services.issuer.decode(token) == {"orderId": 7, "orderNumber": "ORD-X"}

    body, sig = token.split(".")
    assert services.issuer.decode(body + "." + sig[:-1] + ("0" if sig[-1] != "0" else "1")) is None
    assert services.issuer.decode(body[:-2] + "AA." + sig) is None
    assert services.issuer.decode("not-a-token") is None
    assert services.issuer.decode("") is None


def test_other_secret_rejects_token(services):
    token = services.issuer.encode({"orderId": 1})
    other = ArtifactIssuer(services.session_factory, secret="another-secret")
    assert other.decode(token) is None


def test_fresh_cash_code_verifies(services, customer, catalog):
    now = utc_now()
    result = _cash_order(services, customer, catalog, qty=2, now=now)

    check = services.issuer.verify(result.artifact.payload, now=now + timedelta(seconds=5))

    assert check.valid
    assert check.order_id == result.order_id
    assert check.payload["orderSummary"]["totalItems"] == 2
    assert check.payload["customer"]["name"] == "Ada Lovelace"


def test_cash_code_expires(services, customer, catalog):
    now = utc_now()
    result = _cash_order(services, customer, catalog, now=now)

    check = services.issuer.verify(result.artifact.payload, now=now + timedelta(seconds=61))

    assert not check.valid
    assert check.reason == "expired"


def test_reissued_code_supersedes_old_one(services, customer, catalog):
    now = utc_now()
    result = _cash_order(services, customer, catalog, now=now)
    fresh = services.issuer.issue_cash(result.order_id, now=now + timedelta(seconds=1))

    assert services.issuer.verify(result.artifact.payload, now=now + timedelta(seconds=2)).reason == "superseded"
    assert services.issuer.verify(fresh.payload, now=now + timedelta(seconds=2)).valid
    assert services.issuer.active_for_order(result.order_id).id == fresh.id


def test_prepaid_placeholder_is_not_scannable(services, customer, catalog):
    services.repo.add_to_cart(customer.id, catalog["Water"], 1)
    result = services.checkout.checkout(customer.id, "PREPAID")

    assert services.issuer.get(result.artifact.id).status == "AWAITING_PAYMENT"
    assert services.issuer.active_for_order(result.order_id) is None
    assert services.issuer.verify(result.artifact.payload).reason == "invalid_signature"


def test_prepaid_code_after_payment_does_not_expire(services, customer, catalog):
    services.repo.add_to_cart(customer.id, catalog["Water"], 1)
    result = services.checkout.checkout(customer.id, "PREPAID")
    confirmation = services.checkout.confirm_payment(result.payment_reference)

    later = utc_now() + timedelta(days=3)
    check = services.issuer.verify(confirmation.artifact.payload, now=later)

    assert check.valid
    assert check.payload["paymentStatus"] == "PAID"
    assert "expiresAt" not in check.payload


def test_used_code_cannot_be_scanned_twice(services, customer, catalog):
    now = utc_now()
    result = _cash_order(services, customer, catalog, now=now)
    services.checkout.complete_order(result.order_id, now=now)

    check = services.issuer.verify(result.artifact.payload, now=now + timedelta(seconds=1))

    assert not check.valid
    assert check.reason == "already_used"
    assert check.order_status == "COMPLETED"


def test_cancelled_order_code_is_rejected(services, customer, catalog):
    now = utc_now()
    result = _cash_order(services, customer, catalog, now=now)
    services.checkout.cancel_order(customer.id, result.order_id, now=now)

    assert services.issuer.verify(result.artifact.payload, now=now).reason == "superseded"


def test_signed_code_for_unknown_order(services):
    token = services.issuer.encode({"orderId": 999, "orderNumber": "ORD-NONE", "paymentType": "PREPAID"})
    assert services.issuer.verify(token).reason == "order_not_found"


def test_pickup_code_renders_as_png(services, customer, catalog):
    result = _cash_order(services, customer, catalog)

    png = render_qr_png(result.artifact.payload)

    assert png.startswith(b"\x89PNG\r\n\x1a\n")
    assert png != render_qr_png(services.issuer.encode({"orderId": 0}))
    assert result.artifact.qr_url.endswith(f"/api/artifacts/{result.artifact.id}/qr.png")
