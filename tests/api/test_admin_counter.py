import pytest
from fastapi.testclient import TestClient

from tuckshop.main import create_app
from tuckshop.settings import settings
from tuckshop.store.models import ConversationSession, Step

ADMIN = {"x-admin-key": "admin-secret"}


@pytest.fixture
def client(services, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", "")
    monkeypatch.setattr(settings, "ADMIN_RBAC_ENABLED", True)
    monkeypatch.setattr(settings, "ADMIN_API_KEY", "admin-secret")
    return TestClient(create_app(services))


def _cash_order(services, customer, catalog):
    services.repo.add_to_cart(customer.id, catalog["Chips"], 2)
    return services.checkout.checkout(customer.id, "CASH")


def test_admin_key_required(client):
    assert client.get("/admin/metrics").status_code == 403
    assert client.get("/admin/metrics", headers={"x-admin-key": "wrong"}).status_code == 403


def test_admin_disabled_without_configured_key(client, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_KEY", "")
    assert client.get("/admin/metrics", headers=ADMIN).status_code == 403


def test_scan_completes_cash_order(client, services, customer, catalog):
    result = _cash_order(services, customer, catalog)

    r = client.post("/admin/orders/scan", json={"token": result.artifact.payload}, headers=ADMIN)

    body = r.json()
    assert body["valid"] is True
    assert body["completed"] is True
    assert body["orderStatus"] == "COMPLETED"
    assert body["payload"]["orderNumber"] == result.order_number

    again = client.post("/admin/orders/scan", json={"token": result.artifact.payload}, headers=ADMIN).json()
    assert again["valid"] is False
    assert again["reason"] == "already_used"


def test_scan_without_completion_only_checks(client, services, customer, catalog):
    result = _cash_order(services, customer, catalog)

    body = client.post("/admin/orders/scan", json={"token": result.artifact.payload, "complete": False},
                       headers=ADMIN).json()

    assert body["valid"] is True
    assert body["completed"] is False
    assert body["orderStatus"] == "PENDING"


def test_scan_rejects_forged_token(client):
    body = client.post("/admin/orders/scan", json={"token": "eyJmYWtlIjp0cnVlfQ.abc"}, headers=ADMIN).json()
    assert body == {"valid": False, "reason": "invalid_signature", "orderId": None, "orderStatus": None,
                    "completed": False, "payload": None}


def test_complete_endpoint_enforces_state(client, services, customer, catalog):
    services.repo.add_to_cart(customer.id, catalog["Water"], 1)
    result = services.checkout.checkout(customer.id, "PREPAID")

    r = client.post(f"/admin/orders/{result.order_id}/complete", headers=ADMIN)
    assert r.status_code == 409

    services.checkout.confirm_payment(result.payment_reference)
    r = client.post(f"/admin/orders/{result.order_id}/complete", headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["status"] == "COMPLETED"
    assert r.json()["paidAt"] is not None


def test_complete_unknown_order_is_404(client):
    assert client.post("/admin/orders/4040/complete", headers=ADMIN).status_code == 404


def test_session_snapshot(client, services, customer):
    s = ConversationSession.new("15550001111")
    s.user_id = customer.id
    s.user_name = customer.name
    s.move_to(Step.MY_ORDERS, {"list_index_map": {"1": 3}})
    services.sessions.save(s)

    r = client.get("/admin/session/+1 555 000 1111", headers=ADMIN)

    assert r.status_code == 200
    snap = r.json()
    assert snap["step"] == "MY_ORDERS"
    assert snap["authenticated"] is True
    assert snap["selection"]["list_index_map"] == {"1": 3}

    assert client.get("/admin/session/19998887777", headers=ADMIN).status_code == 404


def test_metrics_snapshot(client, services, customer, catalog):
    _cash_order(services, customer, catalog)
    services.orchestrator.handle_inbound_message("15550002222", "hi", "wamid.m1")
    services.orchestrator.handle_inbound_message("15550002222", "hi", "wamid.m1")

    m = client.get("/admin/metrics", headers=ADMIN).json()

    assert m["messagesAdmitted"] == 1
    assert m["messagesDuplicate"] == 1
    assert m["checkout"]["success"] == 1
    assert m["checkout"]["insufficient_stock"] == 0
