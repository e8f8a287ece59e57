import pytest
from datetime import datetime
from decimal import Decimal

from billing_engine.observability.metrics import MetricsManager

BASE = "/api/v1/billing"


def _url(subscription, action):
    return f"{BASE}/tenants/{subscription.tenant_id}/subscriptions/{subscription.id}/{action}"


@pytest.mark.db
def test_renew_endpoint(client, subscription):
    response = client.post(_url(subscription, "renew"))

    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True
    assert body["outcome"] == "renewed"
    assert body["status"] == "ACTIVE"
    assert body["next_billing_date"] == "2025-02-28T09:00:00"


@pytest.mark.db
@pytest.mark.payment
def test_renew_endpoint_reports_decline_as_payment_required(client, subscription, fake_gateway):
    fake_gateway.decline(code="insufficient_funds", message="Insufficient funds")

    response = client.post(_url(subscription, "renew"))

    assert response.status_code == 402
    body = response.get_json()
    assert body["success"] is False
    assert body["error_kind"] == "gateway_declined"
    assert body["decline_code"] == "insufficient_funds"


@pytest.mark.db
def test_renew_not_due_is_ok(client, subscription, clock):
    clock.set(datetime(2025, 1, 15))

    response = client.post(_url(subscription, "renew"))

    assert response.status_code == 200
    assert response.get_json()["outcome"] == "not_due"


@pytest.mark.db
def test_cancel_endpoint(client, subscription):
    response = client.post(
        _url(subscription, "cancel"),
        json={"cancel_at_period_end": True, "reason": "too_expensive"},
        headers={"X-Actor-Id": "user-42"},
    )

    assert response.status_code == 200
    assert response.get_json()["status"] == "PENDING_CANCELLATION"
    assert response.get_json()["canceled_at"] == "2025-01-31T09:00:00"

    history = client.get(_url(subscription, "history")).get_json()
    assert history[0]["reason"] == "too_expensive"
    assert history[0]["user_id"] == "user-42"


@pytest.mark.db
def test_cancel_twice_returns_conflict(client, subscription):
    client.post(_url(subscription, "cancel"), json={"cancel_at_period_end": False})

    response = client.post(_url(subscription, "cancel"), json={"cancel_at_period_end": False})

    assert response.status_code == 409
    body = response.get_json()
    assert body["kind"] == "already_cancelled"
    assert body["retryable"] is False
    assert body["path"].endswith("/cancel")


@pytest.mark.db
def test_cancel_rejects_non_boolean_flags(client, subscription):
    response = client.post(_url(subscription, "cancel"), json={"refund_unused_time": "yes"})

    assert response.status_code == 400


@pytest.mark.db
def test_refund_without_payment_is_unprocessable(client, subscription, clock):
    clock.set(datetime(2025, 1, 21, 9, 0, 0))

    response = client.post(
        _url(subscription, "cancel"),
        json={"cancel_at_period_end": False, "refund_unused_time": True},
    )

    assert response.status_code == 422
    assert response.get_json()["kind"] == "refund_source_missing"


@pytest.mark.db
def test_reactivate_endpoint(client, subscription):
    client.post(_url(subscription, "cancel"), json={})

    response = client.post(_url(subscription, "reactivate"))

    assert response.status_code == 200
    assert response.get_json()["status"] == "ACTIVE"
    assert response.get_json()["cancel_at_period_end"] is False


@pytest.mark.db
def test_proration_endpoint(client, factory, tenant, subscription, clock):
    premium = factory.plan(tenant, price=Decimal("62.00"))
    clock.set(datetime(2025, 1, 21, 9, 0, 0))

    response = client.get(_url(subscription, "proration"), query_string={"new_plan_id": premium.id})

    assert response.status_code == 200
    assert response.get_json() == {
        "credit_amount": "9.68",
        "charge_amount": "20.00",
        "net_amount": "10.32",
        "prorated_days": 10,
        "total_days": 31,
    }


@pytest.mark.db
def test_proration_requires_new_plan(client, subscription):
    assert client.get(_url(subscription, "proration")).status_code == 400


@pytest.mark.db
def test_failed_payment_endpoint(client, subscription):
    response = client.post(_url(subscription, "failed-payments"), json={"attempt_number": 1})

    assert response.status_code == 200
    assert response.get_json() == {
        "subscription_id": subscription.id,
        "attempt_number": 1,
        "status": "ACTIVE",
        "next_attempt_at": "2025-02-01T09:00:00",
    }


@pytest.mark.db
@pytest.mark.parametrize("attempt", [0, -1, "2", True, None])
def test_failed_payment_validates_attempt_number(client, subscription, attempt):
    response = client.post(_url(subscription, "failed-payments"), json={"attempt_number": attempt})

    assert response.status_code == 400


@pytest.mark.db
def test_invoice_and_payment_listings(client, factory, subscription):
    invoice, payment = factory.paid_invoice(subscription, number="INV-2025-000042")

    invoices = client.get(_url(subscription, "invoices")).get_json()
    payments = client.get(_url(subscription, "payments")).get_json()

    assert [i["invoice_number"] for i in invoices] == ["INV-2025-000042"]
    assert invoices[0]["total"] == "30.00"
    assert [p["id"] for p in payments] == [payment.id]
    assert payments[0]["status"] == "COMPLETED"


@pytest.mark.db
def test_invoice_number_endpoint(client, tenant):
    response = client.post(f"{BASE}/tenants/{tenant.id}/invoice-numbers")

    assert response.status_code == 201
    assert response.get_json() == {"tenant_id": tenant.id, "invoice_number": "INV-2025-000001"}


@pytest.mark.db
def test_other_tenant_cannot_see_subscription(client, factory, subscription):
    stranger = factory.tenant()

    response = client.get(f"{BASE}/tenants/{stranger.id}/subscriptions/{subscription.id}/history")

    assert response.status_code == 404
    assert response.get_json()["kind"] == "not_found"


@pytest.mark.db
def test_health(client):
    response = client.get(f"{BASE}/health")

    assert response.status_code == 200
    assert response.get_json() == {"status": "ok", "database": "ok"}


def test_unknown_route_returns_json(client):
    response = client.get(f"{BASE}/nope")

    assert response.status_code == 404
    assert response.get_json()["error"] == "Not Found"


def test_request_id_is_echoed(client):
    response = client.get(f"{BASE}/health", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"


def test_metrics_rendering():
    manager = MetricsManager(enabled=True)
    manager.record_renewal("renewed")
    manager.record_payment_attempt("stripe", "succeeded")

    body = manager.render().get_data(as_text=True)

    assert 'billing_renewals_total{outcome="renewed"} 1.0' in body
    assert 'billing_payment_attempts_total{gateway="stripe",status="succeeded"} 1.0' in body


def test_disabled_metrics_record_nothing():
    manager = MetricsManager(enabled=False)
    manager.record_renewal("renewed")
    manager.record_task("billing.process_renewal", "success")

    assert manager.registry is None
