import pytest
from datetime import datetime
from unittest.mock import patch

from billing_engine.workers.celery_app import CELERY_BEAT_SCHEDULE, celery
from billing_engine.workers.renewal_tasks import process_renewal, sweep_due_renewals


def test_tasks_are_registered():
    assert "billing.sweep_due_renewals" in celery.tasks
    assert "billing.process_renewal" in celery.tasks
    assert CELERY_BEAT_SCHEDULE["sweep-due-renewals"]["task"] == "billing.sweep_due_renewals"


@pytest.mark.db
def test_sweep_queues_due_subscriptions(engine, factory, tenant, plan, subscription):
    # renews next month, not due yet
    factory.subscription(
        tenant,
        plan,
        current_period_start=datetime(2025, 1, 15),
        current_period_end=datetime(2025, 2, 15),
        next_billing_date=datetime(2025, 2, 15),
    )

    with patch.object(process_renewal, "delay") as delay:
        queued = sweep_due_renewals.run()

    assert queued == 1
    delay.assert_called_once_with(subscription.id, subscription.tenant_id)


@pytest.mark.db
def test_sweep_honours_limit(engine, factory, tenant, plan, subscription):
    factory.subscription(tenant, plan)

    with patch.object(process_renewal, "delay") as delay:
        queued = sweep_due_renewals.run(limit=1)

    assert queued == 1
    assert delay.call_count == 1


@pytest.mark.db
def test_process_renewal_task_returns_result(subscription, fake_gateway):
    result = process_renewal.run(subscription.id, subscription.tenant_id)

    assert result["outcome"] == "renewed"
    assert result["next_billing_date"] == "2025-02-28T09:00:00"
    assert len(fake_gateway.confirmations) == 1


@pytest.mark.db
def test_process_renewal_task_skips_when_locked(engine, subscription, fake_gateway):
    with engine.locks.lock(f"billing:renewal:{subscription.id}"):
        result = process_renewal.run(subscription.id, subscription.tenant_id)

    assert result == {"subscription_id": subscription.id, "outcome": "skipped"}
    assert fake_gateway.confirmations == []


@pytest.mark.db
def test_process_renewal_task_reports_rejections(tenant):
    result = process_renewal.run("missing", tenant.id)

    assert result == {"subscription_id": "missing", "outcome": "rejected", "error_kind": "not_found"}
