from celery.utils.log import get_task_logger
from flask import current_app

from billing_engine.engine import get_engine
from billing_engine.errors import BillingError, LockNotAcquired
from billing_engine.workers.celery_app import BillingTask, celery

logger = get_task_logger(__name__)


@celery.task(name="billing.sweep_due_renewals", base=BillingTask)
def sweep_due_renewals(limit=None):
    """Queue one renewal task per subscription that is due now."""
    engine = get_engine()
    limit = limit or current_app.config.get("RENEWAL_BATCH_SIZE", 100)
    due = engine.renewals.find_due_subscriptions(limit=limit)

    for subscription_id, tenant_id in due:
        process_renewal.delay(subscription_id, tenant_id)

    logger.info("Renewal sweep queued subscriptions", extra={"count": len(due)})
    return len(due)


@celery.task(name="billing.process_renewal", base=BillingTask)
def process_renewal(subscription_id, tenant_id):
    """
    Run a single renewal. Never retried by Celery: a failed charge is
    picked up again by the sweep once the dunning interval has passed.
    """
    try:
        result = get_engine().process_renewal(subscription_id, tenant_id)
    except LockNotAcquired:
        logger.info("Renewal already running", extra={"subscription_id": subscription_id})
        return {"subscription_id": subscription_id, "outcome": "skipped"}
    except BillingError as exc:
        logger.warning(
            "Renewal rejected",
            extra={"subscription_id": subscription_id, "tenant_id": tenant_id, "error_kind": exc.kind.value},
        )
        return {"subscription_id": subscription_id, "outcome": "rejected", "error_kind": exc.kind.value}
    return result.to_dict()
