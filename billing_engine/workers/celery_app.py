import os

from celery import Celery, Task
from celery.schedules import crontab
from celery.utils.log import get_task_logger

logger = get_task_logger(__name__)

_broker = os.getenv("CELERY_BROKER_URL") or os.getenv("REDIS_URL", "redis://localhost:6379/0")

celery = Celery(
    "billing_engine",
    broker=_broker,
    backend=os.getenv("CELERY_RESULT_BACKEND", _broker),
    include=["billing_engine.workers.renewal_tasks"],
)

celery.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
)

CELERY_BEAT_SCHEDULE = {
    "sweep-due-renewals": {
        "task": "billing.sweep_due_renewals",
        "schedule": crontab(minute=f"*/{int(os.getenv('RENEWAL_SWEEP_MINUTES', '15'))}"),
    },
}
celery.conf.beat_schedule = CELERY_BEAT_SCHEDULE


class BillingTask(Task):
    """Runs inside the Flask app context and counts executions."""

    abstract = True

    def __call__(self, *args, **kwargs):
        app = flask_app()
        metrics = app.extensions["billing_engine"].metrics
        with app.app_context():
            try:
                result = super().__call__(*args, **kwargs)
            except Exception:
                metrics.record_task(self.name, "failure")
                logger.exception("Task failed", extra={"task": self.name, "task_id": self.request.id})
                raise
            metrics.record_task(self.name, "success")
            return result


_flask_app = None


def init_celery(app):
    """Bind the worker to an existing Flask app and its config."""
    global _flask_app
    _flask_app = app
    return celery


def flask_app():
    if _flask_app is None:
        from billing_engine import create_app

        init_celery(create_app())
    return _flask_app
