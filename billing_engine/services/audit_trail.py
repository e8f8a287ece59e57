import logging

from sqlalchemy.exc import SQLAlchemyError

from billing_engine.models import SubscriptionStateChange

logger = logging.getLogger("billing_engine.audit")


class AuditTrail:
    """Append-only log of subscription lifecycle changes."""

    def __init__(self, repository, clock):
        self.repository = repository
        self.clock = clock

    def record(self, subscription, from_status, to_status, reason, metadata=None, actor_id=None):
        """
        Append one state change in a savepoint of the caller's transaction.

        A failed write is logged and swallowed: losing an audit row must never
        undo a charge or a refund that already happened.
        """
        change = SubscriptionStateChange(
            subscription_id=subscription.id,
            tenant_id=subscription.tenant_id,
            from_status=_value(from_status),
            to_status=_value(to_status),
            reason=reason,
            meta=_jsonable(metadata or {}),
            user_id=actor_id,
            created_at=self.clock.now(),
        )
        try:
            with self.repository.savepoint():
                self.repository.add(change)
        except SQLAlchemyError:
            logger.exception(
                "Failed to record subscription state change",
                extra={
                    "subscription_id": subscription.id,
                    "tenant_id": subscription.tenant_id,
                    "reason": reason,
                    "from_status": _value(from_status),
                    "to_status": _value(to_status),
                },
            )
            return None
        return change

    def history(self, subscription_id, tenant_id):
        return self.repository.state_changes(subscription_id, tenant_id)


def _value(status):
    return getattr(status, "value", status)


def _jsonable(metadata):
    clean = {}
    for key, value in metadata.items():
        if value is None or isinstance(value, (bool, int, float, str)):
            clean[key] = value
        elif isinstance(value, dict):
            clean[key] = _jsonable(value)
        else:
            clean[key] = str(value)
    return clean
