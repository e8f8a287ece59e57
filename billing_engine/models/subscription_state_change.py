from sqlalchemy import event

from billing_engine.extensions import db
from billing_engine.models.base import iso, utcnow


class AppendOnlyViolation(Exception):
    pass


class SubscriptionStateChange(db.Model):
    """Immutable audit record of one lifecycle transition."""

    __tablename__ = "subscription_state_changes"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    subscription_id = db.Column(db.String(36), db.ForeignKey("subscriptions.id"), nullable=False, index=True)
    tenant_id = db.Column(db.String(36), db.ForeignKey("tenants.id"), nullable=False, index=True)
    from_status = db.Column(db.String(32), nullable=True)
    to_status = db.Column(db.String(32), nullable=False)
    reason = db.Column(db.String(100), nullable=False)
    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)
    # None means the system acted
    user_id = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "subscription_id": self.subscription_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "reason": self.reason,
            "metadata": self.meta or {},
            "user_id": self.user_id,
            "created_at": iso(self.created_at),
        }


@event.listens_for(SubscriptionStateChange, "before_update")
def _reject_update(mapper, connection, target):
    raise AppendOnlyViolation("subscription_state_changes rows are immutable")


@event.listens_for(SubscriptionStateChange, "before_delete")
def _reject_delete(mapper, connection, target):
    raise AppendOnlyViolation("subscription_state_changes rows cannot be deleted")
