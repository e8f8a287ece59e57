from enum import Enum

from billing_engine.extensions import db
from billing_engine.models.base import TimestampMixin, enum_column, iso, money, new_id


class SubscriptionStatus(str, Enum):
    TRIALING = "TRIALING"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    UNPAID = "UNPAID"
    PAUSED = "PAUSED"
    PENDING_CANCELLATION = "PENDING_CANCELLATION"
    CANCELLED = "CANCELLED"


class Subscription(TimestampMixin, db.Model):
    __tablename__ = "subscriptions"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    tenant_id = db.Column(db.String(36), db.ForeignKey("tenants.id"), nullable=False, index=True)
    client_id = db.Column(db.String(36), nullable=False, index=True)
    plan_id = db.Column(db.String(36), db.ForeignKey("plans.id"), nullable=False)

    status = enum_column(SubscriptionStatus, nullable=False, default=SubscriptionStatus.ACTIVE, index=True)

    # Billing period [start, end)
    current_period_start = db.Column(db.DateTime, nullable=False)
    current_period_end = db.Column(db.DateTime, nullable=False)
    next_billing_date = db.Column(db.DateTime, nullable=True, index=True)
    billing_cycle_anchor = db.Column(db.DateTime, nullable=True)

    trial_start = db.Column(db.DateTime, nullable=True)
    trial_end = db.Column(db.DateTime, nullable=True)

    cancel_at_period_end = db.Column(db.Boolean, nullable=False, default=False)
    canceled_at = db.Column(db.DateTime, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    failed_payment_attempts = db.Column(db.Integer, nullable=False, default=0)
    last_payment_attempt = db.Column(db.DateTime, nullable=True)
    past_due_at = db.Column(db.DateTime, nullable=True)

    unit_price = db.Column(db.Numeric(12, 2), nullable=True)
    currency = db.Column(db.String(3), nullable=True)
    payment_method_id = db.Column(db.String(255), nullable=True)

    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)

    plan = db.relationship("Plan", lazy="joined")

    __table_args__ = (
        db.CheckConstraint(
            "current_period_start < current_period_end",
            name="ck_subscriptions_valid_period",
        ),
        db.CheckConstraint(
            "failed_payment_attempts >= 0",
            name="ck_subscriptions_attempts_non_negative",
        ),
        db.Index("ix_subscriptions_due", "status", "next_billing_date"),
    )

    @property
    def is_cancelled(self) -> bool:
        return self.status == SubscriptionStatus.CANCELLED

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "client_id": self.client_id,
            "plan_id": self.plan_id,
            "status": self.status.value,
            "current_period_start": iso(self.current_period_start),
            "current_period_end": iso(self.current_period_end),
            "next_billing_date": iso(self.next_billing_date),
            "trial_start": iso(self.trial_start),
            "trial_end": iso(self.trial_end),
            "cancel_at_period_end": self.cancel_at_period_end,
            "canceled_at": iso(self.canceled_at),
            "cancellation_reason": self.cancellation_reason,
            "failed_payment_attempts": self.failed_payment_attempts,
            "last_payment_attempt": iso(self.last_payment_attempt),
            "past_due_at": iso(self.past_due_at),
            "unit_price": money(self.unit_price),
            "currency": self.currency,
            "has_payment_method": bool(self.payment_method_id),
        }

    def __repr__(self):
        return f"<Subscription {self.id} {self.status.value}>"
