from enum import Enum

from billing_engine.extensions import db
from billing_engine.models.base import TimestampMixin, enum_column, money, new_id


class BillingInterval(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class Plan(TimestampMixin, db.Model):
    __tablename__ = "plans"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    tenant_id = db.Column(db.String(36), db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    interval = enum_column(BillingInterval, nullable=False, default=BillingInterval.MONTHLY)
    interval_count = db.Column(db.Integer, nullable=False, default=1)
    trial_days = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    __table_args__ = (
        db.CheckConstraint("price >= 0", name="ck_plans_price_non_negative"),
        db.CheckConstraint("interval_count > 0", name="ck_plans_interval_count_positive"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "price": money(self.price),
            "currency": self.currency,
            "interval": self.interval.value,
            "interval_count": self.interval_count,
            "trial_days": self.trial_days,
            "is_active": self.is_active,
        }
