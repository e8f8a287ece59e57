from decimal import Decimal
from enum import Enum

from billing_engine.extensions import db
from billing_engine.models.base import TimestampMixin, enum_column, iso, money, new_id


class InvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class InvoiceType(str, Enum):
    RECURRING = "recurring"
    ONE_OFF = "one_off"


OPEN_INVOICE_STATUSES = (InvoiceStatus.PENDING, InvoiceStatus.OVERDUE)


class Invoice(TimestampMixin, db.Model):
    __tablename__ = "invoices"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    tenant_id = db.Column(db.String(36), db.ForeignKey("tenants.id"), nullable=False, index=True)
    client_id = db.Column(db.String(36), nullable=False, index=True)
    subscription_id = db.Column(db.String(36), db.ForeignKey("subscriptions.id"), nullable=True, index=True)
    invoice_number = db.Column(db.String(64), nullable=False)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    tax = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    status = enum_column(InvoiceStatus, nullable=False, default=InvoiceStatus.PENDING, index=True)
    invoice_type = enum_column(InvoiceType, nullable=False, default=InvoiceType.RECURRING)

    period_start = db.Column(db.DateTime, nullable=True)
    period_end = db.Column(db.DateTime, nullable=True)
    due_date = db.Column(db.DateTime, nullable=False)
    paid_at = db.Column(db.DateTime, nullable=True)

    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "invoice_number", name="uq_invoices_tenant_number"),
        db.CheckConstraint("total = subtotal + tax", name="ck_invoices_total"),
        db.Index("ix_invoices_subscription_period", "subscription_id", "period_start"),
    )

    @classmethod
    def build(cls, *, subtotal, tax=Decimal("0.00"), **kwargs):
        """Create an invoice whose total is derived from its parts."""
        subtotal = Decimal(subtotal)
        tax = Decimal(tax)
        return cls(subtotal=subtotal, tax=tax, total=subtotal + tax, **kwargs)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_INVOICE_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "subscription_id": self.subscription_id,
            "invoice_number": self.invoice_number,
            "subtotal": money(self.subtotal),
            "tax": money(self.tax),
            "total": money(self.total),
            "currency": self.currency,
            "status": self.status.value,
            "invoice_type": self.invoice_type.value,
            "period_start": iso(self.period_start),
            "period_end": iso(self.period_end),
            "due_date": iso(self.due_date),
            "paid_at": iso(self.paid_at),
            "metadata": self.meta or {},
        }
