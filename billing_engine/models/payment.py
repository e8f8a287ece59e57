from decimal import Decimal
from enum import Enum

from billing_engine.extensions import db
from billing_engine.models.base import TimestampMixin, enum_column, iso, money, new_id


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"


class RefundStatus(str, Enum):
    SUCCEEDED = "succeeded"
    PENDING = "pending"
    PENDING_MANUAL = "pending_manual"


class Payment(TimestampMixin, db.Model):
    __tablename__ = "payments"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    tenant_id = db.Column(db.String(36), db.ForeignKey("tenants.id"), nullable=False, index=True)
    invoice_id = db.Column(db.String(36), db.ForeignKey("invoices.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False)
    status = enum_column(PaymentStatus, nullable=False, default=PaymentStatus.PENDING, index=True)

    gateway = db.Column(db.String(50), nullable=False)
    # Intent id at the processor, kept for late webhook reconciliation
    gateway_id = db.Column(db.String(255), nullable=True, index=True)
    gateway_txn_id = db.Column(db.String(255), nullable=True)
    gateway_response = db.Column(db.JSON, nullable=True)

    error_code = db.Column(db.String(100), nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    retryable = db.Column(db.Boolean, nullable=True)
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    next_retry_at = db.Column(db.DateTime, nullable=True)

    refunded_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    # accepted refunds nobody has paid out yet (operator queue)
    pending_refund_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    refund_status = db.Column(db.String(32), nullable=True)
    refund_id = db.Column(db.String(255), nullable=True)
    refund_reason = db.Column(db.Text, nullable=True)
    refunded_at = db.Column(db.DateTime, nullable=True)

    invoice = db.relationship("Invoice", backref=db.backref("payments", lazy="dynamic"))

    __table_args__ = (
        db.CheckConstraint(
            "refunded_amount + pending_refund_amount <= amount", name="ck_payments_refund_bound"
        ),
        db.CheckConstraint("refunded_amount >= 0", name="ck_payments_refund_non_negative"),
    )

    @property
    def refundable_amount(self) -> Decimal:
        return (
            Decimal(self.amount)
            - Decimal(self.refunded_amount or 0)
            - Decimal(self.pending_refund_amount or 0)
        )

    def to_dict(self):
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "amount": money(self.amount),
            "currency": self.currency,
            "status": self.status.value,
            "gateway": self.gateway,
            "gateway_id": self.gateway_id,
            "gateway_txn_id": self.gateway_txn_id,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "retryable": self.retryable,
            "retry_count": self.retry_count,
            "next_retry_at": iso(self.next_retry_at),
            "refunded_amount": money(self.refunded_amount),
            "pending_refund_amount": money(self.pending_refund_amount),
            "refund_status": self.refund_status,
            "refund_id": self.refund_id,
            "refunded_at": iso(self.refunded_at),
            "created_at": iso(self.created_at),
        }
