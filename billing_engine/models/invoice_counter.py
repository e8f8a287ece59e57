from billing_engine.extensions import db
from billing_engine.models.base import TimestampMixin, new_id


class InvoiceCounter(TimestampMixin, db.Model):
    __tablename__ = "invoice_counters"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    tenant_id = db.Column(db.String(36), db.ForeignKey("tenants.id"), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    last_number = db.Column(db.Integer, nullable=False, default=0)
    prefix = db.Column(db.String(16), nullable=False, default="INV")

    __table_args__ = (
        # One counter per tenant per year
        db.UniqueConstraint("tenant_id", "year", name="uq_invoice_counters_tenant_year"),
    )
