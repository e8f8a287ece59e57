from billing_engine.extensions import db
from billing_engine.models.base import TimestampMixin, new_id


class Tenant(TimestampMixin, db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(255), nullable=False)
    default_currency = db.Column(db.String(3), nullable=False, default="USD")
    # Overrides INVOICE_NUMBER_PREFIX for this tenant when set
    invoice_prefix = db.Column(db.String(16), nullable=True)

    def __repr__(self):
        return f"<Tenant {self.id} {self.name}>"
