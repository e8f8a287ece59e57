from billing_engine.extensions import db
from billing_engine.models.base import TimestampMixin, new_id


class PaymentGatewayConfig(TimestampMixin, db.Model):
    __tablename__ = "payment_gateway_configs"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    tenant_id = db.Column(db.String(36), db.ForeignKey("tenants.id"), nullable=False, index=True)
    gateway_name = db.Column(db.String(50), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    # Higher wins
    priority = db.Column(db.Integer, nullable=False, default=1)
    supported_currencies = db.Column(db.JSON, nullable=False, default=list)
    # Raw per-gateway settings; parsed into a typed settings object on use
    settings = db.Column(db.JSON, nullable=False, default=dict)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "gateway_name", name="uq_gateway_configs_tenant_gateway"),
    )

    def supports_currency(self, currency: str) -> bool:
        currencies = [c.upper() for c in (self.supported_currencies or [])]
        # An empty list defers to the gateway's own currency list
        return not currencies or currency.upper() in currencies
