import pytest
from datetime import datetime
from decimal import Decimal

from faker import Faker

from billing_engine import create_app
from billing_engine.extensions import db
from billing_engine.models import (
    BillingInterval,
    Invoice,
    InvoiceStatus,
    Payment,
    PaymentGatewayConfig,
    PaymentStatus,
    Plan,
    Subscription,
    SubscriptionStatus,
    Tenant,
)
from billing_engine.notifications import BillingEvents
from billing_engine.payments import (
    GatewayCapabilities,
    GatewayRegistry,
    PaymentGateway,
    PaymentOutcome,
    RefundOutcome,
)
from billing_engine.payments.base import FAILED, SUCCEEDED
from billing_engine.utils.clock import FixedClock

# Initialize Faker for generating test data
fake = Faker()

# Renewals in the default fixtures fall due exactly at this moment
NOW = datetime(2025, 1, 31, 9, 0, 0)


def pytest_configure(config):
    config.addinivalue_line("markers", "db: mark test as database-intensive")
    config.addinivalue_line("markers", "payment: mark test as payment-related")
    config.addinivalue_line("markers", "slow: mark test as slow-running")


class FakeGateway(PaymentGateway):
    """
    Scriptable in-memory processor.

    Queue ``PaymentOutcome`` objects or exceptions on ``outcomes``; each
    ``confirm_payment`` consumes one, and succeeds when the queue is empty.
    Intents are keyed by payment id like a real idempotency key, and intent
    ids put on ``settled`` report as already charged.
    """

    name = "fakepay"
    display_name = "Fake Pay"
    capabilities = GatewayCapabilities()

    def __init__(self):
        super().__init__()
        self.outcomes = []
        self.intents = []
        self.settled = set()
        self.confirmations = []
        self.refunds = []
        self.refund_result = None

    def initialize(self, settings):
        self.settings = settings

    def create_payment_intent(self, amount, currency, customer_ref, metadata):
        payment_id = (metadata or {}).get("payment_id")
        for existing in self.intents:
            if payment_id and existing[4].get("payment_id") == payment_id:
                return existing[0]
        intent_id = f"fake_pi_{len(self.intents) + 1}"
        self.intents.append((intent_id, amount, currency, customer_ref, metadata))
        return intent_id

    def confirm_payment(self, intent_id, payment_method_ref):
        self.confirmations.append((intent_id, payment_method_ref))
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        return outcome or PaymentOutcome(status=SUCCEEDED, gateway_txn_id=f"txn_{intent_id}")

    def find_settled_payment(self, intent_id):
        if intent_id not in self.settled:
            return None
        return PaymentOutcome(status=SUCCEEDED, gateway_txn_id=f"txn_{intent_id}")

    def refund(self, gateway_payment_ref, amount, reason, currency="USD"):
        self.refunds.append((gateway_payment_ref, amount, reason))
        if isinstance(self.refund_result, Exception):
            raise self.refund_result
        return self.refund_result or RefundOutcome(
            status=SUCCEEDED, refund_id=f"re_{len(self.refunds)}", amount=amount
        )

    def decline(self, code="card_declined", message="Your card was declined"):
        self.outcomes.append(PaymentOutcome(status=FAILED, decline_code=code, message=message))


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def events():
    return BillingEvents()


@pytest.fixture
def recorded_events(events):
    """Every billing event emitted during the test, in order"""
    seen = []
    events.subscribe("*", lambda name, payload: seen.append((name, payload)))
    return seen


@pytest.fixture
def app(clock, fake_gateway, events):
    """Application on a fresh in-memory database per test"""
    registry = GatewayRegistry()
    registry.register(FakeGateway, factory=lambda: fake_gateway)

    app = create_app("testing", clock=clock, registry=registry, events=events)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def engine(app):
    return app.extensions["billing_engine"]


class BillingFactory:
    """Persists realistic billing rows with sensible defaults"""

    def __init__(self, session, clock):
        self.session = session
        self.clock = clock

    def _save(self, instance):
        self.session.add(instance)
        self.session.commit()
        return instance

    def tenant(self, **overrides):
        base = {"name": fake.company(), "default_currency": "USD"}
        return self._save(Tenant(**{**base, **overrides}))

    def plan(self, tenant, **overrides):
        base = {
            "tenant_id": tenant.id,
            "name": f"{fake.word().title()} Plan",
            "price": Decimal("30.00"),
            "currency": "USD",
            "interval": BillingInterval.MONTHLY,
            "interval_count": 1,
        }
        return self._save(Plan(**{**base, **overrides}))

    def gateway_config(self, tenant, gateway_name="fakepay", **overrides):
        base = {
            "tenant_id": tenant.id,
            "gateway_name": gateway_name,
            "priority": 10,
            "supported_currencies": [],
            "settings": {},
            "is_active": True,
        }
        return self._save(PaymentGatewayConfig(**{**base, **overrides}))

    def subscription(self, tenant, plan, **overrides):
        period_end = self.clock.now()
        base = {
            "tenant_id": tenant.id,
            "client_id": fake.uuid4(),
            "plan_id": plan.id,
            "status": SubscriptionStatus.ACTIVE,
            "current_period_start": datetime(2024, 12, 31, 9, 0, 0),
            "current_period_end": period_end,
            "next_billing_date": period_end,
            "billing_cycle_anchor": datetime(2024, 12, 31, 9, 0, 0),
            "payment_method_id": f"pm_{fake.lexify('????????????')}",
            "currency": "USD",
        }
        return self._save(Subscription(**{**base, **overrides}))

    def paid_invoice(self, subscription, amount=Decimal("30.00"), number=None, gateway="fakepay"):
        invoice = Invoice.build(
            subtotal=amount,
            tenant_id=subscription.tenant_id,
            client_id=subscription.client_id,
            subscription_id=subscription.id,
            invoice_number=number or f"INV-2025-{fake.unique.random_int(1, 999999):06d}",
            currency="USD",
            status=InvoiceStatus.PAID,
            period_start=subscription.current_period_start,
            period_end=subscription.current_period_end,
            due_date=subscription.current_period_start,
            paid_at=subscription.current_period_start,
        )
        self._save(invoice)
        payment = Payment(
            tenant_id=subscription.tenant_id,
            invoice_id=invoice.id,
            amount=amount,
            currency="USD",
            status=PaymentStatus.COMPLETED,
            gateway=gateway,
            gateway_id=f"fake_pi_{fake.lexify('??????')}",
            gateway_txn_id=f"txn_{fake.lexify('??????')}",
        )
        self._save(payment)
        return invoice, payment


@pytest.fixture
def factory(app, clock):
    return BillingFactory(db.session, clock)


@pytest.fixture
def tenant(factory):
    return factory.tenant()


@pytest.fixture
def plan(factory, tenant):
    return factory.plan(tenant)


@pytest.fixture
def gateway_config(factory, tenant):
    return factory.gateway_config(tenant)


@pytest.fixture
def subscription(factory, tenant, plan, gateway_config):
    """An ACTIVE monthly subscription whose renewal is due now"""
    return factory.subscription(tenant, plan)
