from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, FrozenSet, Optional

SUCCEEDED = "succeeded"
FAILED = "failed"
PENDING = "pending"

# Currencies without a minor unit at the processors we talk to
ZERO_DECIMAL_CURRENCIES = frozenset({"JPY", "KRW", "VND", "CLP", "XAF", "XOF", "UGX"})


@dataclass(frozen=True)
class GatewayCapabilities:
    supports_recurring: bool = True
    supports_refunds: bool = True
    supports_partial_refunds: bool = True


@dataclass
class PaymentOutcome:
    status: str
    gateway_txn_id: Optional[str] = None
    decline_code: Optional[str] = None
    message: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED


@dataclass
class RefundOutcome:
    status: str
    refund_id: Optional[str] = None
    amount: Optional[Decimal] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED


def to_minor_units(amount, currency: str) -> int:
    amount = Decimal(amount)
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value: int, currency: str) -> Decimal:
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(value)
    return (Decimal(value) / 100).quantize(Decimal("0.01"))


class PaymentGateway(ABC):
    """
    Uniform contract every processor integration satisfies.

    Declines come back as a failed ``PaymentOutcome``. Network errors and
    timeouts raise ``GatewayTransient`` so the caller can tell them apart.
    """

    name: str = ""
    display_name: str = ""
    supported_currencies: FrozenSet[str] = frozenset()
    capabilities: GatewayCapabilities = GatewayCapabilities()

    def __init__(self):
        self.settings = None

    @abstractmethod
    def initialize(self, settings) -> None:
        """Bind tenant credentials. Called once per selection."""

    @abstractmethod
    def create_payment_intent(self, amount, currency: str, customer_ref: str, metadata: dict) -> str:
        ...

    @abstractmethod
    def confirm_payment(self, intent_id: str, payment_method_ref: str) -> PaymentOutcome:
        ...

    def find_settled_payment(self, intent_id: str) -> Optional[PaymentOutcome]:
        """
        A SUCCEEDED outcome when the processor already charged ``intent_id``.

        Asked before re-confirming a charge an interrupted attempt left
        behind. ``None`` means nothing is known to have been taken.
        """
        return None

    @abstractmethod
    def refund(self, gateway_payment_ref: str, amount, reason: str, currency: str = "USD") -> RefundOutcome:
        ...

    def supports_currency(self, currency: str) -> bool:
        return not self.supported_currencies or currency.upper() in self.supported_currencies

    def _require_initialized(self):
        if self.settings is None:
            raise RuntimeError(f"{self.name} gateway used before initialize()")
