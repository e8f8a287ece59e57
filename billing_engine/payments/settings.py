from dataclasses import dataclass

from billing_engine.errors import GatewaySettingsError

MAX_TIMEOUT_SECONDS = 60


def _require(raw, key, gateway):
    value = raw.get(key)
    if not value or not isinstance(value, str):
        raise GatewaySettingsError(f"{gateway} settings require '{key}'", gateway=gateway, field=key)
    return value


def _timeout(raw, default, gateway):
    value = raw.get("timeout_seconds", default)
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise GatewaySettingsError("timeout_seconds must be a number", gateway=gateway)
    if not 0 < value <= MAX_TIMEOUT_SECONDS:
        raise GatewaySettingsError(
            f"timeout_seconds must be within (0, {MAX_TIMEOUT_SECONDS}]", gateway=gateway
        )
    return value


@dataclass(frozen=True)
class StripeSettings:
    """
    secret_key           sk_live_... / sk_test_...
    timeout_seconds      per request, bounded
    max_network_retries  stripe-python's own idempotent retries
    """

    secret_key: str
    timeout_seconds: float = 10
    max_network_retries: int = 2

    @classmethod
    def from_dict(cls, raw, default_timeout=10):
        raw = raw or {}
        secret_key = _require(raw, "secret_key", "stripe")
        if not secret_key.startswith(("sk_", "rk_")):
            raise GatewaySettingsError("Stripe secret_key must be a secret or restricted key", gateway="stripe")
        retries = raw.get("max_network_retries", 2)
        if not isinstance(retries, int) or retries < 0:
            raise GatewaySettingsError("max_network_retries must be a non-negative integer", gateway="stripe")
        return cls(
            secret_key=secret_key,
            timeout_seconds=_timeout(raw, default_timeout, "stripe"),
            max_network_retries=retries,
        )


@dataclass(frozen=True)
class PaystackSettings:
    """
    secret_key       sk_live_... / sk_test_...
    base_url         API root, overridable for sandboxes
    timeout_seconds  per request, bounded
    """

    secret_key: str
    base_url: str = "https://api.paystack.co"
    timeout_seconds: float = 10

    @classmethod
    def from_dict(cls, raw, default_timeout=10):
        raw = raw or {}
        base_url = raw.get("base_url", cls.base_url)
        if not isinstance(base_url, str) or not base_url.startswith("https://"):
            raise GatewaySettingsError("Paystack base_url must be an https URL", gateway="paystack")
        return cls(
            secret_key=_require(raw, "secret_key", "paystack"),
            base_url=base_url.rstrip("/"),
            timeout_seconds=_timeout(raw, default_timeout, "paystack"),
        )
