import logging
import uuid

import stripe

from billing_engine.errors import GatewayDeclined, GatewaySettingsError, GatewayTransient
from billing_engine.payments.base import (
    FAILED,
    PENDING,
    SUCCEEDED,
    GatewayCapabilities,
    PaymentGateway,
    PaymentOutcome,
    RefundOutcome,
    to_minor_units,
)
from billing_engine.payments.settings import StripeSettings

logger = logging.getLogger(__name__)

_REFUND_REASONS = {"duplicate", "fraudulent", "requested_by_customer"}


def _as_dict(obj):
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


class StripeGateway(PaymentGateway):
    """Off-session card charges through the Stripe PaymentIntents API."""

    name = "stripe"
    display_name = "Stripe"
    settings_class = StripeSettings
    capabilities = GatewayCapabilities(
        supports_recurring=True,
        supports_refunds=True,
        supports_partial_refunds=True,
    )

    def __init__(self, client_factory=None):
        super().__init__()
        self._client_factory = client_factory or self._build_client
        self.client = None

    @staticmethod
    def _build_client(settings):
        return stripe.StripeClient(
            settings.secret_key,
            http_client=stripe.RequestsClient(timeout=settings.timeout_seconds),
            max_network_retries=settings.max_network_retries,
        )

    def initialize(self, settings):
        if not isinstance(settings, StripeSettings):
            raise GatewaySettingsError("StripeGateway expects StripeSettings", gateway=self.name)
        self.settings = settings
        self.client = self._client_factory(settings)

    def create_payment_intent(self, amount, currency, customer_ref, metadata):
        self._require_initialized()
        params = {
            "amount": to_minor_units(amount, currency),
            "currency": currency.lower(),
            "metadata": {k: str(v) for k, v in (metadata or {}).items()},
            "payment_method_types": ["card"],
        }
        if customer_ref:
            params["customer"] = customer_ref
        idempotency_key = (metadata or {}).get("payment_id") or str(uuid.uuid4())
        intent = self._call(
            self.client.payment_intents.create,
            params=params,
            options={"idempotency_key": f"intent-{idempotency_key}"},
        )
        return intent.id

    def confirm_payment(self, intent_id, payment_method_ref):
        self._require_initialized()
        try:
            intent = self._call(
                self.client.payment_intents.confirm,
                intent_id,
                params={"payment_method": payment_method_ref, "off_session": True},
            )
        except stripe.CardError as exc:
            logger.info(
                "Stripe declined payment intent",
                extra={"intent_id": intent_id, "decline_code": exc.code},
            )
            return PaymentOutcome(
                status=FAILED,
                decline_code=exc.code or "card_declined",
                message=exc.user_message or str(exc),
                raw=_as_dict(getattr(exc, "json_body", None)),
            )

        raw = _as_dict(intent)
        if intent.status == "succeeded":
            return PaymentOutcome(
                status=SUCCEEDED,
                gateway_txn_id=getattr(intent, "latest_charge", None) or intent.id,
                raw=raw,
            )

        # requires_action and friends cannot complete without the customer
        return PaymentOutcome(
            status=FAILED,
            decline_code=intent.status,
            message=f"Payment intent ended in status {intent.status}",
            raw=raw,
        )

    def find_settled_payment(self, intent_id):
        self._require_initialized()
        intent = self._call(self.client.payment_intents.retrieve, intent_id)
        if intent.status != "succeeded":
            return None
        return PaymentOutcome(
            status=SUCCEEDED,
            gateway_txn_id=getattr(intent, "latest_charge", None) or intent.id,
            raw=_as_dict(intent),
        )

    def refund(self, gateway_payment_ref, amount, reason, currency="USD"):
        self._require_initialized()
        params = {"amount": to_minor_units(amount, currency)}
        params["payment_intent" if gateway_payment_ref.startswith("pi_") else "charge"] = gateway_payment_ref
        if reason in _REFUND_REASONS:
            params["reason"] = reason
        else:
            params["reason"] = "requested_by_customer"
            params["metadata"] = {"reason": reason or ""}

        refund = self._call(self.client.refunds.create, params=params)
        status = {"succeeded": SUCCEEDED, "pending": PENDING}.get(refund.status, FAILED)
        return RefundOutcome(status=status, refund_id=refund.id, amount=amount, raw=_as_dict(refund))

    def _call(self, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except stripe.CardError:
            raise
        except (stripe.APIConnectionError, stripe.RateLimitError) as exc:
            raise GatewayTransient(str(exc), gateway=self.name) from exc
        except (stripe.AuthenticationError, stripe.PermissionError) as exc:
            raise GatewaySettingsError(str(exc), gateway=self.name) from exc
        except stripe.InvalidRequestError as exc:
            # unknown customer, detached payment method, intent in the wrong state
            raise GatewayDeclined(
                exc.user_message or str(exc),
                decline_code=exc.code or "invalid_request",
                gateway=self.name,
            ) from exc
        except stripe.StripeError as exc:
            raise GatewayTransient(str(exc), gateway=self.name) from exc
