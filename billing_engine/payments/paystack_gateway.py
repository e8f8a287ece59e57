import logging
import uuid

import requests

from billing_engine.errors import GatewaySettingsError, GatewayTransient
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
from billing_engine.payments.settings import PaystackSettings

logger = logging.getLogger(__name__)


class PaystackGateway(PaymentGateway):
    """
    Recurring charges against a saved Paystack authorization.

    Paystack has no separate intent object, so ``create_payment_intent``
    reserves a transaction reference locally and ``confirm_payment`` performs
    the actual ``charge_authorization`` call with it.
    """

    name = "paystack"
    display_name = "Paystack"
    settings_class = PaystackSettings
    supported_currencies = frozenset({"NGN", "GHS", "ZAR", "KES", "USD"})
    capabilities = GatewayCapabilities(
        supports_recurring=True,
        supports_refunds=True,
        supports_partial_refunds=True,
    )

    def __init__(self, session=None):
        super().__init__()
        self.session = session or requests.Session()
        self._intents = {}

    def initialize(self, settings):
        if not isinstance(settings, PaystackSettings):
            raise GatewaySettingsError("PaystackGateway expects PaystackSettings", gateway=self.name)
        self.settings = settings

    def create_payment_intent(self, amount, currency, customer_ref, metadata):
        self._require_initialized()
        metadata = metadata or {}
        reference = f"sub_{metadata.get('payment_id') or uuid.uuid4().hex}"
        self._intents[reference] = {
            "amount": to_minor_units(amount, currency),
            "currency": currency.upper(),
            "email": metadata.get("customer_email") or customer_ref,
            "metadata": {k: str(v) for k, v in metadata.items()},
        }
        return reference

    def confirm_payment(self, intent_id, payment_method_ref):
        self._require_initialized()
        pending = self._intents.pop(intent_id, None)
        if pending is None:
            raise GatewaySettingsError("Unknown Paystack reference", gateway=self.name, reference=intent_id)

        payload = dict(pending, authorization_code=payment_method_ref, reference=intent_id)
        body = self._post("/transaction/charge_authorization", payload)
        data = body.get("data") or {}

        if body.get("status") and data.get("status") == "success":
            return PaymentOutcome(
                status=SUCCEEDED,
                gateway_txn_id=str(data.get("id") or data.get("reference") or intent_id),
                raw=body,
            )

        logger.info(
            "Paystack charge not successful",
            extra={"reference": intent_id, "paystack_status": data.get("status")},
        )
        return PaymentOutcome(
            status=FAILED,
            decline_code=data.get("status") or "declined",
            message=data.get("gateway_response") or body.get("message"),
            raw=body,
        )

    def find_settled_payment(self, intent_id):
        self._require_initialized()
        body = self._get(f"/transaction/verify/{intent_id}")
        data = body.get("data") or {}
        if not (body.get("status") and data.get("status") == "success"):
            return None
        return PaymentOutcome(
            status=SUCCEEDED,
            gateway_txn_id=str(data.get("id") or data.get("reference") or intent_id),
            raw=body,
        )

    def refund(self, gateway_payment_ref, amount, reason, currency="USD"):
        self._require_initialized()
        body = self._post(
            "/refund",
            {
                "transaction": gateway_payment_ref,
                "amount": to_minor_units(amount, currency),
                "merchant_note": reason or "",
            },
        )
        data = body.get("data") or {}
        if not body.get("status"):
            return RefundOutcome(status=FAILED, raw=body)

        status = SUCCEEDED if data.get("status") == "processed" else PENDING
        return RefundOutcome(
            status=status,
            refund_id=str(data.get("id") or ""),
            amount=amount,
            raw=body,
        )

    def _headers(self):
        return {
            "Authorization": f"Bearer {self.settings.secret_key}",
            "Content-Type": "application/json",
        }

    def _post(self, path, payload):
        try:
            response = self.session.post(
                f"{self.settings.base_url}{path}",
                json=payload,
                headers=self._headers(),
                timeout=self.settings.timeout_seconds,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise GatewayTransient(str(exc), gateway=self.name) from exc
        return self._parse(response)

    def _get(self, path):
        try:
            response = self.session.get(
                f"{self.settings.base_url}{path}",
                headers=self._headers(),
                timeout=self.settings.timeout_seconds,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise GatewayTransient(str(exc), gateway=self.name) from exc
        return self._parse(response)

    def _parse(self, response):
        if response.status_code in (401, 403):
            raise GatewaySettingsError("Paystack rejected the credentials", gateway=self.name)
        if response.status_code == 429 or response.status_code >= 500:
            raise GatewayTransient(
                f"Paystack returned HTTP {response.status_code}", gateway=self.name
            )

        try:
            return response.json()
        except ValueError as exc:
            raise GatewayTransient("Paystack returned a non-JSON body", gateway=self.name) from exc
