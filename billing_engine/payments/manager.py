import logging

from billing_engine.errors import GatewaySettingsError, GatewayUnavailable

logger = logging.getLogger(__name__)


class GatewayManager:
    """
    Picks and initialises the gateway a tenant should be charged through.

    Candidates are the tenant's active gateway configs, highest priority
    first. A config is skipped when its gateway is not registered, does not
    take the currency, cannot charge off-session for recurring billing, or
    carries settings that fail validation.
    """

    def __init__(self, repository, registry, default_timeout=10):
        self.repository = repository
        self.registry = registry
        self.default_timeout = default_timeout

    def select_gateway(self, tenant_id, amount, currency, customer_ref=None, is_recurring=True):
        currency = currency.upper()
        for config in self.repository.gateway_configs(tenant_id):
            if config.gateway_name not in self.registry:
                logger.warning(
                    "Tenant configured an unregistered gateway",
                    extra={"tenant_id": tenant_id, "gateway": config.gateway_name},
                )
                continue

            gateway_cls = self.registry.get_class(config.gateway_name)
            if not config.supports_currency(currency):
                continue
            if gateway_cls.supported_currencies and currency not in gateway_cls.supported_currencies:
                continue
            if is_recurring and not gateway_cls.capabilities.supports_recurring:
                continue

            try:
                gateway = self._build(config)
            except GatewaySettingsError as exc:
                logger.error(
                    "Skipping misconfigured gateway",
                    extra={"tenant_id": tenant_id, "gateway": config.gateway_name, "error": exc.message},
                )
                continue

            logger.debug(
                "Selected payment gateway",
                extra={
                    "tenant_id": tenant_id,
                    "gateway": gateway.name,
                    "amount": str(amount),
                    "currency": currency,
                    "customer_ref": customer_ref,
                },
            )
            return gateway

        raise GatewayUnavailable(
            "No active payment gateway supports this charge",
            tenant_id=tenant_id,
            currency=currency,
            recurring=is_recurring,
        )

    def gateway_for(self, tenant_id, gateway_name):
        """The configured gateway that took an earlier payment, ignoring priority."""
        config = self.repository.gateway_config(tenant_id, gateway_name)
        if config is None or gateway_name not in self.registry:
            raise GatewayUnavailable(
                "Gateway is not configured for this tenant",
                tenant_id=tenant_id,
                gateway=gateway_name,
            )
        return self._build(config)

    def _build(self, config):
        gateway_cls = self.registry.get_class(config.gateway_name)
        settings_class = getattr(gateway_cls, "settings_class", None)
        settings = (
            settings_class.from_dict(config.settings, default_timeout=self.default_timeout)
            if settings_class is not None
            else dict(config.settings or {})
        )
        gateway = self.registry.create(config.gateway_name)
        gateway.initialize(settings)
        return gateway
