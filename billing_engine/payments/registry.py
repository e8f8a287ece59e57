from billing_engine.errors import GatewayUnavailable


class GatewayRegistry:
    """Maps gateway names to their implementation classes."""

    def __init__(self):
        self._gateways = {}

    def register(self, gateway_cls, factory=None):
        if not gateway_cls.name:
            raise ValueError("Gateway classes must declare a name")
        self._gateways[gateway_cls.name] = (gateway_cls, factory or gateway_cls)
        return gateway_cls

    def unregister(self, name):
        self._gateways.pop(name, None)

    def get_class(self, name):
        try:
            return self._gateways[name][0]
        except KeyError:
            raise GatewayUnavailable(f"Unknown payment gateway '{name}'", gateway=name)

    def create(self, name):
        self.get_class(name)
        return self._gateways[name][1]()

    def __contains__(self, name):
        return name in self._gateways

    def names(self):
        return sorted(self._gateways)


def default_registry():
    from billing_engine.payments.paystack_gateway import PaystackGateway
    from billing_engine.payments.stripe_gateway import StripeGateway

    registry = GatewayRegistry()
    registry.register(StripeGateway)
    registry.register(PaystackGateway)
    return registry
