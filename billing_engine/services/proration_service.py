from billing_engine.billing.proration import calculate_proration


class ProrationService:
    """Prices a plan change for the rest of the current period. Read-only."""

    def __init__(self, repository, clock):
        self.repository = repository
        self.clock = clock

    def calculate_for_plan_change(self, subscription_id, new_plan_id, tenant_id):
        subscription = self.repository.get_subscription(subscription_id, tenant_id)
        new_plan = self.repository.get_plan(new_plan_id, tenant_id)

        current_price = subscription.unit_price
        if current_price is None:
            current_price = subscription.plan.price

        return calculate_proration(
            subscription.current_period_start,
            subscription.current_period_end,
            current_price,
            new_plan.price,
            self.clock.now(),
        )
