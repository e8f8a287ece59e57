from billing_engine.errors import AlreadyCancelled, InvalidTransition
from billing_engine.models.subscription import SubscriptionStatus

S = SubscriptionStatus

# Authoritative lifecycle graph. Anything not listed here is rejected.
TRANSITIONS = {
    S.TRIALING: frozenset({
        S.ACTIVE,
        S.PAST_DUE,
        S.PENDING_CANCELLATION,
        S.CANCELLED,
    }),
    S.ACTIVE: frozenset({
        S.ACTIVE,
        S.PAST_DUE,
        S.PAUSED,
        S.PENDING_CANCELLATION,
        S.CANCELLED,
    }),
    S.PAST_DUE: frozenset({
        S.ACTIVE,
        S.UNPAID,
        S.PENDING_CANCELLATION,
        S.CANCELLED,
    }),
    S.UNPAID: frozenset({
        S.ACTIVE,
        S.CANCELLED,
    }),
    S.PAUSED: frozenset({
        S.ACTIVE,
        S.CANCELLED,
    }),
    S.PENDING_CANCELLATION: frozenset({
        S.ACTIVE,
        S.CANCELLED,
    }),
    S.CANCELLED: frozenset(),
}

# Statuses the renewal sweep will try to charge
BILLABLE_STATUSES = (S.TRIALING, S.ACTIVE, S.PAST_DUE, S.UNPAID)


def can_transition(from_status: SubscriptionStatus, to_status: SubscriptionStatus) -> bool:
    return SubscriptionStatus(to_status) in TRANSITIONS[SubscriptionStatus(from_status)]


def assert_transition(from_status: SubscriptionStatus, to_status: SubscriptionStatus) -> None:
    from_status = SubscriptionStatus(from_status)
    to_status = SubscriptionStatus(to_status)

    if from_status is S.CANCELLED:
        raise AlreadyCancelled(
            "Subscription is already cancelled",
            from_status=from_status.value,
            to_status=to_status.value,
        )

    if to_status not in TRANSITIONS[from_status]:
        raise InvalidTransition(
            f"Cannot move subscription from {from_status.value} to {to_status.value}",
            from_status=from_status.value,
            to_status=to_status.value,
        )


class SubscriptionLifecycle:
    """
    The only place where a subscription's status changes.

    Every accepted transition is written to the audit trail in the same
    session unit of work as the row change; the caller owns the commit.
    """

    def __init__(self, audit_trail, clock):
        self.audit_trail = audit_trail
        self.clock = clock

    def transition(self, subscription, to_status, reason, actor_id=None, metadata=None):
        from_status = subscription.status
        assert_transition(from_status, to_status)

        to_status = SubscriptionStatus(to_status)
        subscription.status = to_status
        subscription.updated_at = self.clock.now()

        self.audit_trail.record(
            subscription,
            from_status=from_status,
            to_status=to_status,
            reason=reason,
            metadata=metadata,
            actor_id=actor_id,
        )
        return subscription

    @staticmethod
    def ensure_not_cancelled(subscription):
        if subscription.status is S.CANCELLED:
            raise AlreadyCancelled(
                "Subscription is already cancelled",
                subscription_id=subscription.id,
            )
