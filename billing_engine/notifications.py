import logging
from collections import defaultdict

logger = logging.getLogger(__name__)

INVOICE_CREATED = "invoice.created"
INVOICE_PAID = "invoice.paid"
INVOICE_OVERDUE = "invoice.overdue"
PAYMENT_FAILED = "payment.failed"
PAYMENT_RETRY_SCHEDULED = "payment.retry_scheduled"
PAYMENT_REFUNDED = "payment.refunded"
SUBSCRIPTION_PAST_DUE = "subscription.past_due"
SUBSCRIPTION_CANCELLED = "subscription.cancelled"

KNOWN_EVENTS = frozenset({
    INVOICE_CREATED,
    INVOICE_PAID,
    INVOICE_OVERDUE,
    PAYMENT_FAILED,
    PAYMENT_RETRY_SCHEDULED,
    PAYMENT_REFUNDED,
    SUBSCRIPTION_PAST_DUE,
    SUBSCRIPTION_CANCELLED,
})


class BillingEvents:
    """
    Fire-and-forget hooks for the outside world (email, webhooks, CRM).

    The engine only announces what happened. A handler that raises is
    logged and skipped so delivery problems never reach the billing path.
    """

    def __init__(self):
        self._handlers = defaultdict(list)

    def subscribe(self, event_name, handler):
        if event_name != "*" and event_name not in KNOWN_EVENTS:
            raise ValueError(f"Unknown billing event: {event_name}")
        self._handlers[event_name].append(handler)
        return handler

    def emit(self, event_name, payload):
        if event_name not in KNOWN_EVENTS:
            raise ValueError(f"Unknown billing event: {event_name}")

        logger.info("Billing event", extra={"event": event_name, **_flat(payload)})

        for handler in self._handlers[event_name] + self._handlers["*"]:
            try:
                handler(event_name, payload)
            except Exception:
                logger.exception(
                    "Billing event handler failed",
                    extra={"event": event_name, "handler": getattr(handler, "__name__", repr(handler))},
                )


def _flat(payload):
    return {k: str(v) for k, v in payload.items() if k not in ("message", "args")}
