from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    NO_PAYMENT_METHOD = "no_payment_method"
    GATEWAY_TRANSIENT = "gateway_transient"
    GATEWAY_DECLINED = "gateway_declined"
    GATEWAY_UNAVAILABLE = "gateway_unavailable"
    GATEWAY_MISCONFIGURED = "gateway_misconfigured"
    ALREADY_CANCELLED = "already_cancelled"
    REFUND_SOURCE_MISSING = "refund_source_missing"
    REFUND_EXCEEDS_PAYMENT = "refund_exceeds_payment"
    LOCK_NOT_ACQUIRED = "lock_not_acquired"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE


_STATUS_CODES = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.NO_PAYMENT_METHOD: 402,
    ErrorKind.GATEWAY_TRANSIENT: 503,
    ErrorKind.GATEWAY_DECLINED: 402,
    ErrorKind.GATEWAY_UNAVAILABLE: 503,
    ErrorKind.GATEWAY_MISCONFIGURED: 500,
    ErrorKind.ALREADY_CANCELLED: 409,
    ErrorKind.REFUND_SOURCE_MISSING: 422,
    ErrorKind.REFUND_EXCEEDS_PAYMENT: 422,
    ErrorKind.LOCK_NOT_ACQUIRED: 409,
}

_RETRYABLE = frozenset({
    ErrorKind.GATEWAY_TRANSIENT,
    ErrorKind.GATEWAY_UNAVAILABLE,
    ErrorKind.LOCK_NOT_ACQUIRED,
})


class BillingError(Exception):
    """Base class for every error raised by the billing engine."""

    kind: ErrorKind = None

    def __init__(self, message: str = None, **context):
        self.message = message or self.__class__.__name__
        self.context = context
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def to_dict(self):
        return {
            "error": self.__class__.__name__,
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            "context": {k: str(v) for k, v in self.context.items()},
        }


class NotFound(BillingError):
    kind = ErrorKind.NOT_FOUND


class InvalidTransition(BillingError):
    kind = ErrorKind.INVALID_TRANSITION


class AlreadyCancelled(InvalidTransition):
    kind = ErrorKind.ALREADY_CANCELLED


class NoPaymentMethod(BillingError):
    kind = ErrorKind.NO_PAYMENT_METHOD


class GatewayTransient(BillingError):
    """Network failure or timeout talking to a processor. Safe to retry."""

    kind = ErrorKind.GATEWAY_TRANSIENT


class GatewayDeclined(BillingError):
    """The processor explicitly refused the charge."""

    kind = ErrorKind.GATEWAY_DECLINED

    def __init__(self, message: str = None, decline_code: str = None, **context):
        self.decline_code = decline_code
        super().__init__(message, decline_code=decline_code, **context)


class GatewayUnavailable(BillingError):
    kind = ErrorKind.GATEWAY_UNAVAILABLE


class GatewaySettingsError(BillingError):
    kind = ErrorKind.GATEWAY_MISCONFIGURED


class RefundSourceMissing(BillingError):
    kind = ErrorKind.REFUND_SOURCE_MISSING


class RefundExceedsPayment(BillingError):
    kind = ErrorKind.REFUND_EXCEEDS_PAYMENT


class LockNotAcquired(BillingError):
    kind = ErrorKind.LOCK_NOT_ACQUIRED
