import os


class ConfigurationError(Exception):
    """
    Raised when an invalid or unsupported configuration is requested.
    """
    pass


def _env_int(name, default):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


class BaseConfig:
    """
    Base configuration shared by all environments.
    """

    # Flask
    DEBUG = False
    TESTING = False
    SECRET_KEY = os.getenv("SECRET_KEY")

    # Application
    APP_NAME = "Billing Lifecycle Engine"
    ENVIRONMENT = "base"

    # Database
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///billing.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Redis / locking
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    BILLING_LOCK_BACKEND = os.getenv("BILLING_LOCK_BACKEND", "redis")
    BILLING_LOCK_TTL = _env_int("BILLING_LOCK_TTL", 300)

    # Invoice numbering
    INVOICE_NUMBER_PREFIX = os.getenv("INVOICE_NUMBER_PREFIX", "INV")
    INVOICE_NUMBER_PAD = _env_int("INVOICE_NUMBER_PAD", 6)

    # Dunning
    DUNNING_MAX_ATTEMPTS = _env_int("DUNNING_MAX_ATTEMPTS", 3)
    DUNNING_UNPAID_AFTER = _env_int("DUNNING_UNPAID_AFTER", 6)
    PAYMENT_RETRY_INTERVAL_HOURS = _env_int("PAYMENT_RETRY_INTERVAL_HOURS", 24)

    # Gateways
    GATEWAY_TIMEOUT_SECONDS = _env_int("GATEWAY_TIMEOUT_SECONDS", 10)
    DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "USD")

    # Scheduling
    RENEWAL_BATCH_SIZE = _env_int("RENEWAL_BATCH_SIZE", 100)
    RENEWAL_SWEEP_MINUTES = _env_int("RENEWAL_SWEEP_MINUTES", 15)

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_FORMAT = os.getenv("LOG_FORMAT", "json")

    # Metrics
    METRICS_ENABLED = os.getenv("METRICS_ENABLED", "false").lower() == "true"

    @classmethod
    def validate(cls):
        """Hook for environment specific checks. Returns the config class."""
        if cls.BILLING_LOCK_BACKEND not in ("redis", "memory"):
            raise ConfigurationError(
                f"BILLING_LOCK_BACKEND must be 'redis' or 'memory', got {cls.BILLING_LOCK_BACKEND!r}"
            )
        if cls.DUNNING_MAX_ATTEMPTS < 1:
            raise ConfigurationError("DUNNING_MAX_ATTEMPTS must be at least 1")
        if cls.DUNNING_UNPAID_AFTER < cls.DUNNING_MAX_ATTEMPTS:
            raise ConfigurationError(
                "DUNNING_UNPAID_AFTER cannot be lower than DUNNING_MAX_ATTEMPTS"
            )
        return cls
