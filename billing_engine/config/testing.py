from .base import BaseConfig


class TestingConfig(BaseConfig):
    """
    Test configuration: in-memory database, in-process locks.
    """

    TESTING = True
    ENVIRONMENT = "testing"

    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    BILLING_LOCK_BACKEND = "memory"
    METRICS_ENABLED = False
    LOG_FORMAT = "simple"
