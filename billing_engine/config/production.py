import os

from .base import BaseConfig, ConfigurationError


class ProductionConfig(BaseConfig):
    """
    Production configuration.
    """

    DEBUG = False
    ENVIRONMENT = "production"

    # MUST be set via environment variable in real production
    SECRET_KEY = os.getenv("SECRET_KEY")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL")
    REDIS_URL = os.getenv("REDIS_URL")

    @classmethod
    def validate(cls):
        super().validate()
        if not cls.SQLALCHEMY_DATABASE_URI:
            raise ConfigurationError("DATABASE_URL must be set in production")
        if "sqlite" in cls.SQLALCHEMY_DATABASE_URI.lower():
            raise ConfigurationError("SQLite is not suitable for production")
        if cls.BILLING_LOCK_BACKEND == "redis" and not cls.REDIS_URL:
            raise ConfigurationError("REDIS_URL is required for renewal locking")
        return cls
