from .base import BaseConfig


class DevelopmentConfig(BaseConfig):
    """
    Development configuration.
    """

    DEBUG = True
    ENVIRONMENT = "development"

    SECRET_KEY = "dev-secret-key"
    LOG_LEVEL = "DEBUG"
    LOG_FORMAT = "simple"
