import logging
import logging.config

from flask import g, has_app_context
from pythonjsonlogger import jsonlogger


class RequestIdFilter(logging.Filter):
    """
    Inject request_id into every log record if present.
    """

    def filter(self, record):
        request_id = None
        if has_app_context():
            request_id = getattr(g, "request_id", None)
        record.request_id = request_id
        return True


def build_logging_config(level="INFO", fmt="json"):
    formatter = "json" if fmt == "json" else "simple"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_id": {
                "()": RequestIdFilter,
            },
        },
        "formatters": {
            "json": {
                "()": jsonlogger.JsonFormatter,
                "fmt": (
                    "%(asctime)s "
                    "%(levelname)s "
                    "%(name)s "
                    "%(message)s "
                    "%(request_id)s "
                    "%(module)s "
                    "%(funcName)s "
                    "%(lineno)d"
                ),
            },
            "simple": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": formatter,
                "filters": ["request_id"],
            },
        },
        "loggers": {
            "billing_engine.audit": {
                "handlers": ["default"],
                "level": "INFO",
                "propagate": False,
            },
            "sqlalchemy.engine": {"level": "WARNING"},
            "urllib3": {"level": "WARNING"},
        },
        "root": {
            "level": level.upper(),
            "handlers": ["default"],
        },
    }


def configure_logging(level="INFO", fmt="json"):
    """
    Configure logging for the application and the Celery workers.

    Args:
        level: Root log level name.
        fmt: "json" for structured output, anything else for plain text.
    """
    logging.config.dictConfig(build_logging_config(level, fmt))
    logger = logging.getLogger(__name__)
    logger.debug("Logging configured", extra={"level": level, "format": fmt})
    return logger


def setup_logging(app):
    """Configure logging from the Flask app config."""
    configure_logging(
        level=app.config.get("LOG_LEVEL", "INFO"),
        fmt=app.config.get("LOG_FORMAT", "json"),
    )
    return app
