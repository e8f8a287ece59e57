"""
Subscription billing lifecycle engine.

``create_app`` builds the Flask application: configuration, logging,
database and lock backends, the billing engine itself, error handlers and
the HTTP blueprint.
"""

import logging
import uuid

from flask import Flask, g, request

from billing_engine.config import get_config
from billing_engine.engine import BillingEngine
from billing_engine.error_handlers import register_error_handlers
from billing_engine.extensions import db, init_extensions
from billing_engine.logging_config import setup_logging
from billing_engine.observability.metrics import MetricsManager, register_metrics
from billing_engine.utils.redis_lock import build_lock_provider

logger = logging.getLogger(__name__)


def create_app(config_name=None, clock=None, registry=None, events=None, **overrides):
    """
    Application factory.

    ``clock``, ``registry`` and ``events`` replace the engine's defaults;
    keyword ``overrides`` are applied on top of the selected config class.
    """
    config = get_config(config_name)

    app = Flask(__name__)
    app.config.from_object(config)
    app.config.update(overrides)

    setup_logging(app)
    init_extensions(app)

    metrics = MetricsManager(enabled=app.config.get("METRICS_ENABLED", False))
    app.extensions["billing_engine"] = BillingEngine(
        db.session,
        clock=clock,
        events=events,
        registry=registry,
        locks=build_lock_provider(app.config, app.extensions.get("billing_redis")),
        metrics=metrics,
        config=app.config,
    )

    register_error_handlers(app)
    register_metrics(app, metrics)

    from billing_engine.routes.billing_routes import bp as billing_bp

    app.register_blueprint(billing_bp)

    @app.before_request
    def assign_request_id():
        g.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

    @app.after_request
    def echo_request_id(response):
        response.headers["X-Request-ID"] = g.get("request_id", "")
        return response

    @app.cli.command("init-db")
    def init_db():
        """Create all billing tables."""
        db.create_all()
        logger.info("Database tables created")

    logger.info(
        "Billing engine started",
        extra={"environment": app.config.get("ENVIRONMENT"), "lock_backend": app.config.get("BILLING_LOCK_BACKEND")},
    )
    return app
