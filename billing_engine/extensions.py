"""
Flask extensions initialization module.
"""

import logging

import redis
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event

# Initialize extensions
db = SQLAlchemy()
redis_client = None

logger = logging.getLogger(__name__)


def init_extensions(app):
    """Initialize the database and, when configured, the Redis connection."""

    db.init_app(app)
    with app.app_context():
        if db.engine.dialect.name == "sqlite":
            enable_sqlite_savepoints(db.engine)
    logger.info("SQLAlchemy initialized")

    if app.config.get("BILLING_LOCK_BACKEND") == "redis":
        init_redis(app)

    return app


def init_redis(app):
    """Initialize the Redis connection used for renewal locks."""
    global redis_client
    redis_url = app.config.get("REDIS_URL", "redis://localhost:6379/0")
    redis_client = redis.Redis.from_url(
        redis_url,
        socket_timeout=5,
        socket_connect_timeout=5,
        health_check_interval=30,
    )
    app.extensions["billing_redis"] = redis_client
    logger.info("Redis client configured", extra={"redis_url": _redact(redis_url)})
    return redis_client


def enable_sqlite_savepoints(engine):
    """
    Let SQLAlchemy own BEGIN on pysqlite so SAVEPOINT and rollback behave
    like on a server database.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    # Take the write lock up front so concurrent writers wait on the busy timeout
    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _redact(url):
    if "@" not in url:
        return url
    scheme, _, rest = url.partition("://")
    return f"{scheme}://***@{rest.split('@', 1)[1]}"
