import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from billing_engine.errors import BillingError

logger = logging.getLogger(__name__)


def register_error_handlers(app):
    """Register JSON error handlers for the application"""

    @app.errorhandler(BillingError)
    def billing_error(e):
        log = logger.warning if e.status_code < 500 else logger.error
        log(
            f"Billing error: {e.kind.value} - Path: {request.path}",
            extra={"error_kind": e.kind.value, **{k: str(v) for k, v in e.context.items()}},
        )
        body = e.to_dict()
        body["path"] = request.path
        return jsonify(body), e.status_code

    @app.errorhandler(HTTPException)
    def http_error(e):
        logger.info(f"HTTP {e.code}: {request.method} {request.path}")
        return jsonify({
            "error": e.name,
            "message": e.description,
            "path": request.path,
        }), e.code

    @app.errorhandler(Exception)
    def server_error(e):
        logger.exception(f"Unhandled error - Path: {request.path}")
        return jsonify({
            "error": "Server error",
            "message": "An internal server error occurred. Please try again later.",
            "path": request.path,
        }), 500
