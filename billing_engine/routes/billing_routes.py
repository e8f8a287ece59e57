from flask import Blueprint, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from billing_engine.engine import get_engine
from billing_engine.extensions import db
from billing_engine.services.cancellation_service import CancelOptions

bp = Blueprint("billing", __name__, url_prefix="/api/v1/billing")

SUBSCRIPTION = "/tenants/<tenant_id>/subscriptions/<subscription_id>"


def _actor_id():
    # Authentication happens upstream; the gateway forwards who acted
    return request.headers.get("X-Actor-Id")


def _payload():
    return request.get_json(silent=True) or {}


def _flag(payload, name, default):
    value = payload.get(name, default)
    if not isinstance(value, bool):
        return None
    return value


@bp.route(f"{SUBSCRIPTION}/renew", methods=["POST"])
def renew(tenant_id, subscription_id):
    """Run one renewal attempt now"""
    result = get_engine().process_renewal(subscription_id, tenant_id)
    status = 200 if result.success or result.not_due or result.cancelled else 402
    return jsonify(result.to_dict()), status


@bp.route(f"{SUBSCRIPTION}/cancel", methods=["POST"])
def cancel(tenant_id, subscription_id):
    payload = _payload()
    at_period_end = _flag(payload, "cancel_at_period_end", True)
    refund = _flag(payload, "refund_unused_time", False)
    if at_period_end is None or refund is None:
        return jsonify({"message": "cancel_at_period_end and refund_unused_time must be booleans"}), 400

    result = get_engine().cancel(
        subscription_id,
        tenant_id,
        CancelOptions(
            cancel_at_period_end=at_period_end,
            reason=payload.get("reason"),
            refund_unused_time=refund,
            actor_id=_actor_id(),
        ),
    )
    return jsonify(result.to_dict()), 200


@bp.route(f"{SUBSCRIPTION}/reactivate", methods=["POST"])
def reactivate(tenant_id, subscription_id):
    subscription = get_engine().reactivate(subscription_id, tenant_id, actor_id=_actor_id())
    return jsonify(subscription.to_dict()), 200


@bp.route(f"{SUBSCRIPTION}/proration", methods=["GET"])
def proration(tenant_id, subscription_id):
    new_plan_id = request.args.get("new_plan_id")
    if not new_plan_id:
        return jsonify({"message": "new_plan_id is required"}), 400

    result = get_engine().calculate_proration(subscription_id, new_plan_id, tenant_id)
    return jsonify(result.to_dict()), 200


@bp.route(f"{SUBSCRIPTION}/failed-payments", methods=["POST"])
def failed_payment(tenant_id, subscription_id):
    """Record a failed charge reported by an external collector"""
    attempt = _payload().get("attempt_number")
    if not isinstance(attempt, int) or isinstance(attempt, bool) or attempt < 1:
        return jsonify({"message": "attempt_number must be a positive integer"}), 400

    outcome = get_engine().handle_failed_payment(subscription_id, attempt, tenant_id)
    return jsonify({
        "subscription_id": subscription_id,
        "attempt_number": outcome.attempt_number,
        "status": outcome.status.value,
        "next_attempt_at": outcome.next_attempt_at.isoformat() if outcome.next_attempt_at else None,
    }), 200


@bp.route(f"{SUBSCRIPTION}/history", methods=["GET"])
def history(tenant_id, subscription_id):
    changes = get_engine().history(subscription_id, tenant_id)
    return jsonify([change.to_dict() for change in changes]), 200


@bp.route(f"{SUBSCRIPTION}/invoices", methods=["GET"])
def invoices(tenant_id, subscription_id):
    return jsonify([i.to_dict() for i in get_engine().invoices(subscription_id, tenant_id)]), 200


@bp.route(f"{SUBSCRIPTION}/payments", methods=["GET"])
def payments(tenant_id, subscription_id):
    return jsonify([p.to_dict() for p in get_engine().payments(subscription_id, tenant_id)]), 200


@bp.route("/tenants/<tenant_id>/invoice-numbers", methods=["POST"])
def next_invoice_number(tenant_id):
    number = get_engine().next_invoice_number(tenant_id)
    return jsonify({"tenant_id": tenant_id, "invoice_number": number}), 201


@bp.route("/health", methods=["GET"])
def health():
    try:
        db.session.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        database = "unavailable"
    status = 200 if database == "ok" else 503
    return jsonify({"status": "ok" if status == 200 else "degraded", "database": database}), status
