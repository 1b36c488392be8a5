import logging

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required
from sqlalchemy.exc import SQLAlchemyError

from storefront.billing import FeatureLimitGate, SubscriptionStore
from storefront.errors import UpstreamFailure, ValidationFailure
from storefront.security import current_user_email, current_user_id
from storefront.services import StoreService, StripeService

logger = logging.getLogger(__name__)

bp = Blueprint("subscription", __name__, url_prefix="/api/subscription")

CANCEL_ACTIONS = {"cancel": True, "reactivate": False}


def _settings():
    return current_app.config["RECONCILER_SETTINGS"]


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationFailure("Request body must be a JSON object")
    return data


def _commit(store):
    try:
        store.commit()
    except SQLAlchemyError as e:
        store.rollback()
        logger.exception("Database error while saving subscription")
        raise UpstreamFailure(f"Database error: {e.__class__.__name__}") from e


@bp.route("", methods=["GET"])
@jwt_required()
def get_subscription():
    """Current subscription with its plan and feature limits."""
    user_id = current_user_id()
    store = SubscriptionStore()
    subscription = store.ensure_subscription(user_id, _settings().free_plan_code)
    _commit(store)
    return jsonify(subscription.to_dict(include_plan=True)), 200


@bp.route("", methods=["POST"])
@jwt_required()
def create_checkout():
    data = _json_body()
    plan_id = data.get("planId")
    success_url = data.get("successUrl")
    cancel_url = data.get("cancelUrl")
    if not plan_id or not success_url or not cancel_url:
        raise ValidationFailure("planId, successUrl and cancelUrl are required")

    plan = SubscriptionStore().get_plan(plan_id)
    if plan is None or plan.status != "active":
        raise ValidationFailure("Invalid plan selected")
    if not plan.stripe_price_id:
        raise ValidationFailure("Selected plan cannot be purchased")

    user_id = current_user_id()
    session_id, url = StripeService(_settings()).create_checkout_session(
        user_id=user_id,
        email=current_user_email(),
        plan=plan,
        success_url=success_url,
        cancel_url=cancel_url,
    )
    return jsonify({"sessionId": session_id, "url": url}), 200


@bp.route("", methods=["PUT"])
@jwt_required()
def update_subscription():
    """Schedule (``cancel``) or withdraw (``reactivate``) cancellation at period end."""
    action = _json_body().get("action")
    if action not in CANCEL_ACTIONS:
        raise ValidationFailure("Invalid action")

    user_id = current_user_id()
    store = SubscriptionStore()
    subscription = store.find_by_user(user_id)
    if subscription is None or not subscription.stripe_subscription_id:
        raise ValidationFailure("No active subscription found")

    cancel_at_period_end = CANCEL_ACTIONS[action]
    StripeService(_settings()).set_cancel_at_period_end(
        subscription.stripe_subscription_id, cancel_at_period_end
    )

    # Stripe's own subscription.updated event will confirm this
    subscription.cancel_at_period_end = cancel_at_period_end
    _commit(store)

    logger.info(
        "Subscription cancellation toggled",
        extra={"user_id": user_id, "action": action,
               "stripe_subscription_id": subscription.stripe_subscription_id},
    )
    return jsonify({"success": True}), 200


@bp.route("/plans", methods=["GET"])
def list_plans():
    plans = SubscriptionStore().list_active_plans()
    return jsonify({"plans": [plan.to_dict() for plan in plans]}), 200


@bp.route("/usage", methods=["GET"])
@jwt_required()
def usage():
    user_id = current_user_id()
    store = SubscriptionStore()
    gate = FeatureLimitGate(store, _settings().free_plan_code)
    counts = {"stores": StoreService(gate).count_stores(user_id)}
    return jsonify(gate.usage_summary(user_id, counts)), 200
