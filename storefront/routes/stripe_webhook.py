import logging

from flask import Blueprint, current_app, jsonify, request

from storefront.billing import SubscriptionStore, WebhookEventInterpreter
from storefront.errors import DomainError
from storefront.services import NotificationService, StripeService

logger = logging.getLogger(__name__)

bp = Blueprint("stripe_webhook", __name__, url_prefix="/api/webhooks")


def build_interpreter():
    settings = current_app.config["RECONCILER_SETTINGS"]
    return WebhookEventInterpreter(
        settings=settings,
        store=SubscriptionStore(),
        gateway=StripeService(settings),
        notifier=NotificationService(),
    )


@bp.route("/stripe", methods=["POST"])
def stripe_webhook():
    """
    Stripe webhook endpoint.

    Any verification or processing failure answers 400 so Stripe retries
    the delivery; nothing is written in that case.
    """
    payload = request.get_data()
    sig_header = request.headers.get("stripe-signature")

    try:
        result = build_interpreter().handle(payload, sig_header)
    except DomainError as e:
        logger.warning("Webhook processing failed", extra={"error": e.message})
        return jsonify({"error": e.message}), 400

    logger.info("Webhook acknowledged", extra=result)
    return jsonify({"received": True}), 200
