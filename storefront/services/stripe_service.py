import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import stripe

from storefront.config import ReconcilerSettings
from storefront.errors import AuthenticationFailure, UpstreamFailure, ValidationFailure

logger = logging.getLogger(__name__)


@contextmanager
def stripe_operation_context(operation_name: str, status_code: int = 500, **context_vars):
    """
    Log a Stripe call and translate Stripe errors into UpstreamFailure.

    Example:
        with stripe_operation_context("create_checkout_session", user_id=user_id):
            stripe.checkout.Session.create(...)
    """
    start_time = datetime.now()
    logger.info(
        f"Starting Stripe operation: {operation_name}",
        extra={"operation": operation_name, **context_vars},
    )
    try:
        yield
    except stripe.StripeError as e:
        duration = (datetime.now() - start_time).total_seconds()
        logger.error(
            f"Stripe operation failed: {operation_name}",
            exc_info=True,
            extra={
                "operation": operation_name,
                "duration_seconds": duration,
                "error_type": type(e).__name__,
                **context_vars,
            },
        )
        message = getattr(e, "user_message", None) or str(e) or "Stripe request failed"
        raise UpstreamFailure(message, status_code=status_code) from e
    else:
        duration = (datetime.now() - start_time).total_seconds()
        logger.info(
            f"Completed Stripe operation: {operation_name}",
            extra={"operation": operation_name, "duration_seconds": duration, **context_vars},
        )


class StripeService:
    """
    Thin gateway over the Stripe API.

    Every call passes the API key and version from the settings object
    explicitly instead of mutating the ``stripe`` module globals.
    """

    def __init__(self, settings: ReconcilerSettings):
        self.settings = settings

    @property
    def _request_options(self) -> Dict[str, Any]:
        return {
            "api_key": self.settings.stripe_secret_key,
            "stripe_version": self.settings.stripe_api_version,
        }

    # ============ WEBHOOKS ============

    def construct_event(self, payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """
        Verify the signature header and return the event as plain dicts.

        Nothing in the payload is trusted before the signature checks out.
        """
        if not sig_header:
            raise AuthenticationFailure("Missing stripe-signature header")
        if not self.settings.stripe_webhook_secret:
            raise AuthenticationFailure("Webhook signing secret is not configured")

        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError:
                raise ValidationFailure("Webhook payload is not valid UTF-8") from None

        try:
            stripe.WebhookSignature.verify_header(
                payload,
                sig_header,
                self.settings.stripe_webhook_secret,
                tolerance=self.settings.webhook_tolerance,
            )
        except stripe.SignatureVerificationError as e:
            logger.warning("Invalid webhook signature", extra={"reason": str(e)})
            raise AuthenticationFailure("Invalid webhook signature") from e

        try:
            event = json.loads(payload)
        except ValueError:
            logger.warning("Invalid webhook payload")
            raise ValidationFailure("Invalid webhook payload") from None
        if not isinstance(event, dict):
            logger.warning("Webhook payload is not an object", extra={"payload_type": type(event).__name__})
            raise ValidationFailure("Invalid webhook payload")

        logger.info(
            "Stripe webhook received",
            extra={"event_id": event.get("id"), "event_type": event.get("type"),
                   "livemode": event.get("livemode")},
        )
        return event

    # ============ CHECKOUT ============

    def create_checkout_session(
        self,
        user_id: str,
        email: Optional[str],
        plan,
        success_url: str,
        cancel_url: str,
    ) -> Tuple[str, str]:
        """Create a hosted subscription checkout. Returns ``(session_id, url)``."""
        metadata = {"user_id": user_id, "plan_id": plan.id}
        session_data = {
            "customer_email": email,
            "client_reference_id": user_id,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "mode": "subscription",
            "line_items": [{"price": plan.stripe_price_id, "quantity": 1}],
            "metadata": metadata,
            # Subscription events only see the subscription's own metadata
            "subscription_data": {"metadata": metadata},
        }
        if plan.trial_days:
            session_data["subscription_data"]["trial_period_days"] = plan.trial_days

        with stripe_operation_context(
            "create_checkout_session", status_code=400, user_id=user_id, plan_code=plan.code
        ):
            session = stripe.checkout.Session.create(**session_data, **self._request_options)

        logger.info(
            "Stripe checkout session created",
            extra={"session_id": session["id"], "user_id": user_id, "plan_code": plan.code},
        )
        return session["id"], session["url"]

    # ============ SUBSCRIPTIONS ============

    def set_cancel_at_period_end(self, subscription_id: str, cancel_at_period_end: bool):
        with stripe_operation_context(
            "set_cancel_at_period_end",
            status_code=400,
            subscription_id=subscription_id,
            cancel_at_period_end=cancel_at_period_end,
        ):
            return stripe.Subscription.modify(
                subscription_id,
                cancel_at_period_end=cancel_at_period_end,
                **self._request_options,
            )

    def retrieve_subscription(self, subscription_id: str):
        with stripe_operation_context("retrieve_subscription", subscription_id=subscription_id):
            return stripe.Subscription.retrieve(subscription_id, **self._request_options)
