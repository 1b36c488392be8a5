"""
Webhook Event Interpreter.

One Stripe delivery is one unit of work: verify, classify, apply the pure
transition, write, commit. Any failure rolls the whole delivery back and is
re-raised so the route answers 400 and Stripe redelivers.
"""

import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from storefront.billing.events import (
    CheckoutCompleted,
    InvoicePaymentFailed,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnhandledEvent,
    parse_event,
    subscription_period,
)
from storefront.billing.state_machine import transition
from storefront.billing.store import SubscriptionStore, to_state
from storefront.config import ReconcilerSettings
from storefront.errors import DomainError, UpstreamFailure, ValidationFailure
from storefront.models.subscription import utcnow

logger = logging.getLogger(__name__)


class WebhookEventInterpreter:
    def __init__(
        self,
        settings: ReconcilerSettings,
        store: SubscriptionStore,
        gateway,
        notifier,
        clock: Callable = utcnow,
    ):
        self.settings = settings
        self.store = store
        self.gateway = gateway
        self.notifier = notifier
        self.clock = clock
        self._handlers = {
            CheckoutCompleted: self._on_checkout_completed,
            SubscriptionUpdated: self._on_subscription_updated,
            SubscriptionDeleted: self._on_subscription_deleted,
            InvoicePaymentFailed: self._on_payment_failed,
        }

    def handle(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify and apply one delivery. Returns a short processing summary."""
        event = self.gateway.construct_event(payload, signature)
        variant = parse_event(event)
        event_type = event["type"]
        log_extra = {"event_id": variant.event_id, "event_type": event_type}

        if isinstance(variant, UnhandledEvent):
            logger.info("Ignoring unhandled webhook event", extra=log_extra)
            return {"event_id": variant.event_id, "status": "ignored"}

        if self.store.is_event_processed(variant.event_id):
            logger.info("Webhook event already processed", extra=log_extra)
            return {"event_id": variant.event_id, "status": "duplicate"}

        try:
            self._handlers[type(variant)](variant)
            self.store.mark_event_processed(variant.event_id, event_type)
            self.store.commit()
        except DomainError as e:
            self.store.rollback()
            logger.warning(
                "Webhook event rejected",
                extra={**log_extra, "error": e.message},
            )
            raise
        except SQLAlchemyError as e:
            self.store.rollback()
            logger.exception("Database error while processing webhook", extra=log_extra)
            raise UpstreamFailure(f"Database error: {e.__class__.__name__}") from e

        logger.info("Webhook event processed", extra=log_extra)
        return {"event_id": variant.event_id, "status": "processed"}

    # ============ HANDLERS ============

    def _on_checkout_completed(self, event: CheckoutCompleted) -> None:
        if self.store.get_plan(event.plan_id) is None:
            raise ValidationFailure(f"Unknown plan: {event.plan_id}")

        if not event.has_period:
            subscription = self.gateway.retrieve_subscription(event.subscription_id)
            event = event.with_period(*subscription_period(subscription))

        row = self.store.find_by_external_id(event.subscription_id)
        state = transition(to_state(row) if row else None, event, self.clock())
        row = self._save(state, row)
        self.store.supersede_others(event.user_id, row.id)

        logger.info(
            "Subscription activated",
            extra={"user_id": event.user_id, "plan_id": event.plan_id,
                   "stripe_subscription_id": event.subscription_id},
        )

    def _on_subscription_updated(self, event: SubscriptionUpdated) -> None:
        # Plan changes made at Stripe only show up as a new price
        plan = self.store.get_plan_by_price(event.price_id) or self.store.get_plan(event.plan_id)
        event = event.with_plan(plan.id if plan else None)

        row = self.store.find_by_external_id(event.subscription_id)
        state = transition(to_state(row) if row else None, event, self.clock())
        row = self._save(state, row)
        if state.is_current:
            self.store.supersede_others(state.user_id, row.id)

        logger.info(
            "Subscription updated",
            extra={"user_id": state.user_id, "status": state.status.value,
                   "stripe_subscription_id": event.subscription_id,
                   "cancel_at_period_end": state.cancel_at_period_end},
        )

    def _save(self, state, row):
        """
        Write a current state. A subscription Stripe has not told us about yet
        takes over the user's unlinked free row instead of adding a second one.
        """
        if row is None and state.is_current:
            placeholder = self.store.find_placeholder(state.user_id)
            if placeholder is not None:
                logger.info(
                    "Linking free subscription to Stripe",
                    extra={"user_id": state.user_id, "subscription_id": placeholder.id,
                           "stripe_subscription_id": state.external_subscription_id},
                )
                return self.store.upsert(state, conflict_key="id", row_id=placeholder.id)
        return self.store.upsert(state)

    def _on_subscription_deleted(self, event: SubscriptionDeleted) -> None:
        row = self.store.find_by_external_id(event.subscription_id)
        if row is not None:
            state = transition(to_state(row), event, self.clock())
            self.store.upsert(state)
            user_id = state.user_id
        elif event.user_id:
            logger.warning(
                "Deleted subscription has no local record",
                extra={"user_id": event.user_id, "stripe_subscription_id": event.subscription_id},
            )
            user_id = event.user_id
        else:
            raise ValidationFailure(
                f"Subscription {event.subscription_id} is unknown and carries no user_id"
            )

        self.store.ensure_subscription(user_id, self.settings.free_plan_code)
        self.notifier.notify_subscription_canceled(user_id, event.subscription_id)

        logger.info(
            "Subscription canceled, user moved to free plan",
            extra={"user_id": user_id, "stripe_subscription_id": event.subscription_id},
        )

    def _on_payment_failed(self, event: InvoicePaymentFailed) -> None:
        row = self.store.find_by_external_id(event.subscription_id)
        current = to_state(row) if row else None
        state = transition(current, event, self.clock())
        if state is current:
            logger.info(
                "Payment failed for canceled subscription",
                extra={"stripe_subscription_id": event.subscription_id, "invoice_id": event.invoice_id},
            )
            return

        self.store.upsert(state)
        self.notifier.notify_payment_failed(state.user_id, event)

        logger.warning(
            "Subscription payment failed",
            extra={"user_id": state.user_id, "invoice_id": event.invoice_id,
                   "stripe_subscription_id": event.subscription_id},
        )
