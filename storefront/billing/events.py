"""
Stripe webhook events as tagged variants.

``parse_event`` turns a verified Stripe event payload into exactly one of the
variants below. Each variant carries only the fields its transition needs,
so the transition functions never look at raw Stripe payloads.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Union

from storefront.errors import ValidationFailure

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    user_id: str
    plan_id: str
    subscription_id: str
    customer_id: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None

    @property
    def has_period(self) -> bool:
        return self.period_start is not None and self.period_end is not None

    def with_period(self, start: Optional[datetime], end: Optional[datetime]) -> "CheckoutCompleted":
        return replace(self, period_start=start, period_end=end)


@dataclass(frozen=True)
class SubscriptionUpdated:
    event_id: str
    subscription_id: str
    status: str
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    customer_id: Optional[str] = None
    user_id: Optional[str] = None
    plan_id: Optional[str] = None
    price_id: Optional[str] = None

    def with_plan(self, plan_id: Optional[str]) -> "SubscriptionUpdated":
        return replace(self, plan_id=plan_id)


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str
    subscription_id: str
    user_id: Optional[str] = None


@dataclass(frozen=True)
class InvoicePaymentFailed:
    event_id: str
    invoice_id: str
    subscription_id: str
    amount_due: Optional[int] = None
    currency: Optional[str] = None
    next_payment_attempt: Optional[datetime] = None
    hosted_invoice_url: Optional[str] = None


@dataclass(frozen=True)
class UnhandledEvent:
    event_id: str
    event_type: str


EventVariant = Union[
    CheckoutCompleted,
    SubscriptionUpdated,
    SubscriptionDeleted,
    InvoicePaymentFailed,
    UnhandledEvent,
]


def from_timestamp(value: Any) -> Optional[datetime]:
    """Stripe unix seconds -> naive UTC datetime."""
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError, OverflowError, OSError):
        raise ValidationFailure(f"Invalid timestamp in event payload: {value!r}") from None


def _object_id(value: Any) -> Optional[str]:
    """Stripe references are either an id string or an expanded object."""
    if isinstance(value, Mapping):
        return value.get("id")
    return value or None


def _require(obj: Mapping[str, Any], key: str, event_type: str) -> Any:
    value = obj.get(key)
    if value in (None, ""):
        raise ValidationFailure(f"{event_type} event is missing required field '{key}'")
    return value


def _first_item(subscription: Mapping[str, Any]) -> Mapping[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def subscription_period(subscription: Mapping[str, Any]):
    """
    Period bounds of a Stripe subscription object.

    Newer API versions report the period on the subscription item rather
    than on the subscription itself.
    """
    item = _first_item(subscription)
    start = subscription.get("current_period_start") or item.get("current_period_start")
    end = subscription.get("current_period_end") or item.get("current_period_end")
    return from_timestamp(start), from_timestamp(end)


def _parse_checkout_completed(event_id: str, session: Mapping[str, Any]) -> EventVariant:
    if session.get("mode") not in (None, "subscription"):
        return UnhandledEvent(event_id=event_id, event_type=CHECKOUT_COMPLETED)

    metadata = session.get("metadata") or {}
    user_id = _require(metadata, "user_id", CHECKOUT_COMPLETED)
    plan_id = _require(metadata, "plan_id", CHECKOUT_COMPLETED)
    subscription_id = _object_id(_require(session, "subscription", CHECKOUT_COMPLETED))

    period_start = period_end = None
    reported = session.get("subscription_data") or (
        session["subscription"] if isinstance(session.get("subscription"), Mapping) else None
    )
    if reported:
        period_start, period_end = subscription_period(reported)

    return CheckoutCompleted(
        event_id=event_id,
        user_id=str(user_id),
        plan_id=str(plan_id),
        subscription_id=subscription_id,
        customer_id=_object_id(session.get("customer")),
        period_start=period_start,
        period_end=period_end,
    )


def _parse_subscription_updated(event_id: str, subscription: Mapping[str, Any]) -> SubscriptionUpdated:
    metadata = subscription.get("metadata") or {}
    period_start, period_end = subscription_period(subscription)
    price = _first_item(subscription).get("price") or {}

    return SubscriptionUpdated(
        event_id=event_id,
        subscription_id=_require(subscription, "id", SUBSCRIPTION_UPDATED),
        status=_require(subscription, "status", SUBSCRIPTION_UPDATED),
        cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
        canceled_at=from_timestamp(subscription.get("canceled_at")),
        period_start=period_start,
        period_end=period_end,
        customer_id=_object_id(subscription.get("customer")),
        user_id=metadata.get("user_id"),
        plan_id=metadata.get("plan_id"),
        price_id=_object_id(price),
    )


def _parse_subscription_deleted(event_id: str, subscription: Mapping[str, Any]) -> SubscriptionDeleted:
    metadata = subscription.get("metadata") or {}
    return SubscriptionDeleted(
        event_id=event_id,
        subscription_id=_require(subscription, "id", SUBSCRIPTION_DELETED),
        user_id=metadata.get("user_id"),
    )


def _parse_invoice_payment_failed(event_id: str, invoice: Mapping[str, Any]) -> EventVariant:
    subscription_ref = invoice.get("subscription")
    if not subscription_ref:
        details = (invoice.get("parent") or {}).get("subscription_details") or {}
        subscription_ref = details.get("subscription")
    if not subscription_ref:
        # One-off invoice, nothing to reconcile
        return UnhandledEvent(event_id=event_id, event_type=INVOICE_PAYMENT_FAILED)

    return InvoicePaymentFailed(
        event_id=event_id,
        invoice_id=_require(invoice, "id", INVOICE_PAYMENT_FAILED),
        subscription_id=_object_id(subscription_ref),
        amount_due=invoice.get("amount_due"),
        currency=invoice.get("currency"),
        next_payment_attempt=from_timestamp(invoice.get("next_payment_attempt")),
        hosted_invoice_url=invoice.get("hosted_invoice_url"),
    )


_PARSERS = {
    CHECKOUT_COMPLETED: _parse_checkout_completed,
    SUBSCRIPTION_UPDATED: _parse_subscription_updated,
    SUBSCRIPTION_DELETED: _parse_subscription_deleted,
    INVOICE_PAYMENT_FAILED: _parse_invoice_payment_failed,
}


def parse_event(event: Mapping[str, Any]) -> EventVariant:
    """Classify a verified Stripe event into its variant."""
    if not isinstance(event, Mapping):
        raise ValidationFailure("Malformed event payload")

    event_id = event.get("id")
    event_type = event.get("type")
    data_object = (event.get("data") or {}).get("object")
    if not event_id or not event_type or not isinstance(data_object, Mapping):
        raise ValidationFailure("Malformed event payload")

    parser = _PARSERS.get(event_type)
    if parser is None:
        return UnhandledEvent(event_id=event_id, event_type=event_type)
    return parser(event_id, data_object)
