from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from storefront.billing.events import (
    CheckoutCompleted,
    EventVariant,
    InvoicePaymentFailed,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnhandledEvent,
)
from storefront.errors import ValidationFailure


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


# Stripe reports more states than we keep
STRIPE_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}


class InvalidStateTransition(ValidationFailure):
    pass


def normalize_status(stripe_status: str) -> SubscriptionStatus:
    try:
        return STRIPE_STATUS_MAP[stripe_status]
    except KeyError:
        raise InvalidStateTransition(f"Unknown subscription status: {stripe_status}") from None


@dataclass(frozen=True)
class SubscriptionState:
    """
    Storage-independent snapshot of one subscription row.

    Transitions below take and return these; the record store maps them
    to and from ORM rows.
    """

    user_id: str
    plan_id: str
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    external_subscription_id: Optional[str] = None
    external_customer_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, "status", SubscriptionStatus(self.status))
        start, end = self.current_period_start, self.current_period_end
        if start is not None and end is not None and not start < end:
            raise InvalidStateTransition(
                f"Billing period start {start.isoformat()} must precede end {end.isoformat()}"
            )

    @property
    def is_current(self) -> bool:
        return self.status != SubscriptionStatus.CANCELED

    def is_lapsed(self, now: datetime) -> bool:
        """Scheduled cancellation whose period is over but not yet reported."""
        return (
            self.is_current
            and self.cancel_at_period_end
            and self.current_period_end is not None
            and now >= self.current_period_end
        )

    def effective_status(self, now: datetime) -> SubscriptionStatus:
        if self.is_lapsed(now):
            return SubscriptionStatus.CANCELED
        return self.status


def _cancel(state: SubscriptionState, now: datetime) -> SubscriptionState:
    # canceled_at is write-once
    return replace(
        state,
        status=SubscriptionStatus.CANCELED,
        canceled_at=state.canceled_at or now,
    )


def apply_checkout_completed(
    current: Optional[SubscriptionState], event: CheckoutCompleted, now: datetime
) -> SubscriptionState:
    period_start, period_end = event.period_start, event.period_end
    if not event.has_period and current is not None:
        period_start, period_end = current.current_period_start, current.current_period_end

    return SubscriptionState(
        user_id=event.user_id,
        plan_id=event.plan_id,
        status=SubscriptionStatus.ACTIVE,
        external_subscription_id=event.subscription_id,
        external_customer_id=event.customer_id or (current.external_customer_id if current else None),
        current_period_start=period_start,
        current_period_end=period_end,
        cancel_at_period_end=current.cancel_at_period_end if current else False,
        canceled_at=current.canceled_at if current else None,
    )


def apply_subscription_updated(
    current: Optional[SubscriptionState], event: SubscriptionUpdated, now: datetime
) -> SubscriptionState:
    status = normalize_status(event.status)

    if current is None:
        if not event.user_id or not event.plan_id:
            raise InvalidStateTransition(
                f"Subscription {event.subscription_id} is unknown and the event "
                "does not identify its user and plan"
            )
        canceled_at = None
        base = SubscriptionState(user_id=event.user_id, plan_id=event.plan_id)
    else:
        canceled_at = current.canceled_at
        base = current

    if canceled_at is None and status == SubscriptionStatus.CANCELED:
        canceled_at = event.canceled_at or now

    return replace(
        base,
        plan_id=event.plan_id or base.plan_id,
        status=status,
        external_subscription_id=event.subscription_id,
        external_customer_id=event.customer_id or base.external_customer_id,
        cancel_at_period_end=event.cancel_at_period_end,
        canceled_at=canceled_at,
        current_period_start=event.period_start or base.current_period_start,
        current_period_end=event.period_end or base.current_period_end,
    )


def apply_subscription_deleted(
    current: Optional[SubscriptionState], event: SubscriptionDeleted, now: datetime
) -> SubscriptionState:
    if current is None:
        raise InvalidStateTransition(f"Subscription {event.subscription_id} is unknown")
    return _cancel(current, now)


def apply_payment_failed(
    current: Optional[SubscriptionState], event: InvoicePaymentFailed, now: datetime
) -> SubscriptionState:
    if current is None:
        raise InvalidStateTransition(
            f"No subscription found for invoice {event.invoice_id} ({event.subscription_id})"
        )
    if current.status == SubscriptionStatus.CANCELED:
        return current
    return replace(current, status=SubscriptionStatus.PAST_DUE)


def apply_superseded(current: SubscriptionState, now: datetime) -> SubscriptionState:
    """A user's previous current row, replaced by a newly activated one."""
    return _cancel(current, now)


def free_plan_state(user_id: str, free_plan_id: str) -> SubscriptionState:
    """The resting state every user falls back to."""
    return SubscriptionState(user_id=user_id, plan_id=free_plan_id, status=SubscriptionStatus.ACTIVE)


_TRANSITIONS = {
    CheckoutCompleted: apply_checkout_completed,
    SubscriptionUpdated: apply_subscription_updated,
    SubscriptionDeleted: apply_subscription_deleted,
    InvoicePaymentFailed: apply_payment_failed,
}


def transition(
    current: Optional[SubscriptionState], event: EventVariant, now: datetime
) -> Optional[SubscriptionState]:
    """Next state of the row ``event`` targets. Unhandled events change nothing."""
    if isinstance(event, UnhandledEvent):
        return current
    return _TRANSITIONS[type(event)](current, event, now)
