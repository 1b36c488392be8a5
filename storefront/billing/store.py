import logging
from typing import List, Optional

from storefront.billing.state_machine import (
    SubscriptionState,
    SubscriptionStatus,
    apply_superseded,
    free_plan_state,
)
from storefront.errors import UpstreamFailure
from storefront.extensions import db
from storefront.models import StripeEvent, Subscription, SubscriptionPlan
from storefront.models.subscription import utcnow

logger = logging.getLogger(__name__)

CONFLICT_KEYS = ("stripe_subscription_id", "id")


def to_state(row: Subscription) -> SubscriptionState:
    return SubscriptionState(
        user_id=row.user_id,
        plan_id=row.subscription_plan_id,
        status=row.status,
        external_subscription_id=row.stripe_subscription_id,
        external_customer_id=row.stripe_customer_id,
        current_period_start=row.current_period_start,
        current_period_end=row.current_period_end,
        cancel_at_period_end=bool(row.cancel_at_period_end),
        canceled_at=row.canceled_at,
    )


def _apply(row: Subscription, state: SubscriptionState) -> Subscription:
    row.user_id = state.user_id
    row.subscription_plan_id = state.plan_id
    row.status = SubscriptionStatus(state.status).value
    row.stripe_subscription_id = state.external_subscription_id
    row.stripe_customer_id = state.external_customer_id
    row.current_period_start = state.current_period_start
    row.current_period_end = state.current_period_end
    row.cancel_at_period_end = state.cancel_at_period_end
    row.canceled_at = state.canceled_at
    return row


class SubscriptionStore:
    """
    Subscription Record Store backed by the Postgres tables.

    Writes go through the request's SQLAlchemy session; committing or
    rolling back is the caller's job, so one webhook delivery is one
    unit of work.
    """

    def __init__(self, session=None):
        self.session = session or db.session

    # ---- subscriptions -------------------------------------------------

    def find_by_user(self, user_id: str) -> Optional[Subscription]:
        """The user's current (non-canceled) subscription, newest first."""
        return (
            self.session.query(Subscription)
            .filter(
                Subscription.user_id == user_id,
                Subscription.status != SubscriptionStatus.CANCELED.value,
            )
            .order_by(Subscription.created_at.desc())
            .first()
        )

    def find_by_external_id(self, external_id: str) -> Optional[Subscription]:
        if not external_id:
            return None
        return (
            self.session.query(Subscription)
            .filter_by(stripe_subscription_id=external_id)
            .first()
        )

    def find_placeholder(self, user_id: str) -> Optional[Subscription]:
        """The user's current row when it is not yet linked to Stripe."""
        if not user_id:
            return None
        current = self.find_by_user(user_id)
        if current is None or current.stripe_subscription_id:
            return None
        return current

    def upsert(self, state: SubscriptionState, conflict_key: str = "stripe_subscription_id",
               row_id: Optional[str] = None) -> Subscription:
        """
        Insert or update the row identified by ``conflict_key``.

        ``stripe_subscription_id`` matches on the external id carried by the
        state; ``id`` matches on ``row_id``. Without a match a new row is
        inserted.
        """
        if conflict_key not in CONFLICT_KEYS:
            raise ValueError(f"Unsupported conflict key: {conflict_key}")

        row = None
        if conflict_key == "stripe_subscription_id":
            row = self.find_by_external_id(state.external_subscription_id)
        elif row_id:
            row = self.session.get(Subscription, row_id)

        if row is None:
            row = Subscription()
            self.session.add(row)
            logger.info(
                "Inserting subscription",
                extra={"user_id": state.user_id, "plan_id": state.plan_id,
                       "stripe_subscription_id": state.external_subscription_id},
            )

        _apply(row, state)
        self.session.flush()
        return row

    def update_status(self, external_id: str, status: SubscriptionStatus, **fields) -> None:
        row = self.find_by_external_id(external_id)
        if row is None:
            logger.warning("Status update for unknown subscription", extra={"stripe_subscription_id": external_id})
            return
        row.status = SubscriptionStatus(status).value
        for name, value in fields.items():
            setattr(row, name, value)
        self.session.flush()

    def supersede_others(self, user_id: str, keep_row_id: str) -> int:
        """Cancel every other current row of ``user_id``."""
        now = utcnow()
        others = (
            self.session.query(Subscription)
            .filter(
                Subscription.user_id == user_id,
                Subscription.id != keep_row_id,
                Subscription.status != SubscriptionStatus.CANCELED.value,
            )
            .all()
        )
        for row in others:
            _apply(row, apply_superseded(to_state(row), now))
        if others:
            logger.info("Superseded subscriptions", extra={"user_id": user_id, "count": len(others)})
            self.session.flush()
        return len(others)

    def ensure_subscription(self, user_id: str, free_plan_code: str = "free") -> Subscription:
        """Current row for ``user_id``, provisioning a free one if there is none."""
        current = self.find_by_user(user_id)
        if current is not None:
            return current
        free_plan = self.get_plan_by_code(free_plan_code)
        if free_plan is None:
            raise UpstreamFailure(f"Plan '{free_plan_code}' is not configured")
        return self.upsert(free_plan_state(user_id, free_plan.id), conflict_key="id")

    # ---- plans ---------------------------------------------------------

    def get_plan(self, plan_id: str) -> Optional[SubscriptionPlan]:
        if not plan_id:
            return None
        return self.session.get(SubscriptionPlan, plan_id)

    def get_plan_by_code(self, code: str) -> Optional[SubscriptionPlan]:
        return self.session.query(SubscriptionPlan).filter_by(code=code).first()

    def get_plan_by_price(self, stripe_price_id: str) -> Optional[SubscriptionPlan]:
        if not stripe_price_id:
            return None
        return self.session.query(SubscriptionPlan).filter_by(stripe_price_id=stripe_price_id).first()

    def list_active_plans(self) -> List[SubscriptionPlan]:
        return (
            self.session.query(SubscriptionPlan)
            .filter_by(status="active")
            .order_by(SubscriptionPlan.price.asc())
            .all()
        )

    # ---- processed event ledger ---------------------------------------

    def is_event_processed(self, event_id: str) -> bool:
        return self.session.query(StripeEvent).filter_by(event_id=event_id).first() is not None

    def mark_event_processed(self, event_id: str, event_type: str) -> None:
        self.session.add(StripeEvent(event_id=event_id, event_type=event_type))
        self.session.flush()

    # ---- unit of work --------------------------------------------------

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
