import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Index

from storefront.extensions import db


def utcnow():
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _uuid():
    return str(uuid.uuid4())


def _isoformat(value):
    return value.isoformat() if value else None


class SubscriptionPlan(db.Model):
    __tablename__ = "subscription_plans"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    code = db.Column(db.String(50), unique=True, nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Price in cents
    price = db.Column(db.Integer, nullable=False, default=0)
    billing_interval = db.Column(db.String(20), nullable=False, default="monthly")
    trial_days = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default="active")
    stripe_price_id = db.Column(db.String(255), unique=True, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    features = db.relationship(
        "PlanFeatureLimit",
        backref="plan",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="PlanFeatureLimit.feature_code",
    )

    __table_args__ = (
        CheckConstraint("billing_interval IN ('monthly', 'yearly')", name="valid_billing_interval"),
        CheckConstraint("status IN ('active', 'inactive')", name="valid_plan_status"),
    )

    @property
    def limits(self):
        """Feature code -> ceiling. ``None`` means unlimited."""
        return {feature.feature_code: feature.limit_value for feature in self.features}

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "billing_interval": self.billing_interval,
            "trial_days": self.trial_days,
            "status": self.status,
            "stripe_price_id": self.stripe_price_id,
            "features": [feature.to_dict() for feature in self.features],
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<SubscriptionPlan {self.code}>"


class PlanFeatureLimit(db.Model):
    __tablename__ = "plan_feature_limits"

    id = db.Column(db.Integer, primary_key=True)
    plan_id = db.Column(
        db.String(36),
        db.ForeignKey("subscription_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    feature_code = db.Column(db.String(50), nullable=False)
    # NULL = unlimited
    limit_value = db.Column(db.Integer, nullable=True)

    __table_args__ = (
        db.UniqueConstraint("plan_id", "feature_code", name="uq_plan_feature"),
    )

    def to_dict(self):
        return {"feature_code": self.feature_code, "limit_value": self.limit_value}


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)

    # Account id from the hosted auth service
    user_id = db.Column(db.String(64), nullable=False, index=True)
    subscription_plan_id = db.Column(
        db.String(36),
        db.ForeignKey("subscription_plans.id"),
        nullable=False,
        index=True,
    )

    stripe_customer_id = db.Column(db.String(255), nullable=True, index=True)
    stripe_subscription_id = db.Column(db.String(255), unique=True, nullable=True, index=True)

    status = db.Column(db.String(20), nullable=False, default="active", index=True)
    cancel_at_period_end = db.Column(db.Boolean, nullable=False, default=False)
    current_period_start = db.Column(db.DateTime, nullable=True)
    current_period_end = db.Column(db.DateTime, nullable=True)
    canceled_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    plan = db.relationship("SubscriptionPlan", lazy="joined")

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'past_due', 'canceled')",
            name="valid_subscription_status",
        ),
        CheckConstraint(
            "current_period_end IS NULL OR current_period_start IS NULL "
            "OR current_period_end > current_period_start",
            name="valid_period_range",
        ),
        Index("idx_subscriptions_user_status", "user_id", "status"),
    )

    def to_dict(self, include_plan=False):
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "subscription_plan_id": self.subscription_plan_id,
            "stripe_customer_id": self.stripe_customer_id,
            "stripe_subscription_id": self.stripe_subscription_id,
            "status": self.status,
            "cancel_at_period_end": self.cancel_at_period_end,
            "current_period_start": _isoformat(self.current_period_start),
            "current_period_end": _isoformat(self.current_period_end),
            "canceled_at": _isoformat(self.canceled_at),
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }
        if include_plan:
            data["subscription_plans"] = self.plan.to_dict() if self.plan else None
        return data

    def __repr__(self):
        return f"<Subscription {self.id} user={self.user_id} status={self.status}>"


class StripeEvent(db.Model):
    """Ledger of webhook events that were processed to completion."""

    __tablename__ = "stripe_events"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(255), unique=True, nullable=False)
    event_type = db.Column(db.String(100), nullable=False)
    processed_at = db.Column(db.DateTime, default=utcnow, nullable=False)
