from storefront.models.notification import Notification
from storefront.models.store import Store
from storefront.models.subscription import (
    PlanFeatureLimit,
    StripeEvent,
    Subscription,
    SubscriptionPlan,
)

__all__ = [
    "Notification",
    "PlanFeatureLimit",
    "Store",
    "StripeEvent",
    "Subscription",
    "SubscriptionPlan",
]
