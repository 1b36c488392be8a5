import logging
import os

from storefront.extensions import db
from storefront.models import PlanFeatureLimit, SubscriptionPlan

logger = logging.getLogger(__name__)

# Feature limits per plan. None = unlimited.
DEFAULT_PLANS = [
    {
        "code": "free",
        "name": "Free",
        "description": "Get started with a single storefront",
        "price": 0,
        "price_env": None,
        "limits": {"stores": 1, "products": 10, "analytics_retention_days": 7},
    },
    {
        "code": "pro",
        "name": "Pro",
        "description": "For growing affiliate businesses",
        "price": 1900,  # $19.00
        "price_env": "STRIPE_PRICE_PRO",
        "limits": {"stores": 3, "products": 100, "analytics_retention_days": 30},
    },
    {
        "code": "business",
        "name": "Business",
        "description": "For teams running many storefronts",
        "price": 4900,  # $49.00
        "price_env": "STRIPE_PRICE_BUSINESS",
        "limits": {"stores": 10, "products": None, "analytics_retention_days": 365},
    },
]


def seed_plans(session=None, price_ids=None):
    """
    Create or refresh the default plan catalogue.

    Safe to run repeatedly: plans are matched on ``code`` and their limits
    are overwritten. ``price_ids`` maps plan code to Stripe price id and
    falls back to the STRIPE_PRICE_* environment variables.
    """
    session = session or db.session
    price_ids = price_ids or {}
    plans = []

    for definition in DEFAULT_PLANS:
        plan = session.query(SubscriptionPlan).filter_by(code=definition["code"]).first()
        if plan is None:
            plan = SubscriptionPlan(code=definition["code"])
            session.add(plan)
            logger.info("Creating plan", extra={"plan_code": definition["code"]})

        plan.name = definition["name"]
        plan.description = definition["description"]
        plan.price = definition["price"]
        plan.billing_interval = "monthly"
        plan.status = "active"

        price_id = price_ids.get(definition["code"])
        if price_id is None and definition["price_env"]:
            price_id = os.getenv(definition["price_env"])
        if price_id:
            plan.stripe_price_id = price_id

        existing = {feature.feature_code: feature for feature in plan.features}
        for feature_code, limit_value in definition["limits"].items():
            feature = existing.get(feature_code)
            if feature is None:
                plan.features.append(PlanFeatureLimit(feature_code=feature_code, limit_value=limit_value))
            else:
                feature.limit_value = limit_value

        plans.append(plan)

    session.commit()
    return plans
