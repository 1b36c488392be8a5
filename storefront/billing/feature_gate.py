import logging
from datetime import datetime
from typing import Dict, Mapping, Optional

from storefront.billing.store import SubscriptionStore, to_state
from storefront.errors import LimitExceeded, UpstreamFailure
from storefront.models import SubscriptionPlan
from storefront.models.subscription import utcnow

logger = logging.getLogger(__name__)


class FeatureLimitGate:
    """
    Synchronous plan-limit check used by resource-creation flows.

    Usage:
        gate = FeatureLimitGate(store, free_plan_code="free")
        gate.enforce(user_id, "stores", current_count + 1)
    """

    def __init__(self, store: SubscriptionStore, free_plan_code: str = "free"):
        self.store = store
        self.free_plan_code = free_plan_code

    def resolve_plan(self, user_id: str, now: Optional[datetime] = None) -> SubscriptionPlan:
        """
        Plan in force for ``user_id``.

        No current row, or a row whose scheduled cancellation has passed,
        resolves to the free plan.
        """
        now = now or utcnow()
        row = self.store.find_by_user(user_id)

        if row is not None and not to_state(row).is_lapsed(now):
            plan = row.plan or self.store.get_plan(row.subscription_plan_id)
            if plan is not None:
                return plan

        if row is not None:
            logger.info(
                "Subscription lapsed, falling back to free plan",
                extra={"user_id": user_id, "subscription_id": row.id},
            )

        free_plan = self.store.get_plan_by_code(self.free_plan_code)
        if free_plan is None:
            raise UpstreamFailure(f"Plan '{self.free_plan_code}' is not configured")
        return free_plan

    def check_feature_access(self, user_id: str, feature_code: str, value: int,
                             now: Optional[datetime] = None) -> bool:
        plan = self.resolve_plan(user_id, now)
        limit = plan.limits.get(feature_code)
        allowed = limit is None or value <= limit

        if not allowed:
            logger.info(
                "Feature limit reached",
                extra={"user_id": user_id, "feature_code": feature_code,
                       "value": value, "limit": limit, "plan_code": plan.code},
            )
        return allowed

    def enforce(self, user_id: str, feature_code: str, value: int, message: Optional[str] = None) -> None:
        if not self.check_feature_access(user_id, feature_code, value):
            raise LimitExceeded(
                message or f"Limit reached for '{feature_code}' on your subscription plan"
            )

    def usage_summary(self, user_id: str, counts: Mapping[str, int]) -> Dict:
        """
        Limit, usage and remaining headroom for every feature of the plan.

        Features missing from ``counts`` report ``used`` and ``remaining``
        as None. A None limit is unlimited, so ``remaining`` is None too.
        """
        plan = self.resolve_plan(user_id)
        features = {}
        for feature_code, limit in plan.limits.items():
            used = counts.get(feature_code)
            remaining = None
            if limit is not None and used is not None:
                remaining = max(limit - used, 0)
            features[feature_code] = {"limit": limit, "used": used, "remaining": remaining}
        return {"plan": {"id": plan.id, "code": plan.code, "name": plan.name}, "features": features}
