from storefront.billing.feature_gate import FeatureLimitGate
from storefront.billing.store import SubscriptionStore
from storefront.billing.webhook import WebhookEventInterpreter

__all__ = ["FeatureLimitGate", "SubscriptionStore", "WebhookEventInterpreter"]
