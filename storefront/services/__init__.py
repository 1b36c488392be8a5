from storefront.services.notification_service import NotificationService
from storefront.services.store_service import StoreService
from storefront.services.stripe_service import StripeService

__all__ = ["NotificationService", "StoreService", "StripeService"]
