import logging

from storefront.extensions import db
from storefront.models import Notification

logger = logging.getLogger(__name__)


class NotificationService:
    """Write user-facing notification rows in the caller's unit of work."""

    def __init__(self, session=None):
        self.session = session or db.session

    def create(self, user_id, type, title, message, severity="info", details=None):
        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            severity=severity,
            details=details,
        )
        self.session.add(notification)
        logger.info(
            "Notification queued",
            extra={"user_id": user_id, "notification_type": type, "severity": severity},
        )
        return notification

    def notify_payment_failed(self, user_id, invoice):
        """``invoice`` is an InvoicePaymentFailed variant."""
        details = {
            "invoice_id": invoice.invoice_id,
            "subscription_id": invoice.subscription_id,
            "amount_due": invoice.amount_due,
            "currency": invoice.currency,
            "hosted_invoice_url": invoice.hosted_invoice_url,
        }
        if invoice.next_payment_attempt:
            details["next_payment_attempt"] = invoice.next_payment_attempt.isoformat()

        return self.create(
            user_id,
            type="payment_failed",
            title="Payment Failed",
            message="Your latest subscription payment has failed. Please update your payment method.",
            severity="error",
            details=details,
        )

    def notify_subscription_canceled(self, user_id, subscription_id):
        return self.create(
            user_id,
            type="subscription_canceled",
            title="Subscription Canceled",
            message="Your subscription has been canceled. You have been moved to the Free plan.",
            severity="warning",
            details={"subscription_id": subscription_id},
        )
