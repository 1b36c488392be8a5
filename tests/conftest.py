import hashlib
import hmac
import json
import time
from datetime import timedelta
from unittest.mock import Mock

import pytest
from faker import Faker
from flask_jwt_extended import create_access_token

from storefront import create_app
from storefront.billing import SubscriptionStore, WebhookEventInterpreter
from storefront.billing.plans import seed_plans
from storefront.extensions import db
from storefront.models import Subscription, SubscriptionPlan
from storefront.services import NotificationService

# Initialize Faker for generating test data
fake = Faker()

PRICE_IDS = {"pro": "price_pro_test", "business": "price_business_test"}


# Custom pytest marks for organizing tests
def pytest_configure(config):
    config.addinivalue_line("markers", "db: mark test as database-intensive")
    config.addinivalue_line("markers", "payment: mark test as payment-related")


@pytest.fixture()
def app():
    """Fresh application with an in-memory database and the default plans."""
    app = create_app("testing")

    with app.app_context():
        db.create_all()
        seed_plans(price_ids=PRICE_IDS)

        yield app

        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def settings(app):
    return app.config["RECONCILER_SETTINGS"]


@pytest.fixture()
def plans(app):
    """Plan code -> SubscriptionPlan."""
    return {plan.code: plan for plan in SubscriptionPlan.query.all()}


@pytest.fixture()
def store(app):
    return SubscriptionStore()


@pytest.fixture()
def user_id():
    return fake.uuid4()


@pytest.fixture()
def auth_headers(app):
    """Factory for Authorization headers carrying a session for ``user_id``."""

    def _headers(user_id, email=None):
        token = create_access_token(
            identity=user_id,
            additional_claims={"email": email or fake.email()},
            expires_delta=timedelta(hours=1),
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def make_subscription(app, plans):
    """Insert a subscription row directly, bypassing the webhook flow."""

    def _make(user_id, plan_code="free", **fields):
        subscription = Subscription(
            user_id=user_id,
            subscription_plan_id=plans[plan_code].id,
            status=fields.pop("status", "active"),
            **fields,
        )
        db.session.add(subscription)
        db.session.commit()
        return subscription

    return _make


# ---- Stripe payload builders -----------------------------------------


@pytest.fixture()
def period():
    """A current billing period as Stripe unix timestamps."""
    start = int(time.time()) - 3600
    return start, start + 30 * 24 * 3600


@pytest.fixture()
def stripe_event():
    def _event(event_type, data_object, event_id=None):
        return {
            "id": event_id or f"evt_{fake.uuid4()[:14]}",
            "object": "event",
            "type": event_type,
            "livemode": False,
            "created": int(time.time()),
            "data": {"object": data_object},
        }

    return _event


@pytest.fixture()
def checkout_session(period):
    def _session(user_id, plan_id, subscription_id="sub_test_1", with_period=True, **overrides):
        session = {
            "id": f"cs_test_{fake.uuid4()[:14]}",
            "object": "checkout.session",
            "mode": "subscription",
            "customer": "cus_test_1",
            "subscription": subscription_id,
            "metadata": {"user_id": user_id, "plan_id": plan_id},
        }
        if with_period:
            session["subscription_data"] = {
                "current_period_start": period[0],
                "current_period_end": period[1],
            }
        session.update(overrides)
        return session

    return _session


@pytest.fixture()
def stripe_subscription(period):
    def _subscription(subscription_id="sub_test_1", status="active", price_id="price_pro_test",
                      metadata=None, **overrides):
        subscription = {
            "id": subscription_id,
            "object": "subscription",
            "status": status,
            "customer": "cus_test_1",
            "cancel_at_period_end": False,
            "canceled_at": None,
            "current_period_start": period[0],
            "current_period_end": period[1],
            "metadata": metadata or {},
            "items": {"data": [{"id": "si_test_1", "price": {"id": price_id}}]},
        }
        subscription.update(overrides)
        return subscription

    return _subscription


@pytest.fixture()
def invoice():
    def _invoice(subscription_id="sub_test_1", **overrides):
        data = {
            "id": f"in_{fake.uuid4()[:14]}",
            "object": "invoice",
            "subscription": subscription_id,
            "amount_due": fake.random_int(min=500, max=10000),
            "currency": "usd",
            "next_payment_attempt": int(time.time()) + 3 * 24 * 3600,
            "hosted_invoice_url": fake.url(),
        }
        data.update(overrides)
        return data

    return _invoice


@pytest.fixture()
def sign_payload(settings):
    """Build a valid ``stripe-signature`` header for a raw payload."""

    def _sign(payload, secret=None, timestamp=None):
        timestamp = timestamp or int(time.time())
        secret = secret or settings.stripe_webhook_secret
        signed = f"{timestamp}.{payload}".encode("utf-8")
        signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={signature}"

    return _sign


@pytest.fixture()
def gateway():
    """Stripe gateway double: the payload is trusted and parsed as-is."""
    gateway = Mock()
    gateway.construct_event.side_effect = lambda payload, signature: json.loads(payload)
    return gateway


@pytest.fixture()
def interpreter(settings, store, gateway):
    return WebhookEventInterpreter(
        settings=settings,
        store=store,
        gateway=gateway,
        notifier=NotificationService(),
    )


@pytest.fixture()
def deliver(interpreter):
    """Run one event through the interpreter."""

    def _deliver(event):
        return interpreter.handle(json.dumps(event), "t=0,v1=test")

    return _deliver
