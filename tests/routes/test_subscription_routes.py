from unittest.mock import patch

import pytest
import stripe
from sqlalchemy.exc import SQLAlchemyError

from storefront.models import Subscription

SUBSCRIPTION_URL = "/api/subscription"


def test_requires_session(client):
    response = client.get(SUBSCRIPTION_URL)

    assert response.status_code == 401
    assert response.get_json() == {"error": "Unauthorized"}


def test_rejects_garbage_token(client):
    response = client.get(SUBSCRIPTION_URL, headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401
    assert "error" in response.get_json()


def test_get_provisions_free_subscription(client, auth_headers, user_id, plans):
    response = client.get(SUBSCRIPTION_URL, headers=auth_headers(user_id))

    data = response.get_json()
    assert response.status_code == 200
    assert data["user_id"] == user_id
    assert data["status"] == "active"
    assert data["subscription_plans"]["code"] == "free"
    limits = {f["feature_code"]: f["limit_value"] for f in data["subscription_plans"]["features"]}
    assert limits == {"stores": 1, "products": 10, "analytics_retention_days": 7}

    # A second read does not create another row
    client.get(SUBSCRIPTION_URL, headers=auth_headers(user_id))
    assert Subscription.query.filter_by(user_id=user_id).count() == 1


def test_get_returns_paid_subscription(client, auth_headers, make_subscription, user_id):
    make_subscription(user_id, "business", stripe_subscription_id="sub_biz")

    data = client.get(SUBSCRIPTION_URL, headers=auth_headers(user_id)).get_json()

    assert data["stripe_subscription_id"] == "sub_biz"
    assert data["subscription_plans"]["code"] == "business"


def test_post_creates_checkout_session(client, auth_headers, user_id, plans):
    with patch("stripe.checkout.Session.create") as create:
        create.return_value = {"id": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}

        response = client.post(
            SUBSCRIPTION_URL,
            json={"planId": plans["pro"].id, "successUrl": "https://app.test/ok", "cancelUrl": "https://app.test/no"},
            headers=auth_headers(user_id, email="owner@example.com"),
        )

    assert response.status_code == 200
    assert response.get_json() == {"sessionId": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}

    kwargs = create.call_args.kwargs
    assert kwargs["mode"] == "subscription"
    assert kwargs["customer_email"] == "owner@example.com"
    assert kwargs["client_reference_id"] == user_id
    assert kwargs["line_items"] == [{"price": "price_pro_test", "quantity": 1}]
    assert kwargs["metadata"] == {"user_id": user_id, "plan_id": plans["pro"].id}
    assert kwargs["subscription_data"]["metadata"] == kwargs["metadata"]
    assert kwargs["api_key"] == "sk_test_mock"


def test_post_rejects_unknown_plan(client, auth_headers, user_id):
    response = client.post(
        SUBSCRIPTION_URL,
        json={"planId": "missing", "successUrl": "https://a", "cancelUrl": "https://b"},
        headers=auth_headers(user_id),
    )

    assert response.status_code == 400
    assert response.get_json() == {"error": "Invalid plan selected"}


def test_post_requires_fields(client, auth_headers, user_id, plans):
    response = client.post(SUBSCRIPTION_URL, json={"planId": plans["pro"].id}, headers=auth_headers(user_id))

    assert response.status_code == 400


def test_post_reports_stripe_errors(client, auth_headers, user_id, plans):
    with patch("stripe.checkout.Session.create", side_effect=stripe.InvalidRequestError("No such price", "price")):
        response = client.post(
            SUBSCRIPTION_URL,
            json={"planId": plans["pro"].id, "successUrl": "https://a", "cancelUrl": "https://b"},
            headers=auth_headers(user_id),
        )

    assert response.status_code == 400
    assert response.get_json() == {"error": "No such price"}


@pytest.mark.parametrize("action, flag", [("cancel", True), ("reactivate", False)])
def test_put_toggles_cancel_at_period_end(client, auth_headers, make_subscription, user_id, action, flag):
    make_subscription(user_id, "pro", stripe_subscription_id="sub_1", cancel_at_period_end=not flag)

    with patch("stripe.Subscription.modify") as modify:
        response = client.put(SUBSCRIPTION_URL, json={"action": action}, headers=auth_headers(user_id))

    assert response.status_code == 200
    assert response.get_json() == {"success": True}
    assert modify.call_args.args == ("sub_1",)
    assert modify.call_args.kwargs["cancel_at_period_end"] is flag
    assert Subscription.query.filter_by(stripe_subscription_id="sub_1").one().cancel_at_period_end is flag


def test_put_reports_local_write_failure(client, auth_headers, make_subscription, user_id):
    make_subscription(user_id, "pro", stripe_subscription_id="sub_1")

    with patch("stripe.Subscription.modify") as modify, \
            patch("storefront.routes.subscription.SubscriptionStore.commit",
                  side_effect=SQLAlchemyError("db down")):
        response = client.put(SUBSCRIPTION_URL, json={"action": "cancel"}, headers=auth_headers(user_id))

    assert modify.called
    assert response.status_code == 500
    assert response.get_json() == {"error": "Database error: SQLAlchemyError"}
    assert Subscription.query.filter_by(stripe_subscription_id="sub_1").one().cancel_at_period_end is False


def test_put_without_paid_subscription(client, auth_headers, make_subscription, user_id):
    make_subscription(user_id, "free")

    with patch("stripe.Subscription.modify") as modify:
        response = client.put(SUBSCRIPTION_URL, json={"action": "cancel"}, headers=auth_headers(user_id))

    assert response.status_code == 400
    assert response.get_json() == {"error": "No active subscription found"}
    modify.assert_not_called()


def test_put_rejects_unknown_action(client, auth_headers, user_id):
    response = client.put(SUBSCRIPTION_URL, json={"action": "pause"}, headers=auth_headers(user_id))

    assert response.status_code == 400
    assert response.get_json() == {"error": "Invalid action"}


def test_other_methods_are_not_allowed(client, auth_headers, user_id):
    response = client.delete(SUBSCRIPTION_URL, headers=auth_headers(user_id))

    assert response.status_code == 405
    assert response.get_json() == {"error": "Method not allowed"}


def test_list_plans(client):
    response = client.get(f"{SUBSCRIPTION_URL}/plans")

    codes = [plan["code"] for plan in response.get_json()["plans"]]
    assert response.status_code == 200
    assert codes == ["free", "pro", "business"]


def test_usage(client, auth_headers, make_subscription, user_id):
    make_subscription(user_id, "pro", stripe_subscription_id="sub_1")
    headers = auth_headers(user_id)
    client.post("/api/stores", json={"name": "Gadgets", "category": "tech"}, headers=headers)

    data = client.get(f"{SUBSCRIPTION_URL}/usage", headers=headers).get_json()

    assert data["plan"]["code"] == "pro"
    assert data["features"]["stores"] == {"limit": 3, "used": 1, "remaining": 2}
