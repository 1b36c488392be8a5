import json

import pytest

from storefront.billing.events import from_timestamp
from storefront.errors import AuthenticationFailure, ValidationFailure
from storefront.extensions import db
from storefront.models import Notification, StripeEvent, Subscription

pytestmark = pytest.mark.payment


def rows_for(user_id):
    return Subscription.query.filter_by(user_id=user_id).order_by(Subscription.created_at).all()


def test_checkout_completed_activates_plan(deliver, stripe_event, checkout_session, plans, user_id, period):
    event = stripe_event("checkout.session.completed", checkout_session(user_id, plans["pro"].id, "sub_1"))

    result = deliver(event)

    row = Subscription.query.filter_by(stripe_subscription_id="sub_1").one()
    assert result == {"event_id": event["id"], "status": "processed"}
    assert row.user_id == user_id
    assert row.status == "active"
    assert row.subscription_plan_id == plans["pro"].id
    assert row.stripe_customer_id == "cus_test_1"
    assert row.current_period_start == from_timestamp(period[0])
    assert row.current_period_end == from_timestamp(period[1])


def test_checkout_completed_links_free_row(deliver, stripe_event, checkout_session, make_subscription,
                                           plans, user_id):
    free_row = make_subscription(user_id, "free")

    deliver(stripe_event("checkout.session.completed", checkout_session(user_id, plans["pro"].id, "sub_1")))

    db.session.refresh(free_row)
    rows = rows_for(user_id)
    assert [row.id for row in rows] == [free_row.id]
    assert free_row.stripe_subscription_id == "sub_1"
    assert free_row.subscription_plan_id == plans["pro"].id
    assert free_row.status == "active"
    assert free_row.canceled_at is None


def test_checkout_completed_supersedes_other_paid_row(deliver, stripe_event, checkout_session, make_subscription,
                                                      plans, user_id):
    old = make_subscription(user_id, "pro", stripe_subscription_id="sub_old")

    deliver(stripe_event("checkout.session.completed", checkout_session(user_id, plans["business"].id, "sub_new")))

    db.session.refresh(old)
    current = [row for row in rows_for(user_id) if row.status != "canceled"]
    assert [row.stripe_subscription_id for row in current] == ["sub_new"]
    assert old.status == "canceled"
    assert old.canceled_at is not None


def test_checkout_without_period_fetches_subscription(deliver, gateway, stripe_event, checkout_session,
                                                      stripe_subscription, plans, user_id, period):
    gateway.retrieve_subscription.return_value = stripe_subscription("sub_1")
    session = checkout_session(user_id, plans["pro"].id, "sub_1", with_period=False)

    deliver(stripe_event("checkout.session.completed", session))

    gateway.retrieve_subscription.assert_called_once_with("sub_1")
    row = Subscription.query.filter_by(stripe_subscription_id="sub_1").one()
    assert row.current_period_end == from_timestamp(period[1])


def test_checkout_with_unknown_plan_writes_nothing(deliver, stripe_event, checkout_session, user_id):
    event = stripe_event("checkout.session.completed", checkout_session(user_id, "no-such-plan", "sub_1"))

    with pytest.raises(ValidationFailure):
        deliver(event)

    assert Subscription.query.count() == 0
    assert StripeEvent.query.count() == 0


def test_subscription_updated_replay_converges(deliver, stripe_event, stripe_subscription, make_subscription,
                                               user_id):
    make_subscription(user_id, "pro", stripe_subscription_id="sub_1")
    event = stripe_event(
        "customer.subscription.updated",
        stripe_subscription("sub_1", status="past_due", cancel_at_period_end=True),
    )

    deliver(event)
    first = Subscription.query.filter_by(stripe_subscription_id="sub_1").one().to_dict()
    # Same payload delivered again under a new event id
    deliver({**event, "id": "evt_replayed"})
    second = Subscription.query.filter_by(stripe_subscription_id="sub_1").one().to_dict()

    first.pop("updated_at")
    second.pop("updated_at")
    assert first == second
    assert second["status"] == "past_due"
    assert second["cancel_at_period_end"] is True
    assert len(rows_for(user_id)) == 1


def test_subscription_updated_follows_price_to_plan(deliver, stripe_event, stripe_subscription,
                                                    make_subscription, plans, user_id):
    make_subscription(user_id, "pro", stripe_subscription_id="sub_1")

    deliver(stripe_event("customer.subscription.updated",
                         stripe_subscription("sub_1", price_id="price_business_test")))

    row = Subscription.query.filter_by(stripe_subscription_id="sub_1").one()
    assert row.subscription_plan_id == plans["business"].id


def test_subscription_updated_for_unknown_subscription_uses_metadata(deliver, stripe_event, stripe_subscription,
                                                                     plans, user_id):
    subscription = stripe_subscription(
        "sub_new", price_id="price_unknown", metadata={"user_id": user_id, "plan_id": plans["pro"].id}
    )

    deliver(stripe_event("customer.subscription.updated", subscription))

    row = Subscription.query.filter_by(stripe_subscription_id="sub_new").one()
    assert row.user_id == user_id
    assert row.subscription_plan_id == plans["pro"].id


def test_subscription_deleted_falls_back_to_free(deliver, stripe_event, stripe_subscription,
                                                 make_subscription, plans):
    make_subscription("u1", "pro", stripe_subscription_id="sub_1")

    deliver(stripe_event("customer.subscription.deleted",
                         stripe_subscription("sub_1", status="canceled", metadata={"user_id": "u1"})))

    rows = rows_for("u1")
    canceled = [row for row in rows if row.status == "canceled"]
    active = [row for row in rows if row.status == "active"]
    assert len(canceled) == 1
    assert canceled[0].stripe_subscription_id == "sub_1"
    assert canceled[0].canceled_at is not None
    assert len(active) == 1
    assert active[0].subscription_plan_id == plans["free"].id

    notification = Notification.query.filter_by(user_id="u1").one()
    assert notification.title == "Subscription Canceled"
    assert notification.severity == "warning"


def test_subscription_deleted_twice_keeps_single_free_row(deliver, stripe_event, stripe_subscription,
                                                          make_subscription):
    make_subscription("u1", "pro", stripe_subscription_id="sub_1")
    event = stripe_event("customer.subscription.deleted", stripe_subscription("sub_1", status="canceled"))

    deliver(event)
    first_canceled_at = Subscription.query.filter_by(stripe_subscription_id="sub_1").one().canceled_at
    deliver({**event, "id": "evt_again"})

    rows = rows_for("u1")
    assert len([row for row in rows if row.status == "active"]) == 1
    assert Subscription.query.filter_by(stripe_subscription_id="sub_1").one().canceled_at == first_canceled_at


def test_subscription_deleted_without_local_row(deliver, stripe_event, stripe_subscription, plans, user_id):
    deliver(stripe_event("customer.subscription.deleted",
                         stripe_subscription("sub_gone", status="canceled", metadata={"user_id": user_id})))

    rows = rows_for(user_id)
    assert len(rows) == 1
    assert rows[0].subscription_plan_id == plans["free"].id
    assert rows[0].status == "active"


def test_subscription_deleted_without_row_or_user_is_rejected(deliver, stripe_event, stripe_subscription):
    with pytest.raises(ValidationFailure):
        deliver(stripe_event("customer.subscription.deleted", stripe_subscription("sub_gone", status="canceled")))

    assert Subscription.query.count() == 0


def test_payment_failed_marks_past_due_and_notifies(deliver, stripe_event, invoice, make_subscription, user_id):
    make_subscription(user_id, "pro", stripe_subscription_id="sub_1")
    data = invoice("sub_1")

    deliver(stripe_event("invoice.payment_failed", data))

    assert Subscription.query.filter_by(stripe_subscription_id="sub_1").one().status == "past_due"
    notification = Notification.query.filter_by(user_id=user_id).one()
    assert notification.type == "payment_failed"
    assert notification.severity == "error"
    assert notification.title == "Payment Failed"
    assert notification.details["invoice_id"] == data["id"]


def test_payment_failed_for_unknown_subscription(deliver, stripe_event, invoice):
    with pytest.raises(ValidationFailure):
        deliver(stripe_event("invoice.payment_failed", invoice("sub_missing")))

    assert Notification.query.count() == 0


def test_payment_failed_after_cancellation_is_ignored(deliver, stripe_event, invoice, make_subscription,
                                                      user_id):
    make_subscription(user_id, "pro", stripe_subscription_id="sub_1", status="canceled")

    deliver(stripe_event("invoice.payment_failed", invoice("sub_1")))

    assert Subscription.query.filter_by(stripe_subscription_id="sub_1").one().status == "canceled"
    assert Notification.query.count() == 0


def test_redelivered_event_is_not_reprocessed(deliver, stripe_event, invoice, make_subscription, user_id):
    make_subscription(user_id, "pro", stripe_subscription_id="sub_1")
    event = stripe_event("invoice.payment_failed", invoice("sub_1"))

    assert deliver(event)["status"] == "processed"
    assert deliver(event)["status"] == "duplicate"

    assert Notification.query.count() == 1
    assert StripeEvent.query.filter_by(event_id=event["id"]).count() == 1


def test_unhandled_event_is_acknowledged_without_writes(deliver, stripe_event):
    result = deliver(stripe_event("customer.created", {"id": "cus_1"}))

    assert result["status"] == "ignored"
    assert StripeEvent.query.count() == 0


def test_verification_failure_propagates(interpreter, gateway):
    gateway.construct_event.side_effect = AuthenticationFailure("Invalid webhook signature")

    with pytest.raises(AuthenticationFailure):
        interpreter.handle(json.dumps({"id": "evt_1"}), "bad")

    assert Subscription.query.count() == 0
