from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from conftest import CREATOR_ID, FAN_ID, POST_ID, FakeResponse
from creatorpay.core.errors import GatewayError, NotFoundError, ValidationError
from creatorpay.core.tables import Creator, Post, PPVUnlock, Subscription, Tip
from creatorpay.core.time import utcnow


def _all(session_factory, model):
    with session_factory() as db:
        return db.execute(select(model)).scalars().all()


def _activate_subscription(session_factory) -> None:
    now = utcnow()
    with session_factory() as db, db.begin():
        db.add(
            Subscription(
                user_id=FAN_ID,
                creator_id=CREATOR_ID,
                tier="standard",
                status="active",
                price_at_subscription=Decimal("9.99"),
                order_ref="sub_existing",
                payment_status="completed",
                current_period_start=now,
                current_period_end=now + timedelta(days=30),
            )
        )


# ---------- subscribe ----------

def test_subscribe_writes_initiated_row_before_checkout(checkout, session_factory, fake_http):
    result = checkout.initiate_subscription(FAN_ID, CREATOR_ID, "standard")

    assert result.checkout_url == f"https://pay.test/c/{result.order_id}"
    assert result.order_id.startswith("sub_")
    [sub] = _all(session_factory, Subscription)
    assert sub.order_ref == result.order_id
    assert sub.payment_status == "initiated"
    assert sub.status == "paused"
    assert sub.price_at_subscription == Decimal("9.99")
    payload = fake_http.calls[0]["payload"]
    assert payload["amount"] == "9.99"
    assert payload["userEmail"] == "fan@example.com"
    assert payload["webhookUrl"].endswith("/api/webhooks/gateway/subscription")


def test_subscribe_vip_uses_vip_price(checkout, session_factory, fake_http):
    checkout.initiate_subscription(FAN_ID, CREATOR_ID, "vip")
    assert fake_http.calls[0]["payload"]["amount"] == "24.99"


def test_subscribe_rejects_unknown_tier(checkout, fake_http):
    with pytest.raises(ValidationError):
        checkout.initiate_subscription(FAN_ID, CREATOR_ID, "platinum")
    assert fake_http.calls == []


def test_subscribe_to_inactive_creator_is_not_found(checkout, session_factory, fake_http):
    with session_factory() as db, db.begin():
        db.get(Creator, CREATOR_ID).status = "suspended"

    with pytest.raises(NotFoundError):
        checkout.initiate_subscription(FAN_ID, CREATOR_ID, "standard")
    assert _all(session_factory, Subscription) == []


def test_subscribe_when_already_active_is_satisfied_without_checkout(checkout, session_factory, fake_http):
    _activate_subscription(session_factory)

    result = checkout.initiate_subscription(FAN_ID, CREATOR_ID, "vip")

    assert result.already_satisfied
    assert result.checkout_url is None
    assert fake_http.calls == []
    assert len(_all(session_factory, Subscription)) == 1


def test_subscribe_gateway_failure_removes_row(checkout, session_factory, fake_http):
    fake_http.queue(FakeResponse(500, text="down"))

    with pytest.raises(GatewayError):
        checkout.initiate_subscription(FAN_ID, CREATOR_ID, "standard")
    assert _all(session_factory, Subscription) == []


def test_subscribe_unexpected_gateway_answer_removes_row(checkout, session_factory, fake_http):
    fake_http.queue(FakeResponse(200, ["not", "a", "dict"]))

    with pytest.raises(GatewayError):
        checkout.initiate_subscription(FAN_ID, CREATOR_ID, "standard")
    assert _all(session_factory, Subscription) == []


def test_subscribe_any_checkout_error_removes_row(checkout, session_factory, monkeypatch):
    def broken(**kwargs):
        raise RuntimeError("adapter bug")

    monkeypatch.setattr(checkout.gateway, "create_checkout", broken)

    with pytest.raises(RuntimeError):
        checkout.initiate_subscription(FAN_ID, CREATOR_ID, "standard")
    assert _all(session_factory, Subscription) == []


# ---------- tip ----------

def test_tip_below_minimum_rejected(checkout, session_factory, fake_http):
    with pytest.raises(ValidationError):
        checkout.initiate_tip(FAN_ID, CREATOR_ID, Decimal("0.99"))
    assert _all(session_factory, Tip) == []
    assert fake_http.calls == []


def test_tip_normalizes_amount(checkout, session_factory, fake_http):
    result = checkout.initiate_tip(FAN_ID, CREATOR_ID, "25", message="thanks", anonymous=True)

    [tip] = _all(session_factory, Tip)
    assert tip.order_ref == result.order_id
    assert tip.amount == Decimal("25.00")
    assert tip.is_anonymous is True
    assert tip.message == "thanks"
    assert fake_http.calls[0]["payload"]["amount"] == "25.00"


def test_tip_to_unknown_creator(checkout, fake_http):
    with pytest.raises(NotFoundError):
        checkout.initiate_tip(FAN_ID, "nope", Decimal("5"))


def test_tip_gateway_failure_leaves_initiated_row(checkout, session_factory, fake_http):
    fake_http.queue(FakeResponse(502, text="bad gateway"))

    with pytest.raises(GatewayError):
        checkout.initiate_tip(FAN_ID, CREATOR_ID, Decimal("5"))
    [tip] = _all(session_factory, Tip)
    assert tip.payment_status == "initiated"


# ---------- ppv ----------

def test_ppv_requires_locked_priced_post(checkout, session_factory, fake_http):
    with session_factory() as db, db.begin():
        db.get(Post, POST_ID).is_locked = False

    with pytest.raises(NotFoundError):
        checkout.initiate_ppv_unlock(FAN_ID, POST_ID)


def test_ppv_retry_while_unpaid_keeps_order(checkout, session_factory, fake_http):
    first = checkout.initiate_ppv_unlock(FAN_ID, POST_ID)
    with session_factory() as db, db.begin():
        db.get(Post, POST_ID).ppv_price = Decimal("9.00")
    second = checkout.initiate_ppv_unlock(FAN_ID, POST_ID)

    [unlock] = _all(session_factory, PPVUnlock)
    assert second.order_id == first.order_id
    assert unlock.order_ref == first.order_id
    # the checkout page already handed out is for the original price
    assert unlock.amount_paid == Decimal("7.50")
    assert fake_http.calls[1]["payload"]["amount"] == "7.50"
    assert unlock.creator_id == CREATOR_ID


def test_ppv_retry_after_failure_rearms_row(checkout, session_factory, fake_http):
    first = checkout.initiate_ppv_unlock(FAN_ID, POST_ID)
    with session_factory() as db, db.begin():
        db.execute(select(PPVUnlock)).scalar_one().payment_status = "expired"

    second = checkout.initiate_ppv_unlock(FAN_ID, POST_ID)

    [unlock] = _all(session_factory, PPVUnlock)
    assert second.order_id != first.order_id
    assert unlock.order_ref == second.order_id
    assert unlock.payment_status == "initiated"


def test_ppv_already_unlocked_is_satisfied(checkout, session_factory, fake_http):
    checkout.initiate_ppv_unlock(FAN_ID, POST_ID)
    with session_factory() as db, db.begin():
        db.execute(select(PPVUnlock)).scalar_one().payment_status = "completed"

    result = checkout.initiate_ppv_unlock(FAN_ID, POST_ID)

    assert result.already_satisfied
    assert len(fake_http.calls) == 1
