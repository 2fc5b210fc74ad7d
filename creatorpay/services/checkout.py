"""Checkout initiators for subscriptions, tips and pay-per-view unlocks.

Each flow validates the target, writes its ledger row in ``initiated`` state
and only then asks the gateway for a checkout URL, so a webhook can never
arrive for a row that does not exist yet.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from creatorpay.core.errors import GatewayError, NotFoundError, ValidationError
from creatorpay.core.normalize import to_money
from creatorpay.core.settings import S, Settings
from creatorpay.core.tables import PAY_COMPLETED
from creatorpay.core.time import add_months, utcnow
from creatorpay.metrics import record_checkout
from creatorpay.services.gateway import GatewayClient, generate_order_id
from creatorpay.services.ledger import LedgerStore
from creatorpay.services.read_model import ReadModel, UserRecord

logger = logging.getLogger(__name__)

TIERS = ("standard", "vip")


@dataclass(frozen=True)
class CheckoutResult:
    order_id: Optional[str] = None
    checkout_url: Optional[str] = None
    already_satisfied: bool = False


class CheckoutService:
    def __init__(
        self,
        read_model: ReadModel,
        ledger: LedgerStore,
        gateway: GatewayClient,
        settings: Settings = S,
    ) -> None:
        self.read_model = read_model
        self.ledger = ledger
        self.gateway = gateway
        self.settings = settings

    def _payer(self, user_id: str) -> UserRecord:
        payer = self.read_model.get_user(user_id)
        if not payer:
            raise NotFoundError("User not found")
        return payer

    def _url(self, path: str) -> str:
        return f"{self.settings.public_base_url}{path}"

    def initiate_subscription(self, user_id: str, creator_id: str, tier: str) -> CheckoutResult:
        if tier not in TIERS:
            raise ValidationError(f"Unknown tier: {tier}")

        creator = self.read_model.get_creator(creator_id)
        if not creator or creator.status != "active":
            raise NotFoundError("Creator not found or inactive")

        if self.read_model.get_active_subscription(user_id, creator_id):
            record_checkout("subscription", "already_satisfied")
            return CheckoutResult(already_satisfied=True)

        payer = self._payer(user_id)
        price = to_money(creator.vip_price if tier == "vip" else creator.standard_price)
        if price <= 0:
            raise ValidationError("Creator has no price for this tier")

        order_id = generate_order_id("sub", user_id)
        now = utcnow()
        self.ledger.create_subscription(
            user_id=user_id,
            creator_id=creator_id,
            tier=tier,
            price=price,
            order_id=order_id,
            period_start=now,
            period_end=add_months(now, 1),
        )

        try:
            checkout_url = self.gateway.create_checkout(
                order_id=order_id,
                amount_usd=price,
                payer_email=payer.email,
                payer_name=payer.name,
                redirect_url=self._url(f"/dashboard/user/subscriptions?payment=success&orderId={order_id}"),
                cancel_url=self._url(f"/dashboard/user/subscriptions?payment=cancelled&orderId={order_id}"),
                webhook_url=self.gateway.webhook_url("subscription"),
            )
        except Exception:
            # No partial subscription may outlive a failed checkout.
            self.ledger.delete_subscription(order_id)
            logger.error("Checkout creation failed for subscription order %s; row removed", order_id)
            record_checkout("subscription", "gateway_error")
            raise

        record_checkout("subscription", "created")
        return CheckoutResult(order_id=order_id, checkout_url=checkout_url)

    def initiate_tip(
        self,
        user_id: str,
        creator_id: str,
        amount_usd: Decimal,
        message: Optional[str] = None,
        anonymous: bool = False,
    ) -> CheckoutResult:
        amount = to_money(amount_usd)
        if amount < self.settings.min_tip_usd:
            raise ValidationError(f"Minimum tip is ${self.settings.min_tip_usd:.2f}")

        if not self.read_model.get_creator(creator_id):
            raise NotFoundError("Creator not found")
        payer = self._payer(user_id)

        order_id = generate_order_id("tip", user_id)
        self.ledger.create_tip(
            from_user_id=user_id,
            to_creator_id=creator_id,
            amount=amount,
            order_id=order_id,
            message=message,
            is_anonymous=anonymous,
        )

        try:
            checkout_url = self.gateway.create_checkout(
                order_id=order_id,
                amount_usd=amount,
                payer_email=payer.email,
                payer_name=payer.name,
                redirect_url=self._url("/dashboard/user?tip=success"),
                cancel_url=self._url("/dashboard/user?tip=cancelled"),
                webhook_url=self.gateway.webhook_url("tip"),
            )
        except GatewayError:
            # The initiated row stays; nothing was charged.
            record_checkout("tip", "gateway_error")
            raise

        record_checkout("tip", "created")
        return CheckoutResult(order_id=order_id, checkout_url=checkout_url)

    def initiate_ppv_unlock(self, user_id: str, post_id: str) -> CheckoutResult:
        post = self.read_model.get_post(post_id)
        if not post or not post.is_locked or not post.ppv_price:
            raise NotFoundError("Post not found or not a PPV post")

        existing = self.read_model.get_ppv_unlock(user_id, post_id)
        if existing and existing.payment_status == PAY_COMPLETED:
            record_checkout("ppv", "already_satisfied")
            return CheckoutResult(already_satisfied=True)

        payer = self._payer(user_id)
        amount = to_money(post.ppv_price)
        # an attempt still awaiting payment hands back its own order id and price
        order_id, amount = self.ledger.upsert_ppv_unlock(
            user_id=user_id,
            post_id=post_id,
            creator_id=post.creator_id,
            amount=amount,
            order_id=generate_order_id("ppv", user_id),
        )

        try:
            checkout_url = self.gateway.create_checkout(
                order_id=order_id,
                amount_usd=amount,
                payer_email=payer.email,
                payer_name=payer.name,
                redirect_url=self._url(f"/dashboard/user?ppv=success&postId={post_id}"),
                cancel_url=self._url(f"/dashboard/user?ppv=cancelled&postId={post_id}"),
                webhook_url=self.gateway.webhook_url("ppv"),
            )
        except GatewayError:
            record_checkout("ppv", "gateway_error")
            raise

        record_checkout("ppv", "created")
        return CheckoutResult(order_id=order_id, checkout_url=checkout_url)
