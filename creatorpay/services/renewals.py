"""Periodic subscription sweeps, driven by the external cron endpoint."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from creatorpay.core.errors import GatewayError
from creatorpay.core.settings import S, Settings
from creatorpay.core.time import utcnow
from creatorpay.services.gateway import GatewayClient, generate_order_id
from creatorpay.services.ledger import LedgerStore
from creatorpay.services.read_model import ReadModel

logger = logging.getLogger(__name__)


class SubscriptionRenewals:
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

    def renew_expiring(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Open a renewal checkout for every active subscription ending within the window.

        The renewal order id is claimed on the row before the gateway call, so a
        webhook can always find it; a failed checkout releases the claim.
        """
        now = now or utcnow()
        until = now + timedelta(hours=self.settings.renewal_window_hours)
        expiring = self.read_model.list_expiring_subscriptions(now, until)

        renewed = 0
        failed = 0
        for sub in expiring:
            user = self.read_model.get_user(sub.user_id)
            if not user or not self.read_model.get_creator(sub.creator_id):
                continue

            order_id = generate_order_id("sub", sub.user_id)
            if not self.ledger.claim_renewal(sub.id, order_id):
                # another sweep got there first
                continue

            try:
                self.gateway.create_checkout(
                    order_id=order_id,
                    amount_usd=sub.price_at_subscription,
                    payer_email=user.email,
                    payer_name=user.name,
                    redirect_url=(
                        f"{self.settings.public_base_url}/dashboard/user/subscriptions"
                        f"?renewal=success&orderId={order_id}"
                    ),
                    cancel_url=f"{self.settings.public_base_url}/dashboard/user/subscriptions?renewal=cancelled",
                    webhook_url=self.gateway.webhook_url("subscription"),
                )
            except GatewayError as e:
                self.ledger.release_renewal(sub.id, order_id)
                logger.error("Renewal checkout failed for subscription %s: %s", sub.id, e.message)
                failed += 1
                continue

            renewed += 1

        logger.info("Renewal sweep: %d renewed, %d failed of %d", renewed, failed, len(expiring))
        return {"renewed": renewed, "failed": failed, "total": len(expiring)}

    def expire_lapsed(self, now: Optional[datetime] = None) -> int:
        return self.ledger.expire_lapsed_subscriptions(now or utcnow())
