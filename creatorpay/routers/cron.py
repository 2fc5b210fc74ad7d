from __future__ import annotations

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from creatorpay.core.crypto import sha256_str
from creatorpay.services.providers import get_renewals
from creatorpay.services.renewals import SubscriptionRenewals


router = APIRouter(tags=["cron"])


def require_cron_secret(
    x_cron_secret: Optional[str] = Header(default=None, alias="x-cron-secret"),
    renewals: SubscriptionRenewals = Depends(get_renewals),
) -> None:
    expected = renewals.settings.cron_secret
    if not expected or not x_cron_secret:
        raise HTTPException(401, "Unauthorized")
    if not hmac.compare_digest(sha256_str(x_cron_secret), sha256_str(expected)):
        raise HTTPException(401, "Unauthorized")


@router.get("/api/cron/renew-subscriptions")
def cron_renew_subscriptions(
    _: None = Depends(require_cron_secret),
    renewals: SubscriptionRenewals = Depends(get_renewals),
):
    summary = renewals.renew_expiring()
    summary["expired"] = renewals.expire_lapsed()
    return summary
