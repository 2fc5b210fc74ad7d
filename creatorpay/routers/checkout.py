from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from creatorpay.auth.deps import CurrentUser, get_current_user
from creatorpay.core.errors import LedgerError
from creatorpay.models import PPVUnlockReq, SubscribeReq, TipReq
from creatorpay.services.checkout import CheckoutResult, CheckoutService
from creatorpay.services.providers import get_checkout_service

router = APIRouter(tags=["checkout"])


def _checkout_out(result: CheckoutResult) -> Dict[str, Any]:
    if result.already_satisfied:
        return {"ok": True, "alreadySatisfied": True}
    return {"ok": True, "orderId": result.order_id, "checkoutUrl": result.checkout_url}


@router.post("/api/checkout/subscribe")
def checkout_subscribe(
    body: SubscribeReq,
    user: CurrentUser = Depends(get_current_user),
    svc: CheckoutService = Depends(get_checkout_service),
):
    try:
        result = svc.initiate_subscription(user.user_id, body.creator_id, body.tier)
    except LedgerError as e:
        raise e.to_http() from e
    return _checkout_out(result)


@router.post("/api/checkout/tip")
def checkout_tip(
    body: TipReq,
    user: CurrentUser = Depends(get_current_user),
    svc: CheckoutService = Depends(get_checkout_service),
):
    try:
        result = svc.initiate_tip(
            user.user_id,
            body.creator_id,
            body.amount_usd,
            message=body.message,
            anonymous=body.is_anonymous,
        )
    except LedgerError as e:
        raise e.to_http() from e
    return _checkout_out(result)


@router.post("/api/checkout/ppv")
def checkout_ppv(
    body: PPVUnlockReq,
    user: CurrentUser = Depends(get_current_user),
    svc: CheckoutService = Depends(get_checkout_service),
):
    try:
        result = svc.initiate_ppv_unlock(user.user_id, body.post_id)
    except LedgerError as e:
        raise e.to_http() from e
    return _checkout_out(result)
