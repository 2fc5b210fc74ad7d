from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from creatorpay.auth.deps import CurrentUser, require_role
from creatorpay.core.errors import LedgerError
from creatorpay.models import PayoutInitiateReq
from creatorpay.services.payouts import PayoutProcessor
from creatorpay.services.providers import get_payout_processor

router = APIRouter(tags=["payouts"])


@router.post("/api/admin/payouts/initiate")
def payouts_initiate(
    body: PayoutInitiateReq,
    admin: CurrentUser = Depends(require_role("admin")),
    processor: PayoutProcessor = Depends(get_payout_processor),
):
    try:
        result = processor.initiate_single(body.creator_id)
    except LedgerError as e:
        raise e.to_http() from e
    return {"ok": True, **result.to_dict()}


@router.post("/api/admin/payouts/batch")
def payouts_batch(
    admin: CurrentUser = Depends(require_role("admin")),
    processor: PayoutProcessor = Depends(get_payout_processor),
):
    return {"ok": True, **processor.initiate_batch_payout()}


@router.get("/api/admin/payouts/queue")
def payouts_queue(
    limit: int = Query(default=200, ge=1, le=1000),
    admin: CurrentUser = Depends(require_role("admin")),
    processor: PayoutProcessor = Depends(get_payout_processor),
):
    return {"items": processor.read_model.payout_queue(processor.settings.min_payout_usd, limit=limit)}
