from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from creatorpay.services.gateway import SIGNATURE_HEADER
from creatorpay.services.providers import get_reconciler
from creatorpay.services.reconciler import WebhookReconciler

router = APIRouter(tags=["webhooks"])


@router.post("/api/webhooks/gateway/{kind}")
async def gateway_webhook(
    kind: str,
    req: Request,
    reconciler: WebhookReconciler = Depends(get_reconciler),
):
    if kind not in reconciler.handlers:
        raise HTTPException(404, "Unknown webhook")

    # the signature covers these exact bytes; never re-serialize before verifying
    raw_body = await req.body()
    result = await run_in_threadpool(reconciler.handle, kind, raw_body, req.headers.get(SIGNATURE_HEADER))
    return JSONResponse(result.body, status_code=result.status_code)
