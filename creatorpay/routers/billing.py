from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from creatorpay.auth.deps import CurrentUser, get_current_user
from creatorpay.core.cursor import decode_cursor, encode_cursor
from creatorpay.core.errors import LedgerError
from creatorpay.services.providers import get_read_model
from creatorpay.services.read_model import SqlReadModel

router = APIRouter(tags=["billing"])


@router.get("/api/billing/transactions")
def list_transactions(
    limit: int = Query(default=50, ge=1, le=200),
    cursor: Optional[str] = None,
    user: CurrentUser = Depends(get_current_user),
    read_model: SqlReadModel = Depends(get_read_model),
):
    try:
        before = decode_cursor(cursor)
    except LedgerError as e:
        raise e.to_http() from e

    items = read_model.list_transactions(user.user_id, limit=limit, before=before)
    next_cursor = None
    if len(items) == limit:
        next_cursor = encode_cursor((items[-1]["createdAt"], items[-1]["id"]))
    return {"items": items, "nextCursor": next_cursor}
