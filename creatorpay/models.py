from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# ---------- checkout ----------

class SubscribeReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    creator_id: str = Field(validation_alias=AliasChoices("creatorId", "creator_id"))
    tier: str = "standard"  # standard|vip

class TipReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    creator_id: str = Field(validation_alias=AliasChoices("creatorId", "creator_id"))
    amount_usd: Decimal = Field(validation_alias=AliasChoices("amountUsd", "amount_usd", "amount"))
    message: Optional[str] = Field(default=None, max_length=500)
    is_anonymous: bool = Field(default=False, validation_alias=AliasChoices("isAnonymous", "is_anonymous"))

class PPVUnlockReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    post_id: str = Field(validation_alias=AliasChoices("postId", "post_id"))

# ---------- payouts ----------

class PayoutInitiateReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    creator_id: str = Field(validation_alias=AliasChoices("creatorId", "creator_id"))

# ---------- gateway webhooks ----------

class GatewayEvent(BaseModel):
    """Webhook envelope shared by all purchase kinds.

    Payout notifications name their correlation key ``payoutId``; every
    other kind uses ``orderId``.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")
    order_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("orderId", "orderID", "payoutId", "payoutID", "transferId"),
    )
    status: str = ""
    amount: Optional[Any] = None
    currency: Optional[str] = None
    network: Optional[str] = None
    tx_hash: Optional[str] = Field(default=None, validation_alias=AliasChoices("txHash", "tx_hash"))
    timestamp: Optional[Any] = None

    def rail(self) -> str:
        return f"{self.currency or 'unknown'} on {self.network or 'unknown'}"
