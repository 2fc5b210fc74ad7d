"""Process-wide service instances for FastAPI ``Depends``.

Tests build their own instances against an in-memory engine instead.
"""
from __future__ import annotations

from functools import lru_cache

from creatorpay.core.db import SessionLocal
from creatorpay.core.settings import S
from creatorpay.services.checkout import CheckoutService
from creatorpay.services.gateway import GatewayClient
from creatorpay.services.ledger import LedgerStore
from creatorpay.services.payouts import PayoutProcessor
from creatorpay.services.read_model import SqlReadModel
from creatorpay.services.reconciler import WebhookReconciler
from creatorpay.services.renewals import SubscriptionRenewals


@lru_cache(maxsize=1)
def get_ledger() -> LedgerStore:
    return LedgerStore(SessionLocal)


@lru_cache(maxsize=1)
def get_read_model() -> SqlReadModel:
    return SqlReadModel(SessionLocal)


@lru_cache(maxsize=1)
def get_gateway() -> GatewayClient:
    return GatewayClient(S)


@lru_cache(maxsize=1)
def get_checkout_service() -> CheckoutService:
    return CheckoutService(get_read_model(), get_ledger(), get_gateway(), S)


@lru_cache(maxsize=1)
def get_reconciler() -> WebhookReconciler:
    return WebhookReconciler(get_ledger(), get_gateway())


@lru_cache(maxsize=1)
def get_payout_processor() -> PayoutProcessor:
    return PayoutProcessor(get_read_model(), get_ledger(), get_gateway(), S)


@lru_cache(maxsize=1)
def get_renewals() -> SubscriptionRenewals:
    return SubscriptionRenewals(get_read_model(), get_ledger(), get_gateway(), S)
