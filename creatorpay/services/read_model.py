"""Read-model port consumed by the ledger services.

The checkout, payout and renewal flows only depend on the narrow queries in
``ReadModel``. ``SqlReadModel`` answers them from the relational store; tests
or other deployments may supply any object with the same methods.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, Tuple

from sqlalchemy import and_, or_, select

from creatorpay.core.db import SessionFactory
from creatorpay.core.tables import (
    PAYOUT_OPEN,
    SUB_ACTIVE,
    Creator,
    CreatorWallet,
    Payout,
    PPVUnlock,
    Post,
    Subscription,
    TransactionLogEntry,
    User,
)


@dataclass(frozen=True)
class UserRecord:
    id: str
    name: str
    email: str
    role: str


@dataclass(frozen=True)
class CreatorRecord:
    id: str
    user_id: str
    status: str
    standard_price: Decimal
    vip_price: Decimal
    total_earnings: Decimal
    pending_payout: Decimal
    subscriber_count: int


@dataclass(frozen=True)
class PostRecord:
    id: str
    creator_id: str
    is_locked: bool
    ppv_price: Optional[Decimal]


@dataclass(frozen=True)
class WalletRecord:
    creator_id: str
    currency: str
    network: str
    address: str


@dataclass(frozen=True)
class SubscriptionRecord:
    id: str
    user_id: str
    creator_id: str
    tier: str
    status: str
    payment_status: str
    price_at_subscription: Decimal
    current_period_end: datetime
    renewal_order_id: Optional[str]


@dataclass(frozen=True)
class UnlockRecord:
    id: str
    user_id: str
    post_id: str
    payment_status: str


class ReadModel(Protocol):
    def get_user(self, user_id: str) -> Optional[UserRecord]: ...

    def get_creator(self, creator_id: str) -> Optional[CreatorRecord]: ...

    def get_post(self, post_id: str) -> Optional[PostRecord]: ...

    def get_default_wallet(self, creator_id: str) -> Optional[WalletRecord]: ...

    def get_active_subscription(self, user_id: str, creator_id: str) -> Optional[SubscriptionRecord]: ...

    def get_ppv_unlock(self, user_id: str, post_id: str) -> Optional[UnlockRecord]: ...

    def list_payout_eligible_creators(self, min_amount: Decimal) -> List[CreatorRecord]: ...

    def list_expiring_subscriptions(self, now: datetime, until: datetime) -> List[SubscriptionRecord]: ...


def _creator_record(c: Creator) -> CreatorRecord:
    return CreatorRecord(
        id=c.id,
        user_id=c.user_id,
        status=c.status,
        standard_price=Decimal(c.standard_price),
        vip_price=Decimal(c.vip_price),
        total_earnings=Decimal(c.total_earnings),
        pending_payout=Decimal(c.pending_payout),
        subscriber_count=int(c.subscriber_count),
    )


def _subscription_record(s: Subscription) -> SubscriptionRecord:
    return SubscriptionRecord(
        id=s.id,
        user_id=s.user_id,
        creator_id=s.creator_id,
        tier=s.tier,
        status=s.status,
        payment_status=s.payment_status,
        price_at_subscription=Decimal(s.price_at_subscription),
        current_period_end=s.current_period_end,
        renewal_order_id=s.renewal_order_id,
    )


class SqlReadModel:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._session_factory() as db:
            u = db.get(User, user_id)
            return UserRecord(id=u.id, name=u.name or "", email=u.email, role=u.role) if u else None

    def get_creator(self, creator_id: str) -> Optional[CreatorRecord]:
        with self._session_factory() as db:
            c = db.get(Creator, creator_id)
            return _creator_record(c) if c else None

    def get_post(self, post_id: str) -> Optional[PostRecord]:
        with self._session_factory() as db:
            p = db.get(Post, post_id)
            if not p:
                return None
            return PostRecord(
                id=p.id,
                creator_id=p.creator_id,
                is_locked=bool(p.is_locked),
                ppv_price=Decimal(p.ppv_price) if p.ppv_price is not None else None,
            )

    def get_default_wallet(self, creator_id: str) -> Optional[WalletRecord]:
        with self._session_factory() as db:
            w = db.execute(
                select(CreatorWallet)
                .where(and_(CreatorWallet.creator_id == creator_id, CreatorWallet.is_default.is_(True)))
                .limit(1)
            ).scalar_one_or_none()
            if not w:
                return None
            return WalletRecord(creator_id=w.creator_id, currency=w.currency, network=w.network, address=w.address)

    def get_active_subscription(self, user_id: str, creator_id: str) -> Optional[SubscriptionRecord]:
        with self._session_factory() as db:
            s = db.execute(
                select(Subscription)
                .where(
                    and_(
                        Subscription.user_id == user_id,
                        Subscription.creator_id == creator_id,
                        Subscription.status == SUB_ACTIVE,
                    )
                )
                .limit(1)
            ).scalar_one_or_none()
            return _subscription_record(s) if s else None

    def get_ppv_unlock(self, user_id: str, post_id: str) -> Optional[UnlockRecord]:
        with self._session_factory() as db:
            u = db.execute(
                select(PPVUnlock).where(and_(PPVUnlock.user_id == user_id, PPVUnlock.post_id == post_id)).limit(1)
            ).scalar_one_or_none()
            if not u:
                return None
            return UnlockRecord(id=u.id, user_id=u.user_id, post_id=u.post_id, payment_status=u.payment_status)

    def list_payout_eligible_creators(self, min_amount: Decimal) -> List[CreatorRecord]:
        with self._session_factory() as db:
            rows = db.execute(
                select(Creator).where(Creator.pending_payout >= min_amount).order_by(Creator.pending_payout.desc())
            ).scalars().all()
            return [_creator_record(c) for c in rows]

    def list_expiring_subscriptions(self, now: datetime, until: datetime) -> List[SubscriptionRecord]:
        with self._session_factory() as db:
            rows = db.execute(
                select(Subscription).where(
                    and_(
                        Subscription.status == SUB_ACTIVE,
                        Subscription.current_period_end >= now,
                        Subscription.current_period_end <= until,
                        Subscription.renewal_order_id.is_(None),
                    )
                )
            ).scalars().all()
            return [_subscription_record(s) for s in rows]

    # ---------- presentation views (never written back) ----------

    def list_transactions(
        self,
        user_id: str,
        *,
        limit: int = 50,
        before: Optional[Tuple[datetime, str]] = None,
    ) -> List[Dict[str, Any]]:
        stmt = select(TransactionLogEntry).where(TransactionLogEntry.user_id == user_id)
        if before:
            created_at, entry_id = before
            stmt = stmt.where(
                or_(
                    TransactionLogEntry.created_at < created_at,
                    and_(TransactionLogEntry.created_at == created_at, TransactionLogEntry.id < entry_id),
                )
            )
        stmt = stmt.order_by(TransactionLogEntry.created_at.desc(), TransactionLogEntry.id.desc()).limit(limit)
        with self._session_factory() as db:
            return [
                {
                    "id": t.id,
                    "type": t.type,
                    "amount": f"{Decimal(t.amount):.2f}",
                    "description": t.description,
                    "externalRef": t.external_ref,
                    "createdAt": t.created_at,
                }
                for t in db.execute(stmt).scalars().all()
            ]

    def payout_queue(self, min_amount: Decimal, *, limit: int = 200) -> List[Dict[str, Any]]:
        """Existing payouts plus synthesized ``eligible`` rows for creators with no open payout."""
        with self._session_factory() as db:
            payouts = db.execute(select(Payout).order_by(Payout.created_at.desc()).limit(limit)).scalars().all()
            open_creators = {p.creator_id for p in payouts if p.status in PAYOUT_OPEN}
            open_creators.update(
                db.execute(select(Payout.creator_id).where(Payout.status.in_(PAYOUT_OPEN))).scalars().all()
            )
            eligible = db.execute(
                select(Creator).where(Creator.pending_payout >= min_amount).order_by(Creator.pending_payout.desc())
            ).scalars().all()

            out: List[Dict[str, Any]] = [
                {
                    "id": f"eligible:{c.id}",
                    "creatorId": c.id,
                    "status": "eligible",
                    "grossAmount": f"{Decimal(c.pending_payout):.2f}",
                    "virtual": True,
                }
                for c in eligible
                if c.id not in open_creators
            ]
            out.extend(
                {
                    "id": p.id,
                    "creatorId": p.creator_id,
                    "status": p.status,
                    "grossAmount": f"{Decimal(p.gross_amount):.2f}",
                    "platformFee": f"{Decimal(p.platform_fee):.2f}",
                    "netAmount": f"{Decimal(p.net_amount):.2f}",
                    "transferId": p.transfer_id,
                    "processedAt": p.processed_at,
                    "virtual": False,
                }
                for p in payouts
            )
            return out
