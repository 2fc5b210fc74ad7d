"""Ledger store: every write to balances and payment rows goes through here.

Balance changes are relative SQL deltas (``col = col + :amount``) issued in the
caller's transaction, never read-modify-write in Python, so concurrent
completions for the same creator cannot lose updates. Subtractions are floored
at zero.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Iterator, Optional, Tuple

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from creatorpay.core.db import SessionFactory
from creatorpay.core.errors import ConflictError, NotFoundError, ValidationError
from creatorpay.core.normalize import compute_payout_split, to_money
from creatorpay.core.tables import (
    PAY_COMPLETED,
    PAY_INITIATED,
    PAYMENT_OPEN,
    PAYOUT_FAILED,
    PAYOUT_OPEN,
    PAYOUT_PROCESSING,
    PAYOUT_TERMINAL,
    SUB_ACTIVE,
    SUB_EXPIRED,
    Creator,
    Payout,
    PPVUnlock,
    Subscription,
    Tip,
    TransactionLogEntry,
)
from creatorpay.core.time import utcnow

logger = logging.getLogger(__name__)


def _floored(column, amount):
    return case((column - amount < 0, 0), else_=column - amount)


class LedgerStore:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """One atomic unit: commits on clean exit, rolls back on any exception."""
        with self._session_factory() as db, db.begin():
            yield db

    # ============================================================
    # Purchase rows (created by the checkout flows)
    # ============================================================

    def create_subscription(
        self,
        *,
        user_id: str,
        creator_id: str,
        tier: str,
        price: Decimal,
        order_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> str:
        with self.transaction() as db:
            sub = Subscription(
                user_id=user_id,
                creator_id=creator_id,
                tier=tier,
                price_at_subscription=to_money(price),
                order_ref=order_id,
                payment_status=PAY_INITIATED,
                current_period_start=period_start,
                current_period_end=period_end,
            )
            db.add(sub)
            db.flush()
            return sub.id

    def delete_subscription(self, order_id: str) -> None:
        with self.transaction() as db:
            db.execute(
                delete(Subscription).where(
                    and_(Subscription.order_ref == order_id, Subscription.payment_status == PAY_INITIATED)
                )
            )

    def create_tip(
        self,
        *,
        from_user_id: str,
        to_creator_id: str,
        amount: Decimal,
        order_id: str,
        message: Optional[str] = None,
        is_anonymous: bool = False,
    ) -> str:
        with self.transaction() as db:
            tip = Tip(
                from_user_id=from_user_id,
                to_creator_id=to_creator_id,
                amount=to_money(amount),
                message=message,
                is_anonymous=bool(is_anonymous),
                order_ref=order_id,
                payment_status=PAY_INITIATED,
            )
            db.add(tip)
            db.flush()
            return tip.id

    def upsert_ppv_unlock(
        self,
        *,
        user_id: str,
        post_id: str,
        creator_id: str,
        amount: Decimal,
        order_id: str,
    ) -> Tuple[str, Decimal]:
        """Return the ``(order_id, amount)`` the checkout must be opened for.

        A (user, post) pair has one row. An attempt still waiting for payment
        keeps its order id and price, so a checkout page already handed out
        stays payable. Only a failed or expired attempt is re-armed with
        ``order_id``.
        """
        with self.transaction() as db:
            unlock = db.execute(
                select(PPVUnlock)
                .where(and_(PPVUnlock.user_id == user_id, PPVUnlock.post_id == post_id))
                .with_for_update()
            ).scalar_one_or_none()
            if unlock is None:
                unlock = PPVUnlock(user_id=user_id, post_id=post_id, creator_id=creator_id)
                db.add(unlock)
            elif unlock.payment_status == PAY_COMPLETED:
                raise ConflictError(f"Unlock {unlock.id} already completed")
            elif unlock.payment_status in PAYMENT_OPEN and unlock.order_ref:
                return unlock.order_ref, to_money(unlock.amount_paid)
            unlock.amount_paid = to_money(amount)
            unlock.order_ref = order_id
            unlock.payment_status = PAY_INITIATED
            unlock.crypto_currency = None
            unlock.crypto_network = None
            db.flush()
            return order_id, unlock.amount_paid

    # ============================================================
    # Renewals
    # ============================================================

    def claim_renewal(self, subscription_id: str, order_id: str) -> bool:
        """Stamp ``renewal_order_id`` only if no renewal is already in flight."""
        with self.transaction() as db:
            result = db.execute(
                update(Subscription)
                .where(
                    and_(
                        Subscription.id == subscription_id,
                        Subscription.status == SUB_ACTIVE,
                        Subscription.renewal_order_id.is_(None),
                    )
                )
                .values(renewal_order_id=order_id, updated_at=utcnow())
            )
            return result.rowcount == 1

    def release_renewal(self, subscription_id: str, order_id: str) -> None:
        with self.transaction() as db:
            db.execute(
                update(Subscription)
                .where(and_(Subscription.id == subscription_id, Subscription.renewal_order_id == order_id))
                .values(renewal_order_id=None, updated_at=utcnow())
            )

    def expire_lapsed_subscriptions(self, now: datetime) -> int:
        """Expire every active subscription whose period has ended.

        An unpaid renewal claim does not hold the row open. The claim is kept so
        a late renewal payment still resolves and reactivates the subscription.
        """
        with self.transaction() as db:
            lapsed = db.execute(
                select(Subscription)
                .where(and_(Subscription.status == SUB_ACTIVE, Subscription.current_period_end < now))
                .with_for_update()
            ).scalars().all()
            for sub in lapsed:
                sub.status = SUB_EXPIRED
                self.adjust_subscriber_count(db, sub.creator_id, -1)
            if lapsed:
                logger.info("Expired %d lapsed subscriptions", len(lapsed))
            return len(lapsed)

    # ============================================================
    # Payout rows
    # ============================================================

    @staticmethod
    def _has_open_payout(db: Session, creator_id: str) -> bool:
        n = db.execute(
            select(func.count())
            .select_from(Payout)
            .where(and_(Payout.creator_id == creator_id, Payout.status.in_(PAYOUT_OPEN)))
        ).scalar_one()
        return n > 0

    def open_payout(
        self,
        creator_id: str,
        *,
        fee_rate: Decimal,
        min_amount: Decimal,
        currency: str,
        network: str,
        destination_address: str,
    ) -> Payout:
        """Write a ``processing`` payout for the creator's whole pending balance.

        The creator row is locked first, so the open-payout check, the balance
        read and the insert see one state; a concurrent initiation waits and
        then fails with ``ConflictError``. The partial unique index on open
        payouts rejects a second open row where row locks are unavailable.
        """
        try:
            with self.transaction() as db:
                creator = db.execute(
                    select(Creator).where(Creator.id == creator_id).with_for_update()
                ).scalar_one_or_none()
                if creator is None:
                    raise NotFoundError("Creator not found")
                if self._has_open_payout(db, creator_id):
                    raise ConflictError("A payout is already in progress for this creator")

                gross, fee, net = compute_payout_split(creator.pending_payout or 0, fee_rate)
                if gross < min_amount:
                    raise ValidationError(f"Minimum payout is ${min_amount:.2f}")

                payout = Payout(
                    creator_id=creator_id,
                    gross_amount=gross,
                    platform_fee=fee,
                    net_amount=net,
                    status=PAYOUT_PROCESSING,
                    crypto_currency=currency,
                    crypto_network=network,
                    destination_address=destination_address,
                )
                db.add(payout)
                db.flush()
                db.expunge(payout)
                return payout
        except IntegrityError as exc:
            raise ConflictError("A payout is already in progress for this creator") from exc

    def set_payout_transfer_id(self, payout_id: str, transfer_id: str) -> None:
        with self.transaction() as db:
            db.execute(
                update(Payout).where(Payout.id == payout_id).values(transfer_id=transfer_id, updated_at=utcnow())
            )

    def fail_payout(self, payout_id: str) -> None:
        with self.transaction() as db:
            db.execute(
                update(Payout)
                .where(and_(Payout.id == payout_id, Payout.status.notin_(PAYOUT_TERMINAL)))
                .values(status=PAYOUT_FAILED, updated_at=utcnow())
            )

    # ============================================================
    # Row-locked lookups (inside a caller transaction)
    # ============================================================

    @staticmethod
    def lock_subscription(db: Session, order_id: str) -> Optional[Subscription]:
        return db.execute(
            select(Subscription)
            .where(or_(Subscription.order_ref == order_id, Subscription.renewal_order_id == order_id))
            .with_for_update()
        ).scalar_one_or_none()

    @staticmethod
    def lock_active_subscription(db: Session, user_id: str, creator_id: str, *, exclude_id: str) -> Optional[Subscription]:
        return db.execute(
            select(Subscription)
            .where(
                and_(
                    Subscription.user_id == user_id,
                    Subscription.creator_id == creator_id,
                    Subscription.status == SUB_ACTIVE,
                    Subscription.id != exclude_id,
                )
            )
            .with_for_update()
        ).scalar_one_or_none()

    @staticmethod
    def lock_tip(db: Session, order_id: str) -> Optional[Tip]:
        return db.execute(select(Tip).where(Tip.order_ref == order_id).with_for_update()).scalar_one_or_none()

    @staticmethod
    def lock_ppv_unlock(db: Session, order_id: str) -> Optional[PPVUnlock]:
        return db.execute(
            select(PPVUnlock).where(PPVUnlock.order_ref == order_id).with_for_update()
        ).scalar_one_or_none()

    @staticmethod
    def lock_payout(db: Session, reference: str) -> Optional[Payout]:
        return db.execute(
            select(Payout).where(or_(Payout.transfer_id == reference, Payout.id == reference)).with_for_update()
        ).scalar_one_or_none()

    # ============================================================
    # Balance deltas and the transaction log (inside a caller transaction)
    # ============================================================

    @staticmethod
    def credit_creator(db: Session, creator_id: str, amount: Decimal) -> None:
        amount = to_money(amount)
        db.execute(
            update(Creator)
            .where(Creator.id == creator_id)
            .values(
                pending_payout=Creator.pending_payout + amount,
                total_earnings=Creator.total_earnings + amount,
                updated_at=utcnow(),
            )
        )

    @staticmethod
    def debit_pending_payout(db: Session, creator_id: str, amount: Decimal) -> None:
        amount = to_money(amount)
        db.execute(
            update(Creator)
            .where(Creator.id == creator_id)
            .values(pending_payout=_floored(Creator.pending_payout, amount), updated_at=utcnow())
        )

    @staticmethod
    def adjust_subscriber_count(db: Session, creator_id: str, delta: int) -> None:
        if delta >= 0:
            value = Creator.subscriber_count + delta
        else:
            value = _floored(Creator.subscriber_count, -delta)
        db.execute(
            update(Creator).where(Creator.id == creator_id).values(subscriber_count=value, updated_at=utcnow())
        )

    @staticmethod
    def append_transaction(
        db: Session,
        *,
        user_id: str,
        txn_type: str,
        amount: Decimal,
        description: str,
        external_ref: Optional[str],
        creator_id: Optional[str] = None,
    ) -> None:
        db.add(
            TransactionLogEntry(
                user_id=user_id,
                creator_id=creator_id,
                type=txn_type,
                amount=to_money(amount),
                description=description,
                external_ref=external_ref,
            )
        )
