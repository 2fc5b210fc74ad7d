"""Relational tables for the creator ledger.

``users``, ``posts`` and the creator profile columns are owned by the
profile/auth layer; the ledger only reads them. Balance columns on
``creators`` and every payment row are written by the ledger services.
"""
from __future__ import annotations

import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base

from creatorpay.core.time import utcnow

Base = declarative_base()

# payment_status values
PAY_INITIATED = "initiated"
PAY_PENDING = "pending"
PAY_COMPLETED = "completed"
PAY_FAILED = "failed"
PAY_EXPIRED = "expired"
PAYMENT_OPEN = (PAY_INITIATED, PAY_PENDING)
PAYMENT_TERMINAL = (PAY_COMPLETED, PAY_FAILED, PAY_EXPIRED)

# subscriptions.status
SUB_ACTIVE = "active"
SUB_CANCELLED = "cancelled"
SUB_EXPIRED = "expired"
SUB_PAUSED = "paused"  # awaiting the first payment

# payouts.status
PAYOUT_PENDING = "pending"
PAYOUT_PROCESSING = "processing"
PAYOUT_SENT = "sent"
PAYOUT_FAILED = "failed"
PAYOUT_OPEN = (PAYOUT_PENDING, PAYOUT_PROCESSING)
PAYOUT_TERMINAL = (PAYOUT_SENT, PAYOUT_FAILED)

# transactions.type
TXN_SUBSCRIPTION = "subscription"
TXN_PPV = "ppv"
TXN_TIP = "tip"
TXN_PAYOUT = "payout"
TXN_REFUND = "refund"


def new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False, default="")
    email = Column(String(254), nullable=False, unique=True)
    role = Column(String(20), nullable=False, default="user")
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Creator(Base):
    __tablename__ = "creators"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    standard_price = Column(Numeric(10, 2), nullable=False, default=0)
    vip_price = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default="pending", index=True)
    total_earnings = Column(Numeric(12, 2), nullable=False, default=0)
    pending_payout = Column(Numeric(12, 2), nullable=False, default=0)
    subscriber_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("pending_payout >= 0", name="ck_creators_pending_payout_non_negative"),
        CheckConstraint("subscriber_count >= 0", name="ck_creators_subscriber_count_non_negative"),
    )


class CreatorWallet(Base):
    __tablename__ = "creator_wallets"

    id = Column(String(36), primary_key=True, default=new_id)
    creator_id = Column(String(36), ForeignKey("creators.id", ondelete="CASCADE"), nullable=False, index=True)
    currency = Column(String(16), nullable=False)
    network = Column(String(16), nullable=False)
    address = Column(String(128), nullable=False)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (UniqueConstraint("creator_id", "currency", name="uq_wallets_creator_currency"),)


class Post(Base):
    __tablename__ = "posts"

    id = Column(String(36), primary_key=True, default=new_id)
    creator_id = Column(String(36), ForeignKey("creators.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(300), nullable=False, default="")
    is_locked = Column(Boolean, nullable=False, default=False)
    ppv_price = Column(Numeric(10, 2), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    creator_id = Column(String(36), ForeignKey("creators.id", ondelete="CASCADE"), nullable=False, index=True)
    tier = Column(String(16), nullable=False, default="standard")
    status = Column(String(16), nullable=False, default=SUB_PAUSED, index=True)
    price_at_subscription = Column(Numeric(10, 2), nullable=False)
    order_ref = Column(String(96), nullable=True, unique=True, index=True)
    renewal_order_id = Column(String(96), nullable=True, unique=True, index=True)
    crypto_currency = Column(String(16), nullable=True)
    crypto_network = Column(String(16), nullable=True)
    payment_status = Column(String(16), nullable=False, default=PAY_INITIATED)
    current_period_start = Column(DateTime, nullable=False)
    current_period_end = Column(DateTime, nullable=False)
    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index(
            "uq_subscriptions_active_pair",
            "user_id",
            "creator_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )


class Tip(Base):
    __tablename__ = "tips"

    id = Column(String(36), primary_key=True, default=new_id)
    from_user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    to_creator_id = Column(String(36), ForeignKey("creators.id"), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    message = Column(Text, nullable=True)
    is_anonymous = Column(Boolean, nullable=False, default=False)
    order_ref = Column(String(96), nullable=False, unique=True, index=True)
    crypto_currency = Column(String(16), nullable=True)
    crypto_network = Column(String(16), nullable=True)
    payment_status = Column(String(16), nullable=False, default=PAY_INITIATED)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (CheckConstraint("amount > 0", name="ck_tips_amount_positive"),)


class PPVUnlock(Base):
    __tablename__ = "ppv_unlocks"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    post_id = Column(String(36), ForeignKey("posts.id"), nullable=False)
    creator_id = Column(String(36), ForeignKey("creators.id"), nullable=False, index=True)
    amount_paid = Column(Numeric(10, 2), nullable=False)
    order_ref = Column(String(96), nullable=False, unique=True, index=True)
    crypto_currency = Column(String(16), nullable=True)
    crypto_network = Column(String(16), nullable=True)
    payment_status = Column(String(16), nullable=False, default=PAY_INITIATED)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (UniqueConstraint("user_id", "post_id", name="uq_ppv_user_post"),)


class Payout(Base):
    __tablename__ = "payouts"

    id = Column(String(36), primary_key=True, default=new_id)
    creator_id = Column(String(36), ForeignKey("creators.id"), nullable=False, index=True)
    gross_amount = Column(Numeric(12, 2), nullable=False)
    platform_fee = Column(Numeric(12, 2), nullable=False)
    net_amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(16), nullable=False, default=PAYOUT_PENDING, index=True)
    crypto_currency = Column(String(16), nullable=False, default="USDT")
    crypto_network = Column(String(16), nullable=True)
    destination_address = Column(String(128), nullable=False)
    transfer_id = Column(String(128), nullable=True, unique=True, index=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        # at most one open payout per creator
        Index(
            "uq_payouts_open_creator",
            "creator_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'processing')"),
            sqlite_where=text("status IN ('pending', 'processing')"),
        ),
    )


class TransactionLogEntry(Base):
    """Append-only audit trail of completed money movement."""

    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    creator_id = Column(String(36), ForeignKey("creators.id"), nullable=True, index=True)
    type = Column(String(16), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(Text, nullable=False)
    external_ref = Column(String(128), nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
