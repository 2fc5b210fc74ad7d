"""Gateway webhook reconciliation.

Every delivery is handled the same way:

1. verify the HMAC signature over the raw body (401 on mismatch, before any
   parsing);
2. parse the JSON envelope (400 on garbage);
3. inside ONE database transaction, lock the target row, skip it if it already
   reached a terminal state, otherwise apply the status transition together
   with its balance deltas and transaction-log entry.

Redeliveries therefore never double-credit, and a crash mid-delivery leaves
nothing half-applied. An order id we do not know is acknowledged with 200 so
the gateway stops retrying it.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from creatorpay.core.errors import AuthenticationError, ValidationError
from creatorpay.core.tables import (
    PAY_COMPLETED,
    PAYMENT_TERMINAL,
    PAYOUT_FAILED,
    PAYOUT_SENT,
    PAYOUT_TERMINAL,
    SUB_ACTIVE,
    SUB_CANCELLED,
    SUB_EXPIRED,
    TXN_PAYOUT,
    TXN_PPV,
    TXN_SUBSCRIPTION,
    TXN_TIP,
    Creator,
)
from creatorpay.core.time import add_months, utcnow
from creatorpay.metrics import record_webhook
from creatorpay.models import GatewayEvent
from creatorpay.services.gateway import GatewayClient
from creatorpay.services.ledger import LedgerStore

logger = logging.getLogger(__name__)

EVENT_COMPLETED = "completed"
EVENT_FAILURES = ("failed", "expired")

# apply() outcomes
OUT_COMPLETED = "completed"
OUT_FAILED = "failed"
OUT_DUPLICATE = "duplicate"
OUT_UNKNOWN_ORDER = "unknown_order"
OUT_IGNORED = "ignored"


@dataclass(frozen=True)
class WebhookResult:
    status_code: int
    outcome: str
    body: Dict[str, Any] = field(default_factory=lambda: {"received": True})


class _Handler:
    kind = ""

    def __init__(self, ledger: LedgerStore) -> None:
        self.ledger = ledger

    def lock(self, db: Session, order_id: str) -> Optional[Any]:
        raise NotImplementedError

    def is_terminal(self, row: Any, event: GatewayEvent) -> bool:
        return row.payment_status in PAYMENT_TERMINAL

    def complete(self, db: Session, row: Any, event: GatewayEvent) -> None:
        raise NotImplementedError

    def fail(self, db: Session, row: Any, event: GatewayEvent, status: str) -> None:
        row.payment_status = status

    def apply(self, db: Session, event: GatewayEvent) -> str:
        row = self.lock(db, event.order_id)
        if row is None:
            return OUT_UNKNOWN_ORDER
        if self.is_terminal(row, event):
            return OUT_DUPLICATE

        status = (event.status or "").strip().lower()
        if status == EVENT_COMPLETED:
            self.complete(db, row, event)
            return OUT_COMPLETED
        if status in EVENT_FAILURES:
            self.fail(db, row, event, status)
            return OUT_FAILED
        # pending and anything unrecognised: wait for the next delivery
        return OUT_IGNORED


class SubscriptionHandler(_Handler):
    kind = "subscription"

    def lock(self, db: Session, order_id: str):
        return self.ledger.lock_subscription(db, order_id)

    @staticmethod
    def _is_renewal(row, event: GatewayEvent) -> bool:
        return row.renewal_order_id is not None and row.renewal_order_id == event.order_id

    def is_terminal(self, row, event: GatewayEvent) -> bool:
        if self._is_renewal(row, event):
            # cleared once the renewal settles, so an in-flight id is never terminal
            return False
        return row.payment_status in PAYMENT_TERMINAL

    def complete(self, db: Session, row, event: GatewayEvent) -> None:
        now = utcnow()
        row.crypto_currency = event.currency
        row.crypto_network = event.network
        row.payment_status = PAY_COMPLETED
        row.updated_at = now

        if self._is_renewal(row, event):
            row.renewal_order_id = None
            description = f"Subscription renewal — {event.rail()}"
            if row.status == SUB_EXPIRED:
                self._reactivate(db, row, now)
            else:
                row.current_period_start = row.current_period_end
                row.current_period_end = add_months(row.current_period_end, 1)
        else:
            existing = self.ledger.lock_active_subscription(db, row.user_id, row.creator_id, exclude_id=row.id)
            if existing is not None:
                # a second checkout for the same pair settled; fold it into the live one
                existing.current_period_end = add_months(existing.current_period_end, 1)
                existing.updated_at = now
                row.status = SUB_CANCELLED
                row.cancelled_at = now
                logger.info(
                    "Subscription order %s paid while %s already active; extended existing",
                    event.order_id,
                    existing.id,
                )
            else:
                row.status = SUB_ACTIVE
                self.ledger.adjust_subscriber_count(db, row.creator_id, 1)
            description = f"Subscription payment — {event.rail()}"

        self.ledger.credit_creator(db, row.creator_id, row.price_at_subscription)
        self.ledger.append_transaction(
            db,
            user_id=row.user_id,
            creator_id=row.creator_id,
            txn_type=TXN_SUBSCRIPTION,
            amount=row.price_at_subscription,
            description=description,
            external_ref=event.order_id,
        )

    def _reactivate(self, db: Session, row, now) -> None:
        """A renewal paid after the lapse sweep buys a fresh month from now."""
        existing = self.ledger.lock_active_subscription(db, row.user_id, row.creator_id, exclude_id=row.id)
        if existing is not None:
            # the fan subscribed again meanwhile; the payment extends that one
            existing.current_period_end = add_months(existing.current_period_end, 1)
            existing.updated_at = now
            logger.info("Late renewal for expired %s extended active %s", row.id, existing.id)
            return
        row.status = SUB_ACTIVE
        row.current_period_start = now
        row.current_period_end = add_months(now, 1)
        self.ledger.adjust_subscriber_count(db, row.creator_id, 1)
        logger.info("Late renewal reactivated expired subscription %s", row.id)

    def fail(self, db: Session, row, event: GatewayEvent, status: str) -> None:
        now = utcnow()
        row.updated_at = now
        if self._is_renewal(row, event):
            # the current period stands; the lapse sweep expires it if nothing else arrives
            row.renewal_order_id = None
            return
        row.payment_status = status
        row.status = SUB_CANCELLED
        row.cancelled_at = now


class TipHandler(_Handler):
    kind = "tip"

    def lock(self, db: Session, order_id: str):
        return self.ledger.lock_tip(db, order_id)

    def complete(self, db: Session, row, event: GatewayEvent) -> None:
        row.payment_status = PAY_COMPLETED
        row.crypto_currency = event.currency
        row.crypto_network = event.network
        row.updated_at = utcnow()
        self.ledger.credit_creator(db, row.to_creator_id, row.amount)
        self.ledger.append_transaction(
            db,
            user_id=row.from_user_id,
            creator_id=row.to_creator_id,
            txn_type=TXN_TIP,
            amount=row.amount,
            description=f"Tip sent — {event.rail()}",
            external_ref=event.order_id,
        )


class PPVHandler(_Handler):
    kind = "ppv"

    def lock(self, db: Session, order_id: str):
        return self.ledger.lock_ppv_unlock(db, order_id)

    def complete(self, db: Session, row, event: GatewayEvent) -> None:
        row.payment_status = PAY_COMPLETED
        row.crypto_currency = event.currency
        row.crypto_network = event.network
        row.updated_at = utcnow()
        self.ledger.credit_creator(db, row.creator_id, row.amount_paid)
        self.ledger.append_transaction(
            db,
            user_id=row.user_id,
            creator_id=row.creator_id,
            txn_type=TXN_PPV,
            amount=row.amount_paid,
            description=f"PPV unlock — {event.rail()}",
            external_ref=event.order_id,
        )


class PayoutHandler(_Handler):
    kind = "payout"

    def lock(self, db: Session, order_id: str):
        return self.ledger.lock_payout(db, order_id)

    def is_terminal(self, row, event: GatewayEvent) -> bool:
        return row.status in PAYOUT_TERMINAL

    def complete(self, db: Session, row, event: GatewayEvent) -> None:
        now = utcnow()
        row.status = PAYOUT_SENT
        row.processed_at = now
        row.updated_at = now
        self.ledger.debit_pending_payout(db, row.creator_id, row.net_amount)

        creator = db.get(Creator, row.creator_id)
        if creator is not None:
            currency = event.currency or row.crypto_currency
            network = event.network or row.crypto_network
            self.ledger.append_transaction(
                db,
                user_id=creator.user_id,
                creator_id=row.creator_id,
                txn_type=TXN_PAYOUT,
                amount=row.net_amount,
                description=f"Payout sent — {currency or 'unknown'} on {network or 'unknown'}",
                external_ref=row.transfer_id or row.id,
            )

    def fail(self, db: Session, row, event: GatewayEvent, status: str) -> None:
        row.status = PAYOUT_FAILED
        row.updated_at = utcnow()


class WebhookReconciler:
    def __init__(self, ledger: LedgerStore, gateway: GatewayClient) -> None:
        self.ledger = ledger
        self.gateway = gateway
        self.handlers: Dict[str, _Handler] = {
            h.kind: h
            for h in (SubscriptionHandler(ledger), TipHandler(ledger), PPVHandler(ledger), PayoutHandler(ledger))
        }

    def _parse(self, raw_body: bytes, signature: Optional[str]) -> GatewayEvent:
        if not self.gateway.verify_webhook_signature(raw_body, signature):
            raise AuthenticationError("Invalid signature")
        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            raise ValidationError("Invalid JSON")
        try:
            return GatewayEvent.model_validate(payload)
        except PydanticValidationError:
            raise ValidationError("Invalid event payload")

    def handle(self, kind: str, raw_body: bytes, signature: Optional[str]) -> WebhookResult:
        handler = self.handlers.get(kind)
        if handler is None:
            raise ValueError(f"Unknown webhook kind: {kind}")

        try:
            event = self._parse(raw_body, signature)
        except AuthenticationError as e:
            logger.warning("Rejected %s webhook: %s", kind, e.message)
            record_webhook(kind, "bad_signature")
            return WebhookResult(e.http_status, "bad_signature", {"error": e.message})
        except ValidationError as e:
            logger.warning("Rejected %s webhook: %s", kind, e.message)
            record_webhook(kind, "bad_payload")
            return WebhookResult(e.http_status, "bad_payload", {"error": e.message})

        with self.ledger.transaction() as db:
            outcome = handler.apply(db, event)

        if outcome == OUT_UNKNOWN_ORDER:
            logger.warning("%s webhook for unknown order %s acknowledged", kind, event.order_id)
        elif outcome == OUT_DUPLICATE:
            logger.info("%s webhook for %s already settled; ignored", kind, event.order_id)
        else:
            logger.info("%s webhook %s status=%s -> %s", kind, event.order_id, event.status, outcome)
        record_webhook(kind, outcome)
        return WebhookResult(200, outcome)
