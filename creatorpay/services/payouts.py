"""Payout processor: single and batch creator payouts.

Initiation never touches creator balances. ``pending_payout`` is only reduced
by the payout webhook once the gateway confirms the transfer.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from creatorpay.core.errors import LedgerError, NotFoundError, ValidationError
from creatorpay.core.normalize import to_money
from creatorpay.core.settings import S, Settings
from creatorpay.metrics import record_payout
from creatorpay.services.gateway import GatewayClient
from creatorpay.services.ledger import LedgerStore
from creatorpay.services.read_model import ReadModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PayoutResult:
    creator_id: str
    status: str  # success|failed
    payout_id: Optional[str] = None
    transfer_id: Optional[str] = None
    gross_amount: Optional[str] = None
    platform_fee: Optional[str] = None
    net_amount: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


class PayoutProcessor:
    def __init__(
        self,
        read_model: ReadModel,
        ledger: LedgerStore,
        gateway: GatewayClient,
        settings: Settings = S,
    ) -> None:
        self.read_model = read_model
        self.ledger = ledger
        self.gateway = gateway
        self.settings = settings

    def initiate_payout(self, creator_id: str) -> PayoutResult:
        """Start one transfer of the creator's whole pending balance.

        Raises the ``LedgerError`` subclass describing why the creator cannot be
        paid; a gateway failure leaves the payout row ``failed``.
        """
        creator = self.read_model.get_creator(creator_id)
        if not creator:
            raise NotFoundError("Creator not found")

        if to_money(creator.pending_payout) < self.settings.min_payout_usd:
            raise ValidationError(f"Minimum payout is ${self.settings.min_payout_usd:.2f}")

        wallet = self.read_model.get_default_wallet(creator_id)
        if not wallet:
            raise NotFoundError("No payout wallet configured")

        user = self.read_model.get_user(creator.user_id)
        if not user:
            raise NotFoundError("Creator user record not found")

        # the balance and the open-payout guard are re-read under the creator lock
        payout = self.ledger.open_payout(
            creator_id,
            fee_rate=self.settings.platform_fee_rate,
            min_amount=self.settings.min_payout_usd,
            currency=wallet.currency,
            network=wallet.network,
            destination_address=wallet.address,
        )
        payout_id = payout.id
        gross, fee, net = payout.gross_amount, payout.platform_fee, payout.net_amount

        try:
            transfer_id = self.gateway.initiate_payout(
                payout_id=payout_id,
                amount_usd=net,
                destination_address=wallet.address,
                currency=wallet.currency,
                network=wallet.network,
                payee_email=user.email,
                payee_name=user.name,
            )
        except Exception:
            # no payout stays open once the transfer call has failed
            self.ledger.fail_payout(payout_id)
            logger.error("Payout %s for creator %s failed at the gateway", payout_id, creator_id)
            raise

        self.ledger.set_payout_transfer_id(payout_id, transfer_id)
        logger.info("Payout %s initiated for creator %s: net %s (transfer %s)", payout_id, creator_id, net, transfer_id)
        return PayoutResult(
            creator_id=creator_id,
            status="success",
            payout_id=payout_id,
            transfer_id=transfer_id,
            gross_amount=f"{gross:.2f}",
            platform_fee=f"{fee:.2f}",
            net_amount=f"{net:.2f}",
        )

    def initiate_single(self, creator_id: str) -> PayoutResult:
        try:
            result = self.initiate_payout(creator_id)
        except LedgerError:
            record_payout("single", "failed")
            raise
        record_payout("single", "success")
        return result

    def initiate_batch_payout(self) -> Dict[str, Any]:
        """Best effort over every eligible creator; one failure never stops the rest."""
        eligible = self.read_model.list_payout_eligible_creators(self.settings.min_payout_usd)
        results: List[PayoutResult] = []
        for creator in eligible:
            try:
                results.append(self.initiate_payout(creator.id))
                record_payout("batch", "success")
            except LedgerError as e:
                logger.warning("Batch payout skipped creator %s: %s", creator.id, e.message)
                results.append(PayoutResult(creator_id=creator.id, status="failed", reason=e.message))
                record_payout("batch", "failed")
            except Exception as e:
                logger.exception("Batch payout errored for creator %s", creator.id)
                results.append(PayoutResult(creator_id=creator.id, status="failed", reason=str(e) or type(e).__name__))
                record_payout("batch", "failed")

        processed = sum(1 for r in results if r.status == "success")
        summary = {
            "total": len(results),
            "processed": processed,
            "failed": len(results) - processed,
            "results": [r.to_dict() for r in results],
        }
        logger.info("Batch payout finished: %d processed, %d failed", summary["processed"], summary["failed"])
        return summary
