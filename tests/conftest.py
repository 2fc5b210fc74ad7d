from __future__ import annotations

import json
import sys
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from creatorpay.core.crypto import aes_decrypt_passphrase, hmac_sha256_hex
from creatorpay.core.db import init_db, make_engine, make_session_factory
from creatorpay.core.settings import Settings
from creatorpay.core.tables import Creator, CreatorWallet, Post, User
from creatorpay.services import gateway as gateway_mod
from creatorpay.services.checkout import CheckoutService
from creatorpay.services.gateway import GatewayClient
from creatorpay.services.ledger import LedgerStore
from creatorpay.services.payouts import PayoutProcessor
from creatorpay.services.read_model import SqlReadModel
from creatorpay.services.reconciler import WebhookReconciler
from creatorpay.services.renewals import SubscriptionRenewals

API_SECRET = "test-gateway-secret"

FAN_ID = "fan-0001"
CREATOR_USER_ID = "creator-user-0001"
CREATOR_ID = "creator-0001"
SECOND_CREATOR_USER_ID = "creator-user-0002"
SECOND_CREATOR_ID = "creator-0002"
POST_ID = "post-0001"


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text or json.dumps(payload or {})

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeGatewayHTTP:
    """Stands in for ``requests.post``; decrypts and records every outbound payload."""

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.responses: List[FakeResponse] = []

    def queue(self, *responses: FakeResponse) -> None:
        self.responses.extend(responses)

    def __call__(self, url: str, headers=None, data=None, timeout=None) -> FakeResponse:
        envelope = json.loads(data)
        payload = json.loads(aes_decrypt_passphrase(envelope["data"], API_SECRET))
        self.calls.append({"url": url, "headers": headers, "payload": payload, "timeout": timeout})
        if self.responses:
            return self.responses.pop(0)
        if url.endswith("/payout/initiate"):
            return FakeResponse(200, {"transferId": f"tr_{payload['payoutID']}"})
        return FakeResponse(200, {"checkoutUrl": f"https://pay.test/c/{payload['orderID']}"})


def sign(body: bytes, secret: str = API_SECRET) -> str:
    return hmac_sha256_hex(secret, body)


def event_body(order_id: str, status: str = "completed", **extra: Any) -> bytes:
    payload = {
        "orderId": order_id,
        "status": status,
        "amount": "0.00",
        "currency": "USDT",
        "network": "TRC20",
        "txHash": "0xabc",
        "timestamp": "1700000000",
    }
    payload.update(extra)
    return json.dumps(payload).encode("utf-8")


@pytest.fixture
def settings() -> Settings:
    return Settings(
        gateway_api_key="test-api-key",
        gateway_api_secret=API_SECRET,
        gateway_base_url="https://gateway.test/v1",
        public_base_url="https://fans.test",
    )


@pytest.fixture
def session_factory():
    eng = make_engine("sqlite://", poolclass=StaticPool)
    init_db(eng)
    factory = make_session_factory(eng)
    with factory() as db, db.begin():
        db.add_all(
            [
                User(id=FAN_ID, name="Fan One", email="fan@example.com"),
                User(id=CREATOR_USER_ID, name="Creator One", email="creator1@example.com", role="creator"),
                User(id=SECOND_CREATOR_USER_ID, name="Creator Two", email="creator2@example.com", role="creator"),
            ]
        )
        db.flush()
        db.add_all(
            [
                Creator(
                    id=CREATOR_ID,
                    user_id=CREATOR_USER_ID,
                    standard_price=Decimal("9.99"),
                    vip_price=Decimal("24.99"),
                    status="active",
                ),
                Creator(
                    id=SECOND_CREATOR_ID,
                    user_id=SECOND_CREATOR_USER_ID,
                    standard_price=Decimal("5.00"),
                    vip_price=Decimal("15.00"),
                    status="active",
                ),
            ]
        )
        db.flush()
        db.add_all(
            [
                CreatorWallet(
                    creator_id=CREATOR_ID,
                    currency="USDT",
                    network="TRC20",
                    address="TXYZcreator1wallet",
                    is_default=True,
                ),
                Post(id=POST_ID, creator_id=CREATOR_ID, title="Locked", is_locked=True, ppv_price=Decimal("7.50")),
            ]
        )
    yield factory
    eng.dispose()


@pytest.fixture
def fake_http(monkeypatch) -> FakeGatewayHTTP:
    fake = FakeGatewayHTTP()
    monkeypatch.setattr(gateway_mod.requests, "post", fake)
    return fake


@pytest.fixture
def ledger(session_factory) -> LedgerStore:
    return LedgerStore(session_factory)


@pytest.fixture
def read_model(session_factory) -> SqlReadModel:
    return SqlReadModel(session_factory)


@pytest.fixture
def gateway(settings) -> GatewayClient:
    return GatewayClient(settings)


@pytest.fixture
def checkout(read_model, ledger, gateway, settings) -> CheckoutService:
    return CheckoutService(read_model, ledger, gateway, settings)


@pytest.fixture
def reconciler(ledger, gateway) -> WebhookReconciler:
    return WebhookReconciler(ledger, gateway)


@pytest.fixture
def payouts(read_model, ledger, gateway, settings) -> PayoutProcessor:
    return PayoutProcessor(read_model, ledger, gateway, settings)


@pytest.fixture
def renewals(read_model, ledger, gateway, settings) -> SubscriptionRenewals:
    return SubscriptionRenewals(read_model, ledger, gateway, settings)


def deliver(reconciler: WebhookReconciler, kind: str, body: bytes, signature: Optional[str] = None):
    return reconciler.handle(kind, body, sign(body) if signature is None else signature)


def get_row(session_factory, model, row_id: str):
    with session_factory() as db:
        return db.get(model, row_id)


def set_pending_payout(session_factory, creator_id: str, amount: str) -> None:
    with session_factory() as db, db.begin():
        db.get(Creator, creator_id).pending_payout = Decimal(amount)
