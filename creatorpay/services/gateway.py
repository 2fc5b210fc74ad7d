"""Crypto payment gateway adapter.

All outbound payloads are JSON, AES-encrypted with the shared API secret and
POSTed as ``{"data": <ciphertext>}`` with the API key header. Inbound webhooks
are authenticated with an HMAC-SHA256 of the raw request body.
"""
from __future__ import annotations

import json
import logging
import secrets
import string
import time
from decimal import Decimal
from typing import Any, Dict, Optional

import requests

from creatorpay.core.crypto import aes_encrypt_passphrase, verify_hmac_sha256
from creatorpay.core.errors import GatewayError
from creatorpay.core.normalize import money_str
from creatorpay.core.settings import S, Settings
from creatorpay.core.time import now_ts

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-gateway-signature"
ORDER_TYPE_TAGS = ("sub", "tip", "ppv", "payout")

_B36 = string.digits + string.ascii_lowercase


def _base36(n: int) -> str:
    if n <= 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(_B36[r])
    return "".join(reversed(out))


def generate_order_id(type_tag: str, user_id: str) -> str:
    """``{type}_{userPrefix}_{msBase36}_{random}``; the only key the gateway echoes back."""
    if type_tag not in ORDER_TYPE_TAGS:
        raise ValueError(f"Unknown order type: {type_tag}")
    prefix = user_id.replace("-", "")[:8]
    ts = _base36(int(time.time() * 1000))
    rand = "".join(secrets.choice(_B36) for _ in range(5))
    return f"{type_tag}_{prefix}_{ts}_{rand}"


class GatewayClient:
    def __init__(self, settings: Settings = S) -> None:
        self.settings = settings

    def webhook_url(self, kind: str) -> str:
        return f"{self.settings.public_base_url}/api/webhooks/gateway/{kind}"

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.settings.gateway_api_key:
            raise GatewayError("Gateway not configured (set GATEWAY_API_KEY)")
        if not self.settings.gateway_api_secret:
            raise GatewayError("Gateway not configured (set GATEWAY_API_SECRET)")
        encrypted = aes_encrypt_passphrase(
            json.dumps(payload, separators=(",", ":")),
            self.settings.gateway_api_secret,
        )
        url = f"{self.settings.gateway_merchant_url}/{path}"
        try:
            r = requests.post(
                url,
                headers={
                    "Content-Type": "application/json",
                    "x-api-key": self.settings.gateway_api_key,
                },
                data=json.dumps({"data": encrypted}),
                timeout=self.settings.gateway_timeout_seconds,
            )
        except requests.RequestException as exc:
            logger.error("Gateway request to %s failed: %s", path, exc)
            raise GatewayError(f"Gateway request failed: {exc}") from exc

        if not r.ok:
            logger.error("Gateway %s answered %s: %s", path, r.status_code, r.text)
            raise GatewayError(
                f"Gateway {path} failed: {r.status_code}",
                status_code=r.status_code,
                body=r.text,
            )
        try:
            result = r.json()
        except ValueError as exc:
            raise GatewayError(f"Gateway {path} returned invalid JSON", status_code=r.status_code, body=r.text) from exc
        if not isinstance(result, dict):
            logger.error("Gateway %s answered a non-object body: %s", path, r.text)
            raise GatewayError(f"Gateway {path} returned unexpected JSON", status_code=r.status_code, body=r.text)
        return result

    @staticmethod
    def _pick(result: Dict[str, Any], key: str) -> Optional[str]:
        value = result.get(key)
        if value is None and isinstance(result.get("data"), dict):
            value = result["data"].get(key)
        return str(value) if value else None

    def create_checkout(
        self,
        *,
        order_id: str,
        amount_usd: Decimal,
        payer_email: str,
        payer_name: str,
        redirect_url: str,
        cancel_url: str,
        webhook_url: str,
    ) -> str:
        payload = {
            "orderID": order_id,
            "amount": money_str(amount_usd),
            "currency": "USD",
            "timestamp": str(now_ts()),
            "userName": payer_name,
            "siteName": self.settings.site_name,
            "userEmail": payer_email,
            "redirectUrl": redirect_url,
            "websiteUrl": self.settings.public_base_url,
            "cancelUrl": cancel_url,
            "webhookUrl": webhook_url,
        }
        result = self._post("order/checkout", payload)
        checkout_url = self._pick(result, "checkoutUrl")
        if not checkout_url:
            raise GatewayError("Gateway checkout response missing checkoutUrl", body=json.dumps(result))
        logger.info("Checkout created for order %s", order_id)
        return checkout_url

    def initiate_payout(
        self,
        *,
        payout_id: str,
        amount_usd: Decimal,
        destination_address: str,
        currency: str,
        network: str,
        payee_email: str,
        payee_name: str,
    ) -> str:
        payload = {
            "payoutID": payout_id,
            "amount": money_str(amount_usd),
            "currency": "USD",
            "cryptoCurrency": currency,
            "network": network,
            "destinationAddress": destination_address,
            "timestamp": str(now_ts()),
            "recipientName": payee_name,
            "recipientEmail": payee_email,
            "webhookUrl": self.webhook_url("payout"),
        }
        result = self._post("payout/initiate", payload)
        transfer_id = self._pick(result, "transferId")
        if not transfer_id:
            raise GatewayError("Gateway payout response missing transferId", body=json.dumps(result))
        logger.info("Payout %s initiated as transfer %s", payout_id, transfer_id)
        return transfer_id

    def verify_webhook_signature(self, raw_body: bytes, signature_header: Optional[str]) -> bool:
        """Must be given the exact request bytes, never a re-serialized body."""
        return verify_hmac_sha256(self.settings.gateway_api_secret, raw_body, signature_header or "")
