from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal

@dataclass(frozen=True)
class Settings:
    # Database
    database_url: str = os.environ.get("DATABASE_URL", "sqlite:///./creatorpay.db")
    database_echo: bool = os.environ.get("DATABASE_ECHO", "0") not in ("0", "false", "False")

    # Payment gateway
    gateway_api_key: str = os.environ.get("GATEWAY_API_KEY", "")
    gateway_api_secret: str = os.environ.get("GATEWAY_API_SECRET", "")
    gateway_env: str = os.environ.get("GATEWAY_ENV", "stg").lower()  # stg|prod
    gateway_base_url: str = os.environ.get("GATEWAY_BASE_URL", "https://api.maxelpay.com/v1").rstrip("/")
    gateway_timeout_seconds: int = int(os.environ.get("GATEWAY_TIMEOUT_SECONDS", "20"))

    # Site identity sent with every checkout
    site_name: str = os.environ.get("SITE_NAME", "FanVault")
    public_base_url: str = os.environ.get("PUBLIC_BASE_URL", "http://localhost:3000").rstrip("/")

    # Ledger policy (fixed, not environment driven)
    platform_fee_rate: Decimal = Decimal("0.20")
    min_payout_usd: Decimal = Decimal("10.00")
    min_tip_usd: Decimal = Decimal("1.00")
    renewal_window_hours: int = 48

    # Cron / session
    cron_secret: str = os.environ.get("CRON_SECRET", "")
    session_jwt_secret: str = os.environ.get("SESSION_JWT_SECRET", "")

    # Observability
    metrics_enabled: bool = os.environ.get("METRICS_ENABLED", "1") not in ("0", "false", "False")
    log_level: str = os.environ.get("LOG_LEVEL", "INFO").upper()

    @property
    def gateway_merchant_url(self) -> str:
        return f"{self.gateway_base_url}/{self.gateway_env}/merchant"


S = Settings()
