from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from creatorpay.core.db import init_db
from creatorpay.core.logging_config import setup_logging
from creatorpay.metrics import METRICS_ENABLED, metrics_endpoint, metrics_middleware, set_app_info
from creatorpay.routers.billing import router as billing_router
from creatorpay.routers.checkout import router as checkout_router
from creatorpay.routers.cron import router as cron_router
from creatorpay.routers.payouts import router as payouts_router
from creatorpay.routers.webhooks import router as webhooks_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title="CreatorPay Ledger", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if METRICS_ENABLED:
        app.middleware("http")(metrics_middleware)
        set_app_info(app.title, app.version)
        app.get("/metrics")(metrics_endpoint)

    @app.get("/healthz")
    async def healthz():
        return {"ok": True}

    app.include_router(checkout_router)
    app.include_router(webhooks_router)
    app.include_router(payouts_router)
    app.include_router(cron_router)
    app.include_router(billing_router)

    return app

app = create_app()
