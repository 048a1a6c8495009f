"""Entry point for the bank support voice relay service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.dependencies import get_call_store
from api.health import router as health_router
from api.routes import router as api_router
from api.twilio_routes import router as twilio_router
from api.webhooks import router as webhook_router
from config.settings import get_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    await get_call_store().load()
    yield


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Bank Support Voice Relay",
    description="Bridges browser, Twilio and SIP calls to a realtime speech agent.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")
app.include_router(twilio_router)
app.include_router(webhook_router)
app.include_router(health_router)
