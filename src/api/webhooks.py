"""Inbound SIP call webhook from the realtime agent platform.

The platform expects an accept decision within its webhook deadline, so the
accept request is bounded by ``webhook_accept_timeout_seconds``.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.dependencies import get_app_settings, get_realtime_client
from api.schemas import IncomingCallData, WebhookEvent, WebhookResponse
from config.settings import Settings
from realtime.client import RealtimeClient
from realtime.errors import CallAcceptError
from realtime.session_config import base_session_config

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

INCOMING_CALL_EVENT = "realtime.call.incoming"


@router.post("/webhook", response_model=WebhookResponse)
async def realtime_call_webhook(
    event: WebhookEvent,
    realtime: RealtimeClient = Depends(get_realtime_client),
    settings: Settings = Depends(get_app_settings),
):
    LOGGER.info("Received webhook event: %s", event.type)
    if event.type != INCOMING_CALL_EVENT:
        LOGGER.info("Ignoring webhook event type: %s", event.type)
        return WebhookResponse(status="ignored")

    data = event.data or IncomingCallData()
    call_id = data.call_id
    caller = next((h.value for h in data.sip_headers or [] if h.name == "From" and h.value), "unknown")
    if not call_id:
        LOGGER.error("Missing call_id in webhook event")
        return JSONResponse(status_code=400, content={"error": "missing_call_id"})

    LOGGER.info("Incoming SIP call %s from %s", call_id, caller)
    config = base_session_config(settings, include_tools=settings.sip_enable_tools)
    try:
        await realtime.accept_call(call_id, config)
    except CallAcceptError as exc:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.error_code, "detail": exc.detail},
        )

    LOGGER.info("Call accepted: %s", call_id)
    return WebhookResponse(status="accepted", call_id=call_id)
