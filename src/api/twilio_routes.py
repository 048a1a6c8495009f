"""Twilio Voice integration.

This module provides:
- Voice webhook (TwiML) that connects the call to our Media Streams socket.
- The Media Streams websocket, relayed to the realtime agent by the bridge.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response, WebSocket
from twilio.twiml.voice_response import Connect, VoiceResponse

from api.dependencies import get_app_settings, get_bridge
from config.settings import Settings
from telephony.bridge import MediaRelayBridge

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["twilio"])

MEDIA_STREAM_PATH = "/twilio/media-stream"


def _to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


def _stream_url(request: Request, settings: Settings) -> str:
    if settings.public_base_url:
        return _to_ws_url(settings.public_base_url.rstrip("/") + MEDIA_STREAM_PATH)
    # Behind a tunnel the scheme only survives in X-Forwarded-Proto.
    host = request.headers.get("host") or request.url.netloc
    proto = request.headers.get("x-forwarded-proto") or request.url.scheme
    scheme = "wss" if proto == "https" else "ws"
    return f"{scheme}://{host}{MEDIA_STREAM_PATH}"


def _twiml_stream(*, stream_url: str, call_sid: str, caller: str) -> str:
    response = VoiceResponse()
    connect = Connect()
    stream = connect.stream(url=stream_url)
    stream.parameter(name="callSid", value=call_sid)
    stream.parameter(name="from", value=caller)
    response.append(connect)
    return str(response)


@router.post("/voice")
async def twilio_voice_webhook(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> Response:
    form = await request.form()
    call_sid = str(form.get("CallSid") or "").strip() or "unknown"
    caller = str(form.get("From") or "").strip() or "unknown"

    stream_url = _stream_url(request, settings)
    LOGGER.info("Incoming call %s from %s to %s; stream=%s", call_sid, caller, form.get("To"), stream_url)

    return Response(
        content=_twiml_stream(stream_url=stream_url, call_sid=call_sid, caller=caller),
        media_type="application/xml",
    )


@router.websocket("/media-stream")
async def twilio_media_stream(
    websocket: WebSocket,
    bridge: MediaRelayBridge = Depends(get_bridge),
) -> None:
    await websocket.accept()
    LOGGER.info("New media stream connection from %s", websocket.client)
    await bridge.serve(websocket)
