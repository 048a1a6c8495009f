"""FastAPI routes for the browser path and call metadata."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from api.dependencies import get_app_settings, get_call_store, get_realtime_client, get_summarizer
from api.schemas import (
    CallRecordResponse,
    ClientSecret,
    SessionResponse,
    SummaryRequest,
    SummaryResponse,
)
from config.settings import Settings
from llm.summarizer import CallSummarizer, SummaryFailedError
from realtime.client import RealtimeClient
from realtime.errors import SessionNegotiationError
from realtime.session_config import base_session_config, browser_session_update
from storage.call_store import CallStore

LOGGER = logging.getLogger(__name__)

router = APIRouter()


@router.post("/session", response_model=SessionResponse)
async def create_session(
    realtime: RealtimeClient = Depends(get_realtime_client),
    settings: Settings = Depends(get_app_settings),
):
    try:
        session = await realtime.create_session(base_session_config(settings))
    except SessionNegotiationError as exc:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.error_code, "detail": exc.detail},
        )

    return SessionResponse(
        client_secret=ClientSecret(value=session.client_secret, expires_at=session.expires_at),
        session_update=browser_session_update(settings),
    )


@router.post("/generate-summary", response_model=SummaryResponse)
async def generate_summary(
    payload: SummaryRequest,
    summarizer: CallSummarizer = Depends(get_summarizer),
):
    if not payload.messages:
        return JSONResponse(status_code=400, content={"error": "No messages provided"})

    pairs = [("caller" if m.role == "user" else "agent", m.text) for m in payload.messages]
    try:
        summary = await summarizer.summarize(pairs)
    except SummaryFailedError as exc:
        LOGGER.error("Summary generation failed: %s", exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"error": SummaryFailedError.default_detail})
    return SummaryResponse(summary=summary)


@router.get("/calls/{call_sid}", response_model=CallRecordResponse)
async def get_call(
    call_sid: str,
    store: CallStore = Depends(get_call_store),
) -> CallRecordResponse:
    record = await store.get_call(call_sid)
    if record is None:
        raise HTTPException(status_code=404, detail="Call not found")
    return CallRecordResponse(**record.model_dump())
