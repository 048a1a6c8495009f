"""API-facing Pydantic models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class ClientSecret(BaseModel):
    value: str
    expires_at: int | None = None


class SessionResponse(BaseModel):
    client_secret: ClientSecret
    session_update: dict[str, Any] = Field(
        description="session.update the browser sends once its data channel opens."
    )


class SummaryMessage(BaseModel):
    role: str
    text: str


class SummaryRequest(BaseModel):
    messages: list[SummaryMessage] | None = None


class SummaryResponse(BaseModel):
    summary: str


class CallRecordResponse(BaseModel):
    id: str
    call_sid: str
    account_number: str | None
    transcript: str | None
    last_update: datetime


class SipHeader(BaseModel):
    name: str | None = None
    value: str | None = None


class IncomingCallData(BaseModel):
    call_id: str | None = None
    sip_headers: list[SipHeader] | None = None


class WebhookEvent(BaseModel):
    type: str | None = None
    data: IncomingCallData | None = None


class WebhookResponse(BaseModel):
    status: Literal["accepted", "ignored"]
    call_id: str | None = None
