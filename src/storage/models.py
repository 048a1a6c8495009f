"""Persisted call metadata."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field


class CallRecord(BaseModel):
    """Durable projection of one call's metadata, one per call identifier."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    call_sid: str
    account_number: str | None = None
    transcript: str | None = None
    last_update: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
