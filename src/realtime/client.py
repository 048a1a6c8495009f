"""HTTP client for the realtime agent platform's control endpoints."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote, urlencode

import httpx

from config.settings import Settings
from realtime.errors import CallAcceptError, SessionNegotiationError

LOGGER = logging.getLogger(__name__)

REALTIME_BETA_HEADER = "realtime=v1"


@dataclass(frozen=True, slots=True)
class RealtimeSession:
    """Ephemeral credential plus the session descriptor it was minted for."""

    client_secret: str
    model: str
    expires_at: int | None
    raw: dict[str, Any]


class RealtimeClient:
    """Issues ephemeral credentials and accepts SIP calls.

    Each call opens its own ``httpx.AsyncClient``; pass ``transport`` to fake the
    platform in tests.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._base_url = settings.openai_base_url.rstrip("/")
        self._transport = transport

    def _headers(self, *, beta: bool) -> dict[str, str]:
        if not self._settings.openai_api_key:
            raise SessionNegotiationError("OPENAI_API_KEY is not configured.", status_code=500)
        headers = {
            "Authorization": f"Bearer {self._settings.openai_api_key}",
            "Content-Type": "application/json",
        }
        if beta:
            headers["OpenAI-Beta"] = REALTIME_BETA_HEADER
        return headers

    async def create_session(self, config: dict[str, Any]) -> RealtimeSession:
        """Mint an ephemeral credential for one agent connection.

        Fails loudly: any non-2xx answer raises with the upstream status and body.
        """

        url = f"{self._base_url}/realtime/sessions"
        headers = self._headers(beta=True)
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.session_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(url, headers=headers, json=config)
        except httpx.HTTPError as exc:
            LOGGER.exception("Realtime session request failed")
            raise SessionNegotiationError(str(exc), status_code=500) from exc

        if response.is_error:
            LOGGER.error("Realtime session failed: %s %s", response.status_code, response.text)
            raise SessionNegotiationError(response.text, status_code=response.status_code)

        try:
            payload = response.json()
        except json.JSONDecodeError as exc:
            raise SessionNegotiationError("Realtime session response is not JSON.", status_code=502) from exc

        secret = payload.get("client_secret")
        # Older builds answer with a bare string instead of {value, expires_at}.
        if isinstance(secret, dict):
            value = secret.get("value")
            expires_at = secret.get("expires_at")
        else:
            value, expires_at = secret, None
        if not value:
            raise SessionNegotiationError("Realtime session response has no client secret.", status_code=502)

        model = str(payload.get("model") or config.get("model") or self._settings.openai_realtime_model)
        LOGGER.info(
            "Realtime session OK model=%s prompt=%s version=%s",
            model,
            self._settings.realtime_prompt_id,
            self._settings.realtime_prompt_version,
        )
        return RealtimeSession(client_secret=str(value), model=model, expires_at=expires_at, raw=payload)

    async def accept_call(self, call_id: str, config: dict[str, Any]) -> None:
        """Accept an inbound SIP call with the given session config."""

        url = f"{self._base_url}/realtime/calls/{quote(call_id, safe='')}/accept"
        body = {"type": "realtime", **config}
        try:
            headers = self._headers(beta=False)
        except SessionNegotiationError as exc:
            raise CallAcceptError(exc.detail) from exc

        try:
            async with httpx.AsyncClient(
                timeout=self._settings.webhook_accept_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(url, headers=headers, json=body)
        except httpx.HTTPError as exc:
            LOGGER.exception("Accept request failed for call %s", call_id)
            raise CallAcceptError(str(exc) or type(exc).__name__) from exc

        if response.is_error:
            LOGGER.error("Failed to accept call %s: %s %s", call_id, response.status_code, response.text)
            raise CallAcceptError(response.text)

    def websocket_url(self, model: str) -> str:
        return f"{self._settings.openai_realtime_ws_url}?{urlencode({'model': model})}"
