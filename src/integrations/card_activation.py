"""Client for the bank's debit card activation service."""

from __future__ import annotations

import json
import logging
import secrets
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx
from pydantic import BaseModel

from config.settings import Settings

LOGGER = logging.getLogger(__name__)

SUCCESS_RESPONSE_CODE = "00"


class ActivationOutcome(BaseModel):
    success: bool
    message: str
    response_code: str | None = None
    error: str | None = None
    details: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class TransactionStamp:
    reference_id: str
    stan: str
    date: str
    time: str
    transmission: str


def new_transaction_stamp(now: datetime | None = None) -> TransactionStamp:
    """Fresh audit keys for one request; the backend treats them as idempotency keys."""

    now = now or datetime.now()
    date = now.strftime("%Y-%m-%d")
    clock = now.strftime("%H:%M:%S")
    return TransactionStamp(
        reference_id=f"REF{int(time.time() * 1000)}{uuid.uuid4().hex[:9]}",
        stan=str(100000 + secrets.randbelow(900000)),
        date=date,
        time=clock,
        transmission=f"{date}T{clock}",
    )


def masked_pan(prefix: str, card_last4: str) -> str:
    return f"{prefix}******{card_last4}"


def expiry_to_yymm(expiry_mmyy: str) -> str:
    return expiry_mmyy[2:4] + expiry_mmyy[0:2]


def build_activation_request(
    settings: Settings,
    *,
    card_last4: str,
    expiry_mmyy: str,
    cnic: str | None = None,
    stamp: TransactionStamp | None = None,
) -> dict[str, Any]:
    stamp = stamp or new_transaction_stamp()
    activation: dict[str, Any] = {
        "pan": masked_pan(settings.activation_pan_prefix, card_last4),
        "expiry": expiry_to_yymm(expiry_mmyy),
        "isMaskCard": "Y",
    }
    if cnic:
        activation["cnic"] = cnic
    return {
        "serviceHeader": {
            "channel": settings.activation_channel,
            "processingType": "SYNCHRONOUS",
            "authInfo": {
                "username": settings.activation_username,
                "password": settings.activation_password or "",
                "authenticationType": "password",
                "authKey": settings.activation_auth_key or "",
            },
            "fromRegionInfo": {
                "bicCode": settings.activation_bic_code,
                "countryCode": settings.activation_country_code,
            },
        },
        "transactionInfo": {
            "transactionType": "DEBIT_CARD",
            "transactionSubType": "ACTIVATION",
            "referenceId": stamp.reference_id,
            "transactionDate": stamp.date,
            "transactionTime": stamp.time,
            "transmissionDateTime": stamp.transmission,
            "stan": stamp.stan,
        },
        "activationRequest": activation,
    }


def _redacted(body: dict[str, Any]) -> dict[str, Any]:
    header = dict(body["serviceHeader"])
    header["authInfo"] = {**header["authInfo"], "password": "***", "authKey": "***"}
    return {**body, "serviceHeader": header}


def interpret_response(payload: Any) -> ActivationOutcome:
    header = payload.get("responseHeader") if isinstance(payload, dict) else None
    header = header if isinstance(header, dict) else {}
    code = header.get("responseCode")
    details = payload if isinstance(payload, dict) else {"body": payload}
    if code == SUCCESS_RESPONSE_CODE:
        return ActivationOutcome(
            success=True,
            message="Card activated successfully",
            response_code=code,
            details=details,
        )
    reasons = header.get("responseDetails")
    message = reasons[0] if isinstance(reasons, list) and reasons and reasons[0] else "Activation failed"
    return ActivationOutcome(
        success=False,
        message=str(message),
        response_code=None if code is None else str(code),
        error="activation_rejected",
        details=details,
    )


class CardActivationClient:
    """Sends one activation request per call and never raises.

    A connection that could not be established is retried up to
    ``activation_connect_retries`` times; once a request may have reached the
    backend it is never re-sent.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport

    async def activate(
        self,
        *,
        card_last4: str,
        expiry_mmyy: str,
        cnic: str | None = None,
    ) -> ActivationOutcome:
        body = build_activation_request(
            self._settings,
            card_last4=card_last4,
            expiry_mmyy=expiry_mmyy,
            cnic=cnic,
        )
        LOGGER.info("Calling activation API: %s", json.dumps(_redacted(body)))

        attempts = self._settings.activation_connect_retries + 1
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.activation_timeout_seconds,
                transport=self._transport,
            ) as client:
                for attempt in range(1, attempts + 1):
                    try:
                        response = await client.post(
                            self._settings.activation_api_url,
                            json=body,
                            headers={"Accept": "application/json"},
                        )
                        break
                    except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
                        if attempt >= attempts:
                            raise
                        LOGGER.warning("Activation API unreachable (attempt %d/%d): %s", attempt, attempts, exc)
        except httpx.HTTPError as exc:
            LOGGER.exception("Activation API call failed")
            return ActivationOutcome(
                success=False,
                message=str(exc) or "API call failed",
                error="api_error",
                details={"error": type(exc).__name__},
            )

        try:
            payload = response.json()
        except ValueError:
            LOGGER.error("Activation API returned non-JSON (%s): %s", response.status_code, response.text)
            return ActivationOutcome(
                success=False,
                message="Activation service returned an unreadable response.",
                response_code=None,
                error="api_error",
                details={"status_code": response.status_code},
            )

        outcome = interpret_response(payload)
        LOGGER.info(
            "Activation API response success=%s code=%s message=%s",
            outcome.success,
            outcome.response_code,
            outcome.message,
        )
        return outcome
