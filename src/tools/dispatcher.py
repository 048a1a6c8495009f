"""Executes agent-invoked functions and reports results into the conversation."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from integrations.card_activation import ActivationOutcome
from realtime.connection import AgentConnection
from realtime.events import function_call_output, response_create

LOGGER = logging.getLogger(__name__)

ACTIVATE_DEBIT_CARD = "activate_debit_card"


class ActivationService(Protocol):
    async def activate(
        self,
        *,
        card_last4: str,
        expiry_mmyy: str,
        cnic: str | None = None,
    ) -> ActivationOutcome:  # pragma: no cover - protocol stub
        ...


@dataclass(frozen=True, slots=True)
class ToolInvocation:
    call_id: str
    name: str
    arguments: str


def _failure(error: str, message: str) -> dict[str, Any]:
    return {"success": False, "error": error, "message": message}


class ToolDispatcher:
    """Validates and runs one tool invocation at a time.

    Invalid input never reaches the activation service; every outcome, including
    failures, goes back to the agent so it can talk the caller through it.
    """

    def __init__(self, activation: ActivationService) -> None:
        self._activation = activation

    async def handle(self, invocation: ToolInvocation, agent: AgentConnection) -> dict[str, Any]:
        LOGGER.info("Function call: %s call_id=%s", invocation.name, invocation.call_id)
        result = await self.execute(invocation.name, invocation.arguments)
        LOGGER.info(
            "Function result for call_id=%s: success=%s error=%s",
            invocation.call_id,
            result.get("success"),
            result.get("error"),
        )
        await agent.send(function_call_output(invocation.call_id, result))
        await agent.send(response_create())
        return result

    async def execute(self, name: str, arguments: str) -> dict[str, Any]:
        try:
            args = json.loads(arguments or "{}")
        except json.JSONDecodeError as exc:
            LOGGER.warning("Unparseable tool arguments for %s: %s", name, exc)
            return _failure("invalid_arguments", "The function arguments could not be read. Please try again.")
        if not isinstance(args, dict):
            return _failure("invalid_arguments", "The function arguments must be a JSON object.")

        if name == ACTIVATE_DEBIT_CARD:
            return await self._activate_debit_card(args)
        return _failure(
            "unknown_function",
            f"Unknown function: {name}. Only '{ACTIVATE_DEBIT_CARD}' is available.",
        )

    async def _activate_debit_card(self, args: dict[str, Any]) -> dict[str, Any]:
        card_last4 = str(args.get("card_last4") or "")
        expiry_mmyy = str(args.get("expiry_mmyy") or "")
        cnic = str(args.get("cnic") or "") or None

        LOGGER.info(
            "Card activation request: last4=%s expiry=%s cnic=%s",
            card_last4,
            expiry_mmyy,
            "provided" if cnic else "not provided",
        )

        if len(card_last4) != 4:
            return _failure(
                "invalid_card_last4",
                "Card last 4 digits are required and must be exactly 4 digits.",
            )
        if len(expiry_mmyy) != 4:
            return _failure(
                "invalid_expiry",
                "Card expiry is required in MMYY format (e.g., '0626' for June 2026).",
            )

        try:
            outcome = await self._activation.activate(
                card_last4=card_last4,
                expiry_mmyy=expiry_mmyy,
                cnic=cnic,
            )
        except Exception:
            LOGGER.exception("Card activation service failed")
            return _failure(
                "api_error",
                "Failed to connect to the card activation service. Please try again.",
            )
        return outcome.model_dump(exclude_none=True)
