"""Session configuration payloads for the realtime agent platform."""

from __future__ import annotations

from typing import Any

from config.settings import Settings

G711_ULAW = "g711_ulaw"

ACTIVATE_DEBIT_CARD_TOOL: dict[str, Any] = {
    "type": "function",
    "name": "activate_debit_card",
    "description": (
        "Activate the customer's debit card by calling the bank activation API. "
        "Call this AFTER the customer has verbally provided and you have verified: "
        "(1) their card's last 4 digits, and (2) the expiry date."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "card_last4": {
                "type": "string",
                "description": "The last 4 digits of the customer's card (e.g., '1155')",
            },
            "expiry_mmyy": {
                "type": "string",
                "description": "The card expiry date in MMYY format (e.g., '0626' for June 2026)",
            },
            "cnic": {
                "type": "string",
                "description": "Optional: Customer's CNIC number (13 digits) for additional verification",
            },
        },
        "required": ["card_last4", "expiry_mmyy"],
    },
}

TOOLS: list[dict[str, Any]] = [ACTIVATE_DEBIT_CARD_TOOL]


def base_session_config(settings: Settings, *, include_tools: bool = False) -> dict[str, Any]:
    """Config shared by session creation and SIP call accept.

    Voice and instructions are deliberately absent; the pinned prompt owns them.
    """

    config: dict[str, Any] = {
        "model": settings.openai_realtime_model,
        "modalities": ["audio", "text"],
        "turn_detection": {"type": "server_vad"},
        "prompt": {
            "id": settings.realtime_prompt_id,
            "version": settings.realtime_prompt_version,
        },
    }
    if include_tools:
        config["tools"] = TOOLS
    return config


def _turn_detection(settings: Settings, silence_duration_ms: int) -> dict[str, Any]:
    return {
        "type": "server_vad",
        "threshold": settings.vad_threshold,
        "prefix_padding_ms": settings.vad_prefix_padding_ms,
        "silence_duration_ms": silence_duration_ms,
    }


def telephony_session_update(settings: Settings) -> dict[str, Any]:
    """``session.update`` sent on the agent leg of a carrier media stream."""

    return {
        "type": "session.update",
        "session": {
            "input_audio_format": G711_ULAW,
            "output_audio_format": G711_ULAW,
            "input_audio_transcription": {"model": settings.realtime_transcription_model},
            "turn_detection": _turn_detection(settings, settings.telephony_silence_duration_ms),
            "tools": TOOLS,
        },
    }


def browser_session_update(settings: Settings) -> dict[str, Any]:
    """``session.update`` the browser sends once its data channel opens."""

    turn_detection = _turn_detection(settings, settings.browser_silence_duration_ms)
    turn_detection["create_response"] = True
    turn_detection["interrupt_response"] = True
    return {
        "type": "session.update",
        "session": {
            "input_audio_transcription": {"model": settings.realtime_transcription_model},
            "turn_detection": turn_detection,
        },
    }
