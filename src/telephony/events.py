"""Twilio Media Streams event model (carrier side)."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

from realtime.errors import MalformedEventError


@dataclass(frozen=True, slots=True)
class StreamStarted:
    stream_sid: str
    call_sid: str
    custom_parameters: dict[str, str] = field(default_factory=dict)

    @property
    def caller(self) -> str | None:
        params = self.custom_parameters
        return params.get("from") or params.get("From") or None


@dataclass(frozen=True, slots=True)
class MediaReceived:
    payload: str
    track: str | None = None


@dataclass(frozen=True, slots=True)
class StreamStopped:
    pass


@dataclass(frozen=True, slots=True)
class UnknownCarrierEvent:
    event: str
    raw: dict[str, Any] = field(repr=False)


CarrierEvent = Union[StreamStarted, MediaReceived, StreamStopped, UnknownCarrierEvent]


def parse_carrier_event(text: str) -> CarrierEvent:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedEventError(f"Carrier frame is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedEventError("Carrier frame is not a JSON object.")

    event = str(data.get("event") or "")
    if event == "start":
        start = data.get("start")
        if not isinstance(start, dict) or not start.get("streamSid"):
            raise MalformedEventError("start event without streamSid")
        params = start.get("customParameters") or {}
        return StreamStarted(
            stream_sid=str(start["streamSid"]),
            call_sid=str(start.get("callSid") or params.get("callSid") or ""),
            custom_parameters={str(k): str(v) for k, v in params.items()},
        )
    if event == "media":
        media = data.get("media")
        if not isinstance(media, dict) or not isinstance(media.get("payload"), str):
            raise MalformedEventError("media event without payload")
        return MediaReceived(payload=media["payload"], track=media.get("track"))
    if event == "stop":
        return StreamStopped()
    return UnknownCarrierEvent(event=event, raw=data)


def outbound_media(stream_sid: str, payload_b64: str) -> str:
    return json.dumps({"event": "media", "streamSid": stream_sid, "media": {"payload": payload_b64}})
