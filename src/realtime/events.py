"""Agent-side event model.

Inbound frames are parsed into a closed set of dataclasses; anything outside the
set becomes :class:`UnknownAgentEvent` instead of being poked at loosely.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

from realtime.errors import MalformedEventError


@dataclass(frozen=True, slots=True)
class SessionReady:
    type: str


@dataclass(frozen=True, slots=True)
class AudioDelta:
    delta: str


@dataclass(frozen=True, slots=True)
class AssistantTranscriptDelta:
    delta: str


@dataclass(frozen=True, slots=True)
class AssistantTranscriptDone:
    transcript: str


@dataclass(frozen=True, slots=True)
class CallerTranscriptCompleted:
    transcript: str


@dataclass(frozen=True, slots=True)
class FunctionCallArgumentsDone:
    call_id: str
    name: str
    arguments: str


@dataclass(frozen=True, slots=True)
class AgentError:
    error: dict[str, Any]


@dataclass(frozen=True, slots=True)
class UnknownAgentEvent:
    type: str
    raw: dict[str, Any] = field(repr=False)


AgentEvent = Union[
    SessionReady,
    AudioDelta,
    AssistantTranscriptDelta,
    AssistantTranscriptDone,
    CallerTranscriptCompleted,
    FunctionCallArgumentsDone,
    AgentError,
    UnknownAgentEvent,
]

_AUDIO_DELTA = {"response.audio.delta", "response.output_audio.delta"}
_TRANSCRIPT_DELTA = {"response.audio_transcript.delta", "response.output_audio_transcript.delta"}
_TRANSCRIPT_DONE = {"response.audio_transcript.done", "response.output_audio_transcript.done"}


def parse_agent_event(raw: str | bytes) -> AgentEvent:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedEventError(f"Agent frame is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedEventError("Agent frame is not a JSON object.")

    event_type = str(data.get("type") or "")
    if event_type in ("session.created", "session.updated"):
        return SessionReady(type=event_type)
    if event_type in _AUDIO_DELTA:
        return AudioDelta(delta=str(data.get("delta") or ""))
    if event_type in _TRANSCRIPT_DELTA:
        return AssistantTranscriptDelta(delta=str(data.get("delta") or ""))
    if event_type in _TRANSCRIPT_DONE:
        return AssistantTranscriptDone(transcript=str(data.get("transcript") or ""))
    if event_type == "conversation.item.input_audio_transcription.completed":
        return CallerTranscriptCompleted(transcript=str(data.get("transcript") or ""))
    if event_type == "response.function_call_arguments.done":
        return FunctionCallArgumentsDone(
            call_id=str(data.get("call_id") or ""),
            name=str(data.get("name") or ""),
            arguments=str(data.get("arguments") or "{}"),
        )
    if event_type == "error":
        error = data.get("error")
        return AgentError(error=error if isinstance(error, dict) else {"message": str(error)})
    return UnknownAgentEvent(type=event_type, raw=data)


def input_audio_append(audio_b64: str) -> str:
    return json.dumps({"type": "input_audio_buffer.append", "audio": audio_b64})


def function_call_output(call_id: str, output: dict[str, Any]) -> str:
    return json.dumps(
        {
            "type": "conversation.item.create",
            "item": {
                "type": "function_call_output",
                "call_id": call_id,
                "output": json.dumps(output),
            },
        }
    )


def response_create() -> str:
    return json.dumps({"type": "response.create"})
