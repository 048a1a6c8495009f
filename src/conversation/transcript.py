"""Per-call transcript accumulation."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, Literal

from conversation.script_filter import contains_disallowed_script

LOGGER = logging.getLogger(__name__)

Role = Literal["caller", "agent"]

ROLE_LABELS: dict[str, str] = {"caller": "Customer", "agent": "Agent"}


@dataclass(frozen=True, slots=True)
class TranscriptMessage:
    role: Role
    text: str
    timestamp: float


@dataclass
class Transcript:
    """Append-only utterance log for one call.

    ``prior`` holds the rendered text restored from a persisted call record so a
    restarted relay continues the same transcript.
    """

    prior: str = ""
    messages: list[TranscriptMessage] = field(default_factory=list)

    def add(self, role: Role, text: str) -> TranscriptMessage | None:
        text = text.strip()
        if not text:
            return None
        if contains_disallowed_script(text):
            LOGGER.info("Filtered out %s utterance in a disallowed script", role)
            return None
        last = self.messages[-1].timestamp if self.messages else 0.0
        message = TranscriptMessage(role=role, text=text, timestamp=max(time.monotonic(), last))
        self.messages.append(message)
        return message

    def render(self) -> str:
        lines = [self.prior] if self.prior else []
        lines.extend(render_line(m.role, m.text) for m in self.messages)
        return "\n".join(lines)


def render_line(role: str, text: str) -> str:
    return f"{ROLE_LABELS.get(role, 'Agent')}: {text}"


def render_messages(messages: Iterable[tuple[str, str]]) -> str:
    """Render (role, text) pairs, skipping utterances in a disallowed script."""

    return "\n".join(
        render_line(role, text) for role, text in messages if text and not contains_disallowed_script(text)
    )
