"""Post-call narrative summaries via the OpenAI Chat Completions API."""

from __future__ import annotations

import logging
from typing import Iterable

from openai import AsyncOpenAI, OpenAIError

from config.settings import Settings
from conversation.transcript import render_messages

LOGGER = logging.getLogger(__name__)

SUMMARY_PROMPT = """You are a professional call summarizer for the bank's customer support line. \
Generate a comprehensive, narrative summary of the call in English, regardless of what \
language(s) were spoken.

Your summary should be a flowing paragraph that includes:
- What the customer contacted the bank for
- Any language switches that occurred (e.g., "initially in Urdu, then switched to English")
- Key details provided by the customer (account numbers, dates, amounts, etc.)
- Actions taken by the support agent
- Final outcome or next steps
- Any confirmations or follow-ups mentioned

Write in past tense, third person, as a clear narrative. Do NOT use bullet points or lists. \
Write as one or two cohesive paragraphs."""

FALLBACK_SUMMARY = "Unable to generate summary."


class SummaryFailedError(Exception):
    status_code: int = 500
    default_detail: str = "Failed to generate summary"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class CallSummarizer:
    def __init__(self, settings: Settings, *, client: AsyncOpenAI | None = None) -> None:
        self._client = client
        self._settings = settings
        self._model = settings.summary_model

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._settings.openai_api_key:
                raise SummaryFailedError("OPENAI_API_KEY is not configured.")
            self._client = AsyncOpenAI(
                api_key=self._settings.openai_api_key,
                base_url=self._settings.openai_base_url,
            )
        return self._client

    async def summarize(self, messages: Iterable[tuple[str, str]]) -> str:
        transcript = render_messages(messages)
        try:
            response = await self._get_client().chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": SUMMARY_PROMPT},
                    {
                        "role": "user",
                        "content": f"Generate a call summary for this customer support conversation:\n\n{transcript}",
                    },
                ],
                temperature=0.3,
            )
        except OpenAIError as exc:
            LOGGER.error("Summary request failed: %s", exc)
            raise SummaryFailedError(str(exc)) from exc

        if not response.choices:
            return FALLBACK_SUMMARY
        return response.choices[0].message.content or FALLBACK_SUMMARY
