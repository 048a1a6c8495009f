"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from functools import lru_cache

from config.settings import Settings, get_settings
from integrations.card_activation import CardActivationClient
from llm.summarizer import CallSummarizer
from realtime.client import RealtimeClient
from storage.call_store import CallStore
from telephony.bridge import MediaRelayBridge
from tools.dispatcher import ToolDispatcher


def get_app_settings() -> Settings:
    return get_settings()


@lru_cache(maxsize=1)
def get_realtime_client() -> RealtimeClient:
    return RealtimeClient(get_settings())


@lru_cache(maxsize=1)
def get_call_store() -> CallStore:
    return CallStore(get_settings().calls_dir)


@lru_cache(maxsize=1)
def get_summarizer() -> CallSummarizer:
    return CallSummarizer(get_settings())


@lru_cache(maxsize=1)
def get_bridge() -> MediaRelayBridge:
    settings = get_settings()
    return MediaRelayBridge(
        settings=settings,
        realtime=get_realtime_client(),
        dispatcher=ToolDispatcher(CardActivationClient(settings)),
        store=get_call_store(),
    )
