"""Agent-side duplex connection."""

from __future__ import annotations

from typing import Awaitable, Callable, Protocol

import websockets

from realtime.client import REALTIME_BETA_HEADER


class AgentConnection(Protocol):
    """The subset of a websockets client connection the bridge relies on."""

    async def send(self, message: str) -> None:  # pragma: no cover - protocol stub
        ...

    async def recv(self) -> str | bytes:  # pragma: no cover - protocol stub
        ...

    async def close(self) -> None:  # pragma: no cover - protocol stub
        ...


AgentConnector = Callable[[str, str], Awaitable[AgentConnection]]


async def connect_agent(url: str, client_secret: str) -> AgentConnection:
    """Open the agent leg authorized by an ephemeral credential."""

    return await websockets.connect(
        url,
        additional_headers={
            "Authorization": f"Bearer {client_secret}",
            "OpenAI-Beta": REALTIME_BETA_HEADER,
        },
        ping_interval=20,
        ping_timeout=20,
        max_size=None,
    )
