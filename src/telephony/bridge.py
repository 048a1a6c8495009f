"""Twilio Media Streams <-> realtime agent relay.

One :class:`CallRelay` owns one carrier connection and at most one agent
connection. Both legs feed a single event queue that one consumer applies to the
call's state, so session state is never mutated concurrently.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Protocol, Union

from fastapi import WebSocketDisconnect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from config.settings import Settings
from conversation.transcript import Transcript
from realtime.client import RealtimeClient
from realtime.connection import AgentConnection, AgentConnector, connect_agent
from realtime.errors import MalformedEventError, SessionNegotiationError
from realtime.events import (
    AgentError,
    AgentEvent,
    AssistantTranscriptDelta,
    AssistantTranscriptDone,
    AudioDelta,
    CallerTranscriptCompleted,
    FunctionCallArgumentsDone,
    SessionReady,
    UnknownAgentEvent,
    input_audio_append,
    parse_agent_event,
)
from realtime.session_config import base_session_config, telephony_session_update
from storage.call_store import CallStore, CallStoreError
from telephony.events import (
    CarrierEvent,
    MediaReceived,
    StreamStarted,
    StreamStopped,
    UnknownCarrierEvent,
    outbound_media,
    parse_carrier_event,
)
from tools.dispatcher import ToolDispatcher, ToolInvocation

LOGGER = logging.getLogger(__name__)


class CallState(str, Enum):
    AWAITING_START = "awaiting_start"
    NEGOTIATING_AGENT_SESSION = "negotiating_agent_session"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({CallState.CLOSED, CallState.FAILED})


class CarrierConnection(Protocol):
    """The subset of a FastAPI ``WebSocket`` the relay relies on."""

    async def receive_text(self) -> str:  # pragma: no cover - protocol stub
        ...

    async def send_text(self, data: str) -> None:  # pragma: no cover - protocol stub
        ...

    async def close(self, code: int = 1000) -> None:  # pragma: no cover - protocol stub
        ...


@dataclass
class CallSession:
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    stream_sid: str | None = None
    call_sid: str | None = None
    caller: str | None = None
    agent: AgentConnection | None = None
    agent_ready: bool = False
    state: CallState = CallState.AWAITING_START
    transcript: Transcript = field(default_factory=Transcript)
    frames_in: int = 0
    frames_out: int = 0
    frames_dropped: int = 0

    @property
    def call_key(self) -> str | None:
        return self.call_sid or self.stream_sid


@dataclass(frozen=True, slots=True)
class AgentLegOpened:
    connection: AgentConnection


@dataclass(frozen=True, slots=True)
class NegotiationFailed:
    reason: str


@dataclass(frozen=True, slots=True)
class LegClosed:
    leg: Literal["carrier", "agent"]
    error: BaseException | None = None


@dataclass(frozen=True, slots=True)
class RelayStopped:
    """Wakes the consumer after a close issued outside the event loop."""


RelayEvent = Union[CarrierEvent, AgentEvent, AgentLegOpened, NegotiationFailed, LegClosed, RelayStopped]


class CallRelay:
    """Relays one telephony call between the carrier and the agent."""

    def __init__(
        self,
        carrier: CarrierConnection,
        *,
        bridge: MediaRelayBridge,
    ) -> None:
        self.session = CallSession()
        self._carrier = carrier
        self._bridge = bridge
        self._settings = bridge.settings
        self._events: asyncio.Queue[RelayEvent] = asyncio.Queue()
        self._carrier_open = True
        self._agent_open = False
        self._carrier_reader: asyncio.Task | None = None
        self._agent_reader: asyncio.Task | None = None
        self._negotiation: asyncio.Task | None = None
        self._tool_tasks: set[asyncio.Task] = set()
        self._tool_lock = asyncio.Lock()

    @property
    def state(self) -> CallState:
        return self.session.state

    async def run(self) -> None:
        self._carrier_reader = asyncio.create_task(self._read_carrier())
        try:
            while self.session.state not in TERMINAL_STATES:
                event = await self._events.get()
                await self._apply(event)
        finally:
            if self.session.state not in TERMINAL_STATES:
                await self.close("relay stopped")
            await self._cancel_background()
            await self._discard_pending()
            LOGGER.info(
                "Call %s finished state=%s frames in=%d out=%d dropped=%d",
                self.session.call_key,
                self.session.state.value,
                self.session.frames_in,
                self.session.frames_out,
                self.session.frames_dropped,
            )

    async def close(self, reason: str) -> None:
        """Close both legs. Safe to call repeatedly and from either direction."""

        if self.session.state in TERMINAL_STATES or self.session.state is CallState.CLOSING:
            return
        LOGGER.info("Closing call %s: %s", self.session.call_key, reason)
        self.session.state = CallState.CLOSING
        await self._shutdown_legs()
        self.session.state = CallState.CLOSED
        self._bridge._unregister(self.session)
        self._events.put_nowait(RelayStopped())

    async def fail(self, reason: str) -> None:
        if self.session.state in TERMINAL_STATES or self.session.state is CallState.CLOSING:
            return
        LOGGER.error("Call %s failed: %s", self.session.call_key, reason)
        self.session.state = CallState.FAILED
        await self._shutdown_legs()
        self._bridge._unregister(self.session)
        self._events.put_nowait(RelayStopped())

    # Event application

    async def _apply(self, event: RelayEvent) -> None:
        if isinstance(event, MediaReceived):
            await self._on_media(event)
        elif isinstance(event, AudioDelta):
            await self._on_audio_delta(event)
        elif isinstance(event, StreamStarted):
            await self._on_start(event)
        elif isinstance(event, StreamStopped):
            LOGGER.info("Stream stopped: %s", self.session.stream_sid)
            await self.close("carrier sent stop")
        elif isinstance(event, UnknownCarrierEvent):
            LOGGER.debug("Ignoring carrier event %r", event.event)
        elif isinstance(event, AgentLegOpened):
            await self._on_agent_opened(event.connection)
        elif isinstance(event, NegotiationFailed):
            await self.fail(f"agent session negotiation failed: {event.reason}")
        elif isinstance(event, LegClosed):
            await self._on_leg_closed(event)
        elif isinstance(event, RelayStopped):
            return
        else:
            await self._on_agent_event(event)

    async def _on_start(self, event: StreamStarted) -> None:
        if self.session.state is not CallState.AWAITING_START:
            LOGGER.warning("Duplicate start for stream %s ignored", self.session.stream_sid)
            return
        self.session.stream_sid = event.stream_sid
        self.session.call_sid = event.call_sid or None
        self.session.caller = event.caller
        self.session.state = CallState.NEGOTIATING_AGENT_SESSION
        self._bridge._register(self.session)
        LOGGER.info(
            "Stream started: %s call=%s from=%s",
            event.stream_sid,
            self.session.call_sid,
            self.session.caller or "unknown",
        )

        record = await self._bridge.store.get_call(self.session.call_key)
        if record and record.transcript:
            self.session.transcript = Transcript(prior=record.transcript)
            LOGGER.info("Continuing stored transcript for call %s", self.session.call_key)
        await self._persist()

        self._negotiation = asyncio.create_task(self._negotiate())

    async def _negotiate(self) -> None:
        realtime = self._bridge.realtime
        try:
            session = await realtime.create_session(base_session_config(self._settings, include_tools=True))
            LOGGER.info("Got client secret, connecting to agent (model=%s)", session.model)
            connection = await self._bridge.connect_agent(
                realtime.websocket_url(session.model), session.client_secret
            )
        except SessionNegotiationError as exc:
            self._events.put_nowait(NegotiationFailed(f"{exc.status_code} {exc.detail}"))
            return
        except Exception as exc:  # handshake/transport errors from the websocket client
            LOGGER.exception("Agent connection failed for call %s", self.session.call_key)
            self._events.put_nowait(NegotiationFailed(str(exc) or type(exc).__name__))
            return
        self._events.put_nowait(AgentLegOpened(connection))

    async def _on_agent_opened(self, connection: AgentConnection) -> None:
        if self.session.state is not CallState.NEGOTIATING_AGENT_SESSION or self.session.agent is not None:
            LOGGER.warning("Unexpected agent connection in state %s; closing it", self.session.state.value)
            await _close_agent(connection)
            return

        self.session.agent = connection
        self._agent_open = True
        LOGGER.info("Connected to agent for call %s", self.session.call_key)
        if not await self._send_agent(json.dumps(telephony_session_update(self._settings))):
            return
        self.session.agent_ready = True
        self.session.state = CallState.ACTIVE
        self._agent_reader = asyncio.create_task(self._read_agent(connection))

    async def _on_media(self, event: MediaReceived) -> None:
        if event.track and event.track != "inbound":
            return
        if not (self.session.agent_ready and self._agent_open and self.session.agent is not None):
            self.session.frames_dropped += 1
            LOGGER.debug("Dropping media frame before agent is ready (call %s)", self.session.call_key)
            return
        if await self._send_agent(input_audio_append(event.payload)):
            self.session.frames_in += 1

    async def _on_audio_delta(self, event: AudioDelta) -> None:
        if not event.delta or not self.session.stream_sid or not self._carrier_open:
            return
        if await self._send_carrier(outbound_media(self.session.stream_sid, event.delta)):
            self.session.frames_out += 1

    async def _on_agent_event(self, event: AgentEvent) -> None:
        if isinstance(event, FunctionCallArgumentsDone):
            self._start_tool(ToolInvocation(call_id=event.call_id, name=event.name, arguments=event.arguments))
        elif isinstance(event, CallerTranscriptCompleted):
            LOGGER.info("Caller said: %s", event.transcript)
            if self.session.transcript.add("caller", event.transcript):
                await self._persist()
        elif isinstance(event, AssistantTranscriptDone):
            if self.session.transcript.add("agent", event.transcript):
                await self._persist()
        elif isinstance(event, AssistantTranscriptDelta):
            LOGGER.debug("Agent transcript delta: %s", event.delta)
        elif isinstance(event, SessionReady):
            LOGGER.info("Agent session ready: %s", event.type)
        elif isinstance(event, AgentError):
            # The platform may recover; only transport closure ends the call.
            LOGGER.error("Agent error on call %s: %s", self.session.call_key, event.error)
        elif isinstance(event, UnknownAgentEvent):
            LOGGER.debug("Ignoring agent event %r", event.type)

    async def _on_leg_closed(self, event: LegClosed) -> None:
        if event.leg == "carrier":
            self._carrier_open = False
        else:
            self._agent_open = False
        if event.error is not None:
            LOGGER.error("%s leg failed on call %s: %s", event.leg.capitalize(), self.session.call_key, event.error)
        await self.close(f"{event.leg} leg closed")

    # Tool calls

    def _start_tool(self, invocation: ToolInvocation) -> None:
        task = asyncio.create_task(self._run_tool(invocation))
        self._tool_tasks.add(task)
        task.add_done_callback(self._tool_tasks.discard)

    async def _run_tool(self, invocation: ToolInvocation) -> None:
        # One outstanding invocation per call; later ones wait their turn.
        async with self._tool_lock:
            agent = self.session.agent
            if agent is None or not self._agent_open:
                LOGGER.warning("Dropping function call %s: agent leg is gone", invocation.call_id)
                return
            try:
                await self._bridge.dispatcher.handle(invocation, agent)
            except (ConnectionClosed, OSError) as exc:
                self._events.put_nowait(LegClosed("agent", exc))

    # Leg I/O

    async def _read_carrier(self) -> None:
        try:
            while True:
                try:
                    text = await self._carrier.receive_text()
                except KeyError:
                    LOGGER.warning("Ignoring non-text carrier frame")
                    continue
                try:
                    event = parse_carrier_event(text)
                except MalformedEventError as exc:
                    LOGGER.warning("Discarding malformed carrier event: %s", exc)
                    continue
                self._events.put_nowait(event)
        except WebSocketDisconnect:
            self._events.put_nowait(LegClosed("carrier"))
        except (RuntimeError, OSError) as exc:
            self._events.put_nowait(LegClosed("carrier", exc))

    async def _read_agent(self, connection: AgentConnection) -> None:
        try:
            while True:
                raw = await connection.recv()
                try:
                    event = parse_agent_event(raw)
                except MalformedEventError as exc:
                    LOGGER.warning("Discarding malformed agent event: %s", exc)
                    continue
                self._events.put_nowait(event)
        except ConnectionClosedOK:
            self._events.put_nowait(LegClosed("agent"))
        except (ConnectionClosed, OSError) as exc:
            self._events.put_nowait(LegClosed("agent", exc))

    async def _send_agent(self, message: str) -> bool:
        agent = self.session.agent
        if agent is None or not self._agent_open:
            return False
        try:
            await agent.send(message)
        except (ConnectionClosed, OSError) as exc:
            await self._on_leg_closed(LegClosed("agent", exc))
            return False
        return True

    async def _send_carrier(self, message: str) -> bool:
        try:
            await self._carrier.send_text(message)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            await self._on_leg_closed(LegClosed("carrier", exc))
            return False
        return True

    # Teardown

    async def _shutdown_legs(self) -> None:
        self.session.agent_ready = False
        current = asyncio.current_task()
        for task in (self._negotiation, self._agent_reader, *self._tool_tasks):
            if task is not None and task is not current and not task.done():
                task.cancel()

        agent = self.session.agent
        if agent is not None and self._agent_open:
            self._agent_open = False
            await _close_agent(agent)

        if self._carrier_open:
            self._carrier_open = False
            try:
                await self._carrier.close()
            except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                LOGGER.debug("Carrier close after disconnect: %s", exc)

    async def _cancel_background(self) -> None:
        tasks = [
            t
            for t in (self._carrier_reader, self._negotiation, self._agent_reader, *self._tool_tasks)
            if t is not None and not t.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _discard_pending(self) -> None:
        # A negotiation that raced the teardown may have left an open connection behind.
        while not self._events.empty():
            event = self._events.get_nowait()
            if isinstance(event, AgentLegOpened) and event.connection is not self.session.agent:
                await _close_agent(event.connection)

    async def _persist(self) -> None:
        key = self.session.call_key
        if not key:
            return
        try:
            await self._bridge.store.save_call(key, transcript=self.session.transcript.render() or None)
        except CallStoreError as exc:
            LOGGER.warning("Could not persist call %s: %s", key, exc.detail)


async def _close_agent(connection: AgentConnection) -> None:
    try:
        await connection.close()
    except (ConnectionClosed, OSError) as exc:
        LOGGER.debug("Agent close failed: %s", exc)


class MediaRelayBridge:
    """Creates one relay per carrier connection and tracks live calls by stream."""

    def __init__(
        self,
        *,
        settings: Settings,
        realtime: RealtimeClient,
        dispatcher: ToolDispatcher,
        store: CallStore,
        connector: AgentConnector = connect_agent,
    ) -> None:
        self.settings = settings
        self.realtime = realtime
        self.dispatcher = dispatcher
        self.store = store
        self.connect_agent = connector
        self._sessions: dict[str, CallSession] = {}

    def relay(self, carrier: CarrierConnection) -> CallRelay:
        return CallRelay(carrier, bridge=self)

    async def serve(self, carrier: CarrierConnection) -> CallRelay:
        relay = self.relay(carrier)
        await relay.run()
        return relay

    def get(self, stream_sid: str) -> CallSession | None:
        return self._sessions.get(stream_sid)

    def active_sessions(self) -> list[CallSession]:
        return list(self._sessions.values())

    def _register(self, session: CallSession) -> None:
        if session.stream_sid:
            self._sessions[session.stream_sid] = session

    def _unregister(self, session: CallSession) -> None:
        if session.stream_sid and self._sessions.get(session.stream_sid) is session:
            del self._sessions[session.stream_sid]
