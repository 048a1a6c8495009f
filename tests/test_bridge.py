from __future__ import annotations

import asyncio
import json

import httpx

from fakes import (
    BrokenActivation,
    FakeActivation,
    FakeAgent,
    FakeCarrier,
    FakeConnector,
    FakeRealtime,
    media_event,
    start_event,
    wait_until,
)
from integrations.card_activation import CardActivationClient
from realtime.errors import SessionNegotiationError
from storage.call_store import CallStore
from telephony.bridge import CallState, MediaRelayBridge
from tools.dispatcher import ToolDispatcher


def make_bridge(settings, agent, *, realtime=None, activation=None, store=None):
    connector = FakeConnector(agent)
    bridge = MediaRelayBridge(
        settings=settings,
        realtime=realtime or FakeRealtime(),
        dispatcher=ToolDispatcher(activation or FakeActivation()),
        store=store or CallStore(settings.calls_dir),
        connector=connector,
    )
    return bridge, connector


async def _activate(bridge, carrier):
    relay = bridge.relay(carrier)
    task = asyncio.create_task(relay.run())
    carrier.push(start_event())
    await wait_until(lambda: relay.state is CallState.ACTIVE)
    return relay, task


def test_audio_relays_both_ways_in_order_and_stop_closes_both_legs(settings):
    async def scenario():
        carrier, agent = FakeCarrier(), FakeAgent()
        bridge, connector = make_bridge(settings, agent)
        relay, task = await _activate(bridge, carrier)

        assert bridge.get("MZ123") is relay.session
        agent.push({"type": "session.created"})
        for payload in ("AAA=", "BBB=", "CCC="):
            carrier.push(media_event(payload))
        await wait_until(lambda: agent.sent_types().count("input_audio_buffer.append") == 3)

        agent.push({"type": "response.audio.delta", "delta": "ZZZ="})
        agent.push({"type": "response.audio.delta", "delta": "YYY="})
        await wait_until(lambda: len(carrier.sent) == 2)

        carrier.push({"event": "stop"})
        await asyncio.wait_for(task, 1)
        return relay, bridge, carrier, agent, connector

    relay, bridge, carrier, agent, connector = asyncio.run(scenario())

    appends = [m["audio"] for m in agent.sent if m["type"] == "input_audio_buffer.append"]
    assert appends == ["AAA=", "BBB=", "CCC="]
    assert carrier.sent == [
        {"event": "media", "streamSid": "MZ123", "media": {"payload": "ZZZ="}},
        {"event": "media", "streamSid": "MZ123", "media": {"payload": "YYY="}},
    ]
    assert relay.state is CallState.CLOSED
    assert len(connector.calls) == 1
    assert agent.close_calls == 1
    assert carrier.close_calls == 1
    assert bridge.get("MZ123") is None


def test_session_update_is_sent_before_active(settings):
    async def scenario():
        carrier, agent = FakeCarrier(), FakeAgent()
        bridge, connector = make_bridge(settings, agent)
        relay, task = await _activate(bridge, carrier)
        carrier.hang_up()
        await asyncio.wait_for(task, 1)
        return agent, connector, bridge

    agent, connector, bridge = asyncio.run(scenario())

    update = agent.sent[0]
    assert update["type"] == "session.update"
    session = update["session"]
    assert session["input_audio_format"] == "g711_ulaw"
    assert session["output_audio_format"] == "g711_ulaw"
    assert session["input_audio_transcription"] == {"model": "whisper-1"}
    assert session["turn_detection"]["silence_duration_ms"] == 200
    assert [t["name"] for t in session["tools"]] == ["activate_debit_card"]
    assert connector.calls == [("wss://agent.test/v1/realtime?model=gpt-realtime", "ek_test")]


def test_media_before_ready_is_dropped_not_queued(settings):
    async def scenario():
        gate = asyncio.Event()
        carrier, agent = FakeCarrier(), FakeAgent()
        bridge, _ = make_bridge(settings, agent, realtime=FakeRealtime(gate=gate))
        relay = bridge.relay(carrier)
        task = asyncio.create_task(relay.run())

        carrier.push(media_event("EARLY0="))
        carrier.push(start_event())
        carrier.push(media_event("EARLY1="))
        carrier.push(media_event("EARLY2="))
        await wait_until(lambda: relay.session.frames_dropped == 3)
        assert relay.state is CallState.NEGOTIATING_AGENT_SESSION

        gate.set()
        await wait_until(lambda: relay.state is CallState.ACTIVE)
        carrier.push(media_event("LATE="))
        await wait_until(lambda: relay.session.frames_in == 1)

        carrier.push({"event": "stop"})
        await asyncio.wait_for(task, 1)
        return agent

    agent = asyncio.run(scenario())

    assert agent.sent_types() == ["session.update", "input_audio_buffer.append"]
    assert agent.sent[1]["audio"] == "LATE="


def test_negotiation_failure_fails_call_and_closes_carrier_only(settings):
    async def scenario():
        carrier, agent = FakeCarrier(), FakeAgent()
        realtime = FakeRealtime(error=SessionNegotiationError("bad key", status_code=401))
        bridge, connector = make_bridge(settings, agent, realtime=realtime)
        relay = bridge.relay(carrier)
        task = asyncio.create_task(relay.run())
        carrier.push(start_event())
        await asyncio.wait_for(task, 1)
        return relay, carrier, agent, connector, bridge

    relay, carrier, agent, connector, bridge = asyncio.run(scenario())

    assert relay.state is CallState.FAILED
    assert carrier.close_calls == 1
    assert connector.calls == []
    assert agent.close_calls == 0
    assert bridge.active_sessions() == []


def test_close_is_idempotent(settings):
    async def scenario():
        carrier, agent = FakeCarrier(), FakeAgent()
        bridge, _ = make_bridge(settings, agent)
        relay, task = await _activate(bridge, carrier)

        await relay.close("first")
        await relay.close("second")
        await relay.fail("late failure")
        await asyncio.wait_for(task, 1)
        await relay.close("after run")
        return relay, carrier, agent

    relay, carrier, agent = asyncio.run(scenario())

    assert relay.state is CallState.CLOSED
    assert agent.close_calls == 1
    assert carrier.close_calls == 1


def test_agent_drop_closes_carrier(settings):
    async def scenario():
        carrier, agent = FakeCarrier(), FakeAgent()
        bridge, _ = make_bridge(settings, agent)
        relay, task = await _activate(bridge, carrier)
        agent.drop()
        await asyncio.wait_for(task, 1)
        return relay, carrier, agent

    relay, carrier, agent = asyncio.run(scenario())

    assert relay.state is CallState.CLOSED
    assert carrier.close_calls == 1
    # The agent leg was already gone; no second close is attempted.
    assert agent.close_calls == 0


def test_carrier_disconnect_closes_agent(settings):
    async def scenario():
        carrier, agent = FakeCarrier(), FakeAgent()
        bridge, _ = make_bridge(settings, agent)
        relay, task = await _activate(bridge, carrier)
        carrier.hang_up()
        await asyncio.wait_for(task, 1)
        return relay, carrier, agent

    relay, carrier, agent = asyncio.run(scenario())

    assert relay.state is CallState.CLOSED
    assert agent.close_calls == 1
    assert carrier.close_calls == 0


def test_malformed_and_error_events_do_not_close_call(settings):
    async def scenario():
        carrier, agent = FakeCarrier(), FakeAgent()
        bridge, _ = make_bridge(settings, agent)
        relay, task = await _activate(bridge, carrier)

        carrier.push("{not json")
        carrier.push({"event": "mark", "mark": {"name": "x"}})
        agent.push("garbage")
        agent.push({"type": "error", "error": {"message": "transient"}})
        agent.push({"type": "rate_limits.updated"})
        carrier.push(media_event("OK="))
        await wait_until(lambda: relay.session.frames_in == 1)
        state_before_stop = relay.state

        carrier.push({"event": "stop"})
        await asyncio.wait_for(task, 1)
        return state_before_stop

    assert asyncio.run(scenario()) is CallState.ACTIVE


def test_function_call_activates_card_and_continues_response(settings):
    requests: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content))
        return httpx.Response(200, json={"responseHeader": {"responseCode": "00"}})

    async def scenario():
        carrier, agent = FakeCarrier(), FakeAgent()
        activation = CardActivationClient(settings, transport=httpx.MockTransport(handler))
        bridge, _ = make_bridge(settings, agent, activation=activation)
        relay, task = await _activate(bridge, carrier)

        agent.push(
            {
                "type": "response.function_call_arguments.done",
                "call_id": "call_42",
                "name": "activate_debit_card",
                "arguments": '{"card_last4":"1155","expiry_mmyy":"0626"}',
            }
        )
        await wait_until(lambda: "response.create" in agent.sent_types())
        carrier.push({"event": "stop"})
        await asyncio.wait_for(task, 1)
        return agent

    agent = asyncio.run(scenario())

    assert len(requests) == 1
    activation = requests[0]["activationRequest"]
    assert activation["pan"].endswith("1155")
    assert activation["expiry"] == "2606"

    assert agent.sent_types()[-2:] == ["conversation.item.create", "response.create"]
    item = agent.sent[-2]["item"]
    assert item["type"] == "function_call_output"
    assert item["call_id"] == "call_42"
    assert json.loads(item["output"])["success"] is True


def test_invalid_tool_arguments_keep_call_open(settings):
    async def scenario():
        carrier, agent = FakeCarrier(), FakeAgent()
        activation = FakeActivation()
        bridge, _ = make_bridge(settings, agent, activation=activation)
        relay, task = await _activate(bridge, carrier)

        agent.push(
            {
                "type": "response.function_call_arguments.done",
                "call_id": "call_7",
                "name": "activate_debit_card",
                "arguments": '{"card_last4":"115","expiry_mmyy":"0626"}',
            }
        )
        await wait_until(lambda: "response.create" in agent.sent_types())
        state = relay.state
        carrier.push({"event": "stop"})
        await asyncio.wait_for(task, 1)
        return state, agent, activation

    state, agent, activation = asyncio.run(scenario())

    assert state is CallState.ACTIVE
    assert activation.calls == []
    output = json.loads(agent.sent[-2]["item"]["output"])
    assert output == {
        "success": False,
        "error": "invalid_card_last4",
        "message": "Card last 4 digits are required and must be exactly 4 digits.",
    }


def test_transcript_is_filtered_and_persisted(settings):
    async def scenario():
        store = CallStore(settings.calls_dir)
        carrier, agent = FakeCarrier(), FakeAgent()
        bridge, _ = make_bridge(settings, agent, store=store)
        relay, task = await _activate(bridge, carrier)

        agent.push({"type": "conversation.item.input_audio_transcription.completed", "transcript": "यह टेस्ट"})
        agent.push({"type": "conversation.item.input_audio_transcription.completed", "transcript": "یہ ٹیسٹ"})
        agent.push({"type": "response.audio_transcript.done", "transcript": "Shukriya."})
        await wait_until(lambda: len(relay.session.transcript.messages) == 2)
        carrier.push({"event": "stop"})
        await asyncio.wait_for(task, 1)

        reloaded = CallStore(settings.calls_dir)
        await reloaded.load()
        return await reloaded.get_call("CA123")

    record = asyncio.run(scenario())

    assert record is not None
    assert record.transcript == "Customer: یہ ٹیسٹ\nAgent: Shukriya."


def test_restart_continues_stored_transcript(settings):
    async def scenario():
        store = CallStore(settings.calls_dir)
        await store.save_call("CA123", transcript="Customer: Salam")
        carrier, agent = FakeCarrier(), FakeAgent()
        bridge, _ = make_bridge(settings, agent, store=store)
        relay, task = await _activate(bridge, carrier)

        agent.push({"type": "response.audio_transcript.done", "transcript": "Wa alaikum salam."})
        await wait_until(lambda: len(relay.session.transcript.messages) == 1)
        carrier.push({"event": "stop"})
        await asyncio.wait_for(task, 1)
        return await store.get_call("CA123")

    record = asyncio.run(scenario())

    assert record.transcript == "Customer: Salam\nAgent: Wa alaikum salam."


def test_failing_activation_still_answers_the_agent(settings):
    async def scenario():
        carrier, agent = FakeCarrier(), FakeAgent()
        bridge, _ = make_bridge(
            settings,
            agent,
            activation=BrokenActivation(UnicodeDecodeError("utf-8", b"\xc3", 0, 1, "invalid continuation byte")),
        )
        relay, task = await _activate(bridge, carrier)

        agent.push(
            {
                "type": "response.function_call_arguments.done",
                "call_id": "call_9",
                "name": "activate_debit_card",
                "arguments": '{"card_last4":"1155","expiry_mmyy":"0626"}',
            }
        )
        await wait_until(lambda: "response.create" in agent.sent_types())
        state = relay.state
        carrier.push({"event": "stop"})
        await asyncio.wait_for(task, 1)
        return state, agent

    state, agent = asyncio.run(scenario())

    assert state is CallState.ACTIVE
    assert agent.sent_types()[-2:] == ["conversation.item.create", "response.create"]
    item = agent.sent[-2]["item"]
    assert item["call_id"] == "call_9"
    assert json.loads(item["output"])["error"] == "api_error"
