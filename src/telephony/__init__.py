"""Carrier-side telephony: Twilio Media Streams events and the agent relay.

The production path is PSTN -> Twilio -> Media Streams websocket -> relay ->
realtime agent. SIP calls reach the agent directly and only touch ``api.webhooks``.
"""
