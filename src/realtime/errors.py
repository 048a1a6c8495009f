"""Exceptions raised when talking to the realtime agent platform.

Safe to import from API layers; they carry the upstream status and body so
routes can surface them verbatim.
"""

from __future__ import annotations


class RealtimeError(Exception):
    status_code: int = 500
    error_code: str = "server_error"
    default_detail: str = "Realtime platform error"

    def __init__(self, detail: str | None = None, *, status_code: int | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail
        if status_code is not None:
            self.status_code = status_code


class SessionNegotiationError(RealtimeError):
    error_code = "session_create_failed"
    default_detail = "Could not create realtime session."


class CallAcceptError(RealtimeError):
    error_code = "call_accept_failed"
    default_detail = "Could not accept inbound call."


class MalformedEventError(ValueError):
    """Raised when a socket frame is not a JSON object with a known shape."""
