"""Error taxonomy for the streaming client."""

from __future__ import annotations


class MarketStreamError(Exception):
    """Base class for all client errors."""
    pass


class TransportError(MarketStreamError):
    """Raised when the socket cannot be opened or written to."""
    pass


class DecodeError(MarketStreamError):
    """
    A frame declared a known channel type but its payload did not validate.

    The codec returns instances of this class as values instead of raising them,
    so the router can log and drop the frame without touching the connection.
    """

    def __init__(self, channel: str, raw: str, reason: str):
        super().__init__(f"Malformed {channel} frame: {reason}")
        self.channel = channel
        self.raw = raw
        self.reason = reason


class RequestEncodingError(MarketStreamError):
    """Raised when an outbound frame cannot be serialized. Nothing is sent."""
    pass


class RequestError(MarketStreamError):
    """Base class for failures of a one-shot request."""
    pass


class CorrelationTimeout(RequestError):
    """No matching response arrived within the request timeout."""

    def __init__(self, kind: str, request_id: str, timeout: float):
        super().__init__(f"{kind} request timed out after {timeout:g}s")
        self.kind = kind
        self.request_id = request_id
        self.timeout = timeout


class SendFailure(RequestError):
    """The request could not be sent, or the connection went away while waiting."""
    pass


class ParseFailure(RequestError):
    """A matching response arrived but its payload could not be used."""
    pass
