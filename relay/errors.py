"""Relay error kinds. Each one is scoped to a single event or message."""

__all__ = [
    "DeliveryFailure",
    "MalformedInput",
    "ProcessingFailure",
    "RelayError",
    "RoutingFailure",
]


class RelayError(Exception):
    """Base class for relay errors."""


class MalformedInput(RelayError):
    """Ingress body is not a JSON object or fails validation. Not retried."""


class RoutingFailure(RelayError):
    """No destination could be reached for a matched event."""


class DeliveryFailure(RoutingFailure):
    """Queue store unavailable or a destination rejected the event.

    `delivered` holds the deliveries that did succeed before the failure, so a
    caller can see a partially routed event.
    """

    def __init__(self, message: str, delivered: list | None = None) -> None:
        super().__init__(message)
        self.delivered = list(delivered or [])


class ProcessingFailure(RelayError):
    """Consumer handler raised or timed out; the message will be redelivered."""

    def __init__(self, message_id: str, reason: str) -> None:
        super().__init__(f"message {message_id}: {reason}")
        self.message_id = message_id
        self.reason = reason
