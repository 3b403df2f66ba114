"""Queue message model."""

from dataclasses import dataclass
from typing import Any

from relay.events.models import Event

__all__ = ["QueueMessage"]


@dataclass
class QueueMessage:
    """One queued event plus delivery metadata. Snapshot taken at receive time."""

    message_id: str
    queue: str
    body: str
    receive_count: int
    visible_after: float
    sent_at: float
    status: str = "available"

    def event(self) -> Event:
        """Decode the JSON body back into an Event."""
        return Event.from_json(self.body)

    def to_record(self) -> dict[str, Any]:
        """Consumer envelope: body plus messageId/receiveCount."""
        return {
            "messageId": self.message_id,
            "receiveCount": self.receive_count,
            "queue": self.queue,
            "body": self.body,
        }
