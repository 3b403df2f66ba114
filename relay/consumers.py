"""Built-in consumer handlers."""

import json
import logging

from relay.queue.models import QueueMessage

logger = logging.getLogger(__name__)


async def log_event(message: QueueMessage) -> None:
    """Decode the queued event and log it. Raises on an undecodable body so it is retried."""
    event = message.event()
    logger.info(
        "Processing message %s: %s",
        message.message_id,
        json.dumps(event.to_dict(), ensure_ascii=False),
    )
