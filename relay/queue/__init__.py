"""Durable queue: SQLite store with visibility timeouts and the consumer worker."""

from relay.queue.models import QueueMessage
from relay.queue.store import QueueStore
from relay.queue.worker import BatchResult, ConsumerWorker, MessageHandler

__all__ = ["BatchResult", "ConsumerWorker", "MessageHandler", "QueueMessage", "QueueStore"]
