"""Consumer worker: receive a batch, run the handler per message, acknowledge successes.

Failed or timed-out messages are left alone; the queue makes them visible again
once their visibility timeout passes and dead-letters them past max receive count.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable

from relay.errors import ProcessingFailure
from relay.queue.models import QueueMessage
from relay.queue.store import QueueStore

logger = logging.getLogger(__name__)

MessageHandler = Callable[[QueueMessage], Awaitable[None]]


@dataclass
class BatchResult:
    """Outcome of one receive/process/acknowledge cycle."""

    received: int = 0
    acknowledged: int = 0
    failed: int = 0


class ConsumerWorker:
    """Pulls from one queue and processes messages with a pluggable async handler."""

    def __init__(
        self,
        store: QueueStore,
        handler: MessageHandler,
        queue: str | None = None,
        batch_size: int = 10,
        visibility_timeout: float = 300.0,
        wait_time: float = 1.0,
        handler_timeout: float = 60.0,
        worker_id: str | None = None,
    ) -> None:
        if handler_timeout >= visibility_timeout:
            raise ValueError(
                f"handler_timeout ({handler_timeout}s) must be shorter than "
                f"visibility_timeout ({visibility_timeout}s)"
            )
        self._store = store
        self._handler = handler
        self._queue = queue or store.default_queue
        self._batch_size = batch_size
        self._visibility_timeout = visibility_timeout
        self._wait_time = wait_time
        self._handler_timeout = handler_timeout
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self._task: asyncio.Task[None] | None = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the receive loop as an asyncio Task."""
        self._stopped = False
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Consumer %s started on queue %s", self.worker_id, self._queue)

    async def stop(self) -> None:
        """Stop after the current batch. Unacknowledged messages simply time out."""
        self._stopped = True
        if self._task:
            try:
                await asyncio.wait_for(
                    asyncio.shield(self._task),
                    timeout=self._handler_timeout + self._wait_time,
                )
            except asyncio.TimeoutError:
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None
        logger.info("Consumer %s stopped", self.worker_id)

    async def _run_loop(self) -> None:
        while not self._stopped:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Store errors: back off one wait period and poll again.
                logger.exception("Consumer %s receive failed: %s", self.worker_id, e)
                await asyncio.sleep(max(self._wait_time, 0.1))

    async def run_once(self) -> BatchResult:
        """Receive one batch and process every message independently."""
        messages = await self._store.receive(
            max_messages=self._batch_size,
            visibility_timeout=self._visibility_timeout,
            queue=self._queue,
            wait_time=self._wait_time,
        )
        result = BatchResult(received=len(messages))
        if not messages:
            return result
        outcomes = await asyncio.gather(
            *(self._process(message) for message in messages)
        )
        result.acknowledged = sum(1 for ok in outcomes if ok)
        result.failed = result.received - result.acknowledged
        return result

    async def _process(self, message: QueueMessage) -> bool:
        """Run the handler; acknowledge only on success. Returns True if acknowledged."""
        try:
            await asyncio.wait_for(self._handler(message), timeout=self._handler_timeout)
        except asyncio.TimeoutError:
            self._log_failure(
                ProcessingFailure(
                    message.message_id, f"handler timed out after {self._handler_timeout}s"
                ),
                message,
            )
            return False
        except Exception as e:
            failure = ProcessingFailure(message.message_id, str(e) or type(e).__name__)
            failure.__cause__ = e
            self._log_failure(failure, message)
            return False
        try:
            await self._store.acknowledge(message.message_id)
        except Exception as e:
            logger.exception(
                "Consumer %s could not acknowledge %s, will be redelivered: %s",
                self.worker_id,
                message.message_id,
                e,
            )
            return False
        logger.info(
            "Successfully processed message %s (receive %d)",
            message.message_id,
            message.receive_count,
        )
        return True

    def _log_failure(self, failure: ProcessingFailure, message: QueueMessage) -> None:
        limit = self._store.max_receive_count
        logger.error(
            "Consumer %s failed on %s (receive %d/%s), will be redelivered: %s",
            self.worker_id,
            message.message_id,
            message.receive_count,
            limit if limit is not None else "unlimited",
            failure.reason,
            exc_info=failure.__cause__,
        )
