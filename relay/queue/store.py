"""SQLite storage for the durable queue: visibility timeouts, redelivery, dead-letter."""

import asyncio
import logging
import sqlite3
import time
import uuid
from pathlib import Path
from typing import Callable

import aiosqlite

from relay.errors import DeliveryFailure
from relay.events.models import Event
from relay.queue.models import QueueMessage

logger = logging.getLogger(__name__)

_COLUMNS = "message_id, queue, body, receive_count, visible_after, sent_at, status"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS queue_message (
    message_id       TEXT    PRIMARY KEY,
    queue            TEXT    NOT NULL,
    body             TEXT    NOT NULL,
    status           TEXT    NOT NULL DEFAULT 'available',
    receive_count    INTEGER NOT NULL DEFAULT 0,
    visible_after    REAL    NOT NULL,
    sent_at          REAL    NOT NULL,
    dead_lettered_at REAL,
    error            TEXT
);

CREATE INDEX IF NOT EXISTS idx_qm_queue_status_visible
    ON queue_message(queue, status, visible_after);
CREATE INDEX IF NOT EXISTS idx_qm_queue_sent ON queue_message(queue, sent_at);
"""


def _row_to_message(row: tuple) -> QueueMessage:
    return QueueMessage(
        message_id=row[0],
        queue=row[1],
        body=row[2],
        receive_count=row[3],
        visible_after=row[4],
        sent_at=row[5],
        status=row[6],
    )


class QueueStore:
    """SQLite-backed queue store. One connection per instance, operations serialized.

    A store may hold several named queues; `default_queue` is used when a call
    does not name one.
    """

    def __init__(
        self,
        db_path: Path,
        default_queue: str = "default",
        max_receive_count: int | None = 3,
        busy_timeout: int = 5000,
        poll_interval: float = 0.5,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db_path = db_path
        self._default_queue = default_queue
        self._max_receive_count = max_receive_count
        self._busy_timeout = busy_timeout
        self._poll_interval = poll_interval
        self._clock = clock
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._wake = asyncio.Event()

    @property
    def default_queue(self) -> str:
        return self._default_queue

    @property
    def max_receive_count(self) -> int | None:
        return self._max_receive_count

    async def _ensure_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            conn = await aiosqlite.connect(str(self._db_path))
            try:
                await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute("PRAGMA synchronous=NORMAL")
                await conn.execute(f"PRAGMA busy_timeout={self._busy_timeout}")
                await conn.executescript(_SCHEMA)
                await conn.commit()
            except Exception:
                await conn.close()
                raise
            self._conn = conn
        return self._conn

    async def close(self) -> None:
        """Close the database connection."""
        async with self._lock:
            if self._conn:
                await self._conn.close()
                self._conn = None

    async def enqueue(self, body: Event | str, queue: str | None = None) -> str:
        """Store a message and return its id. Raises DeliveryFailure if the store is unavailable."""
        queue = queue or self._default_queue
        raw = body.to_json() if isinstance(body, Event) else body
        message_id = uuid.uuid4().hex
        now = self._clock()
        try:
            async with self._lock:
                conn = await self._ensure_conn()
                try:
                    await conn.execute(
                        """
                        INSERT INTO queue_message
                            (message_id, queue, body, status, receive_count, visible_after, sent_at)
                        VALUES (?, ?, ?, 'available', 0, ?, ?)
                        """,
                        (message_id, queue, raw, now, now),
                    )
                    await conn.commit()
                except sqlite3.Error:
                    await conn.rollback()
                    raise
        except (sqlite3.Error, OSError) as e:
            raise DeliveryFailure(f"queue {queue!r} unavailable: {e}") from e
        self._wake.set()
        logger.debug("Enqueued message %s on %s", message_id, queue)
        return message_id

    async def receive(
        self,
        max_messages: int = 1,
        visibility_timeout: float = 30.0,
        queue: str | None = None,
        wait_time: float = 0.0,
    ) -> list[QueueMessage]:
        """Claim up to max_messages visible messages, hiding them for visibility_timeout.

        Waits at most wait_time seconds for messages to arrive; returns [] if none did.
        """
        if max_messages < 1:
            raise ValueError("max_messages must be >= 1")
        queue = queue or self._default_queue
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(wait_time, 0.0)
        while True:
            self._wake.clear()
            messages = await self._claim(queue, max_messages, visibility_timeout)
            remaining = deadline - loop.time()
            if messages or remaining <= 0:
                return messages
            try:
                await asyncio.wait_for(
                    self._wake.wait(),
                    timeout=min(remaining, self._poll_interval),
                )
            except asyncio.TimeoutError:
                pass

    async def _claim(
        self, queue: str, limit: int, visibility_timeout: float
    ) -> list[QueueMessage]:
        """Atomically select visible messages, dead-letter exhausted ones, hide the rest."""
        async with self._lock:
            conn = await self._ensure_conn()
            now = self._clock()
            visible_after = now + visibility_timeout
            claimed: list[QueueMessage] = []
            await conn.execute("BEGIN IMMEDIATE")
            try:
                while len(claimed) < limit:
                    cursor = await conn.execute(
                        f"""
                        SELECT {_COLUMNS}
                        FROM queue_message
                        WHERE queue = ? AND status = 'available' AND visible_after <= ?
                        ORDER BY sent_at, rowid
                        LIMIT ?
                        """,
                        (queue, now, limit - len(claimed)),
                    )
                    rows = await cursor.fetchall()
                    if not rows:
                        break
                    for row in rows:
                        message = _row_to_message(row)
                        if self._exhausted(message):
                            await self._dead_letter(conn, message, now)
                            continue
                        await conn.execute(
                            """
                            UPDATE queue_message
                            SET receive_count = receive_count + 1, visible_after = ?
                            WHERE message_id = ?
                            """,
                            (visible_after, message.message_id),
                        )
                        message.receive_count += 1
                        message.visible_after = visible_after
                        claimed.append(message)
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise
            return claimed

    def _exhausted(self, message: QueueMessage) -> bool:
        return (
            self._max_receive_count is not None
            and message.receive_count >= self._max_receive_count
        )

    async def _dead_letter(
        self, conn: aiosqlite.Connection, message: QueueMessage, now: float
    ) -> None:
        await conn.execute(
            """
            UPDATE queue_message
            SET status = 'dead_letter', dead_lettered_at = ?, error = ?
            WHERE message_id = ?
            """,
            (now, "max receive count exceeded", message.message_id),
        )
        logger.warning(
            "Dead-lettered message %s on %s after %d receives",
            message.message_id,
            message.queue,
            message.receive_count,
        )

    async def acknowledge(self, message_id: str) -> bool:
        """Delete a message. Returns False if it was already gone (duplicate ack)."""
        async with self._lock:
            conn = await self._ensure_conn()
            cursor = await conn.execute(
                "DELETE FROM queue_message WHERE message_id = ? AND status = 'available'",
                (message_id,),
            )
            await conn.commit()
            deleted = (cursor.rowcount or 0) > 0
        if not deleted:
            logger.debug("Acknowledge for unknown message %s ignored", message_id)
        return deleted

    async def extend_visibility(self, message_id: str, timeout: float) -> bool:
        """Reset the invisibility window of an in-flight message to now + timeout."""
        async with self._lock:
            conn = await self._ensure_conn()
            now = self._clock()
            cursor = await conn.execute(
                """
                UPDATE queue_message SET visible_after = ?
                WHERE message_id = ? AND status = 'available' AND visible_after > ?
                """,
                (now + timeout, message_id, now),
            )
            await conn.commit()
            return (cursor.rowcount or 0) > 0

    async def get(self, message_id: str) -> QueueMessage | None:
        """Look up a message by id in any state."""
        async with self._lock:
            conn = await self._ensure_conn()
            cursor = await conn.execute(
                f"SELECT {_COLUMNS} FROM queue_message WHERE message_id = ?",
                (message_id,),
            )
            row = await cursor.fetchone()
        return _row_to_message(row) if row else None

    async def dead_letters(
        self, queue: str | None = None, limit: int = 100
    ) -> list[QueueMessage]:
        """Dead-lettered messages, oldest first."""
        queue = queue or self._default_queue
        async with self._lock:
            conn = await self._ensure_conn()
            cursor = await conn.execute(
                f"""
                SELECT {_COLUMNS} FROM queue_message
                WHERE queue = ? AND status = 'dead_letter'
                ORDER BY dead_lettered_at, rowid
                LIMIT ?
                """,
                (queue, limit),
            )
            rows = await cursor.fetchall()
        return [_row_to_message(row) for row in rows]

    async def redrive(self, message_id: str) -> bool:
        """Move a dead-lettered message back to normal delivery with a fresh receive count."""
        async with self._lock:
            conn = await self._ensure_conn()
            cursor = await conn.execute(
                """
                UPDATE queue_message
                SET status = 'available', receive_count = 0, visible_after = ?,
                    dead_lettered_at = NULL, error = NULL
                WHERE message_id = ? AND status = 'dead_letter'
                """,
                (self._clock(), message_id),
            )
            await conn.commit()
            redriven = (cursor.rowcount or 0) > 0
        if redriven:
            self._wake.set()
            logger.info("Redrove dead-lettered message %s", message_id)
        return redriven

    async def purge(self, queue: str | None = None, status: str | None = None) -> int:
        """Delete messages of a queue (optionally one status only). Returns count."""
        queue = queue or self._default_queue
        sql = "DELETE FROM queue_message WHERE queue = ?"
        params: list = [queue]
        if status is not None:
            sql += " AND status = ?"
            params.append(status)
        async with self._lock:
            conn = await self._ensure_conn()
            cursor = await conn.execute(sql, params)
            await conn.commit()
            return cursor.rowcount or 0

    async def counts(self, queue: str | None = None) -> dict[str, int]:
        """Return {'available', 'in_flight', 'dead_letter'} counts for a queue."""
        queue = queue or self._default_queue
        async with self._lock:
            conn = await self._ensure_conn()
            now = self._clock()
            cursor = await conn.execute(
                """
                SELECT
                    SUM(CASE WHEN status = 'available' AND visible_after <= ? THEN 1 ELSE 0 END),
                    SUM(CASE WHEN status = 'available' AND visible_after > ? THEN 1 ELSE 0 END),
                    SUM(CASE WHEN status = 'dead_letter' THEN 1 ELSE 0 END)
                FROM queue_message WHERE queue = ?
                """,
                (now, now, queue),
            )
            row = await cursor.fetchone()
        available, in_flight, dead = row or (0, 0, 0)
        return {
            "available": available or 0,
            "in_flight": in_flight or 0,
            "dead_letter": dead or 0,
        }
