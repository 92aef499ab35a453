"""PostgreSQL-backed notification queue."""
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import psycopg2
from psycopg2.extras import Json, RealDictCursor

from notifyqueue import settings
from notifyqueue.db import Database
from notifyqueue.errors import NotFoundError, StorageError
from notifyqueue.logging_conf import logger
from notifyqueue.queue import backoff
from notifyqueue.queue.models import COLUMNS, NotificationPage, QueueItem
from notifyqueue.queue.store import (
    Claim,
    check_event_type,
    check_item_id,
    check_limit,
    check_payload,
    check_status_filter,
    next_page_token,
    parse_page,
    parse_uuid,
    truncate_error,
)

CLAIM_SQL = f"""
    SELECT {COLUMNS}
    FROM notification_queue
    WHERE status IN ('pending', 'failed')
      AND (next_retry_at IS NULL OR next_retry_at <= NOW())
    ORDER BY created_at ASC, id ASC
    LIMIT %s
    FOR UPDATE SKIP LOCKED
"""


def _mark_processed(cur, item_id: int) -> QueueItem:
    # processed_at keeps its first value so repeated acks are harmless
    cur.execute(f"""
        UPDATE notification_queue
        SET status = 'processed',
            processed_at = COALESCE(processed_at, clock_timestamp())
        WHERE id = %s
        RETURNING {COLUMNS}
    """, (item_id,))
    row = cur.fetchone()
    if row is None:
        raise NotFoundError(f"notification {item_id} not found")
    return QueueItem.from_row(row)


def _mark_failed(cur, item_id: int, error: str) -> QueueItem:
    cur.execute(
        "SELECT retry_count FROM notification_queue WHERE id = %s FOR UPDATE",
        (item_id,),
    )
    row = cur.fetchone()
    if row is None:
        raise NotFoundError(f"notification {item_id} not found")

    retry_count = row["retry_count"] + 1
    delay = backoff.backoff_seconds(retry_count)
    cur.execute(f"""
        UPDATE notification_queue
        SET status = 'failed',
            last_error = %s,
            retry_count = %s,
            next_retry_at = clock_timestamp() + (%s * INTERVAL '1 second')
        WHERE id = %s
        RETURNING {COLUMNS}
    """, (truncate_error(error), retry_count, delay, item_id))
    return QueueItem.from_row(cur.fetchone())


class PostgresClaim(Claim):
    """Claim whose rows stay locked by the open claim transaction."""

    def __init__(self, cur, items):
        super().__init__(items)
        self._cur = cur

    def mark_processed(self, item_id: int) -> QueueItem:
        self._check_claimed(item_id)
        return self._in_savepoint(_mark_processed, item_id)

    def mark_failed(self, item_id: int, error: str) -> QueueItem:
        self._check_claimed(item_id)
        return self._in_savepoint(_mark_failed, item_id, error)

    def _in_savepoint(self, fn, *args) -> QueueItem:
        # A failed mark must not poison the claim transaction, otherwise the
        # fallback mark and every later row in the batch would fail with it.
        self._cur.execute("SAVEPOINT mark_outcome")
        try:
            result = fn(self._cur, *args)
        except psycopg2.Error as e:
            self._cur.execute("ROLLBACK TO SAVEPOINT mark_outcome")
            raise StorageError(str(e).strip() or e.__class__.__name__) from e
        except NotFoundError:
            self._cur.execute("ROLLBACK TO SAVEPOINT mark_outcome")
            raise
        self._cur.execute("RELEASE SAVEPOINT mark_outcome")
        return result


class PostgresQueueStore:
    """Notification queue stored in the notification_queue table."""

    def __init__(self, db: Optional[Database] = None, max_retries: Optional[int] = None):
        self.db = db or Database()
        self.max_retries = settings.MAX_RETRIES if max_retries is None else max_retries

    def enqueue(self, workspace_id, event_type: str, payload: Optional[Dict[str, Any]] = None) -> QueueItem:
        """Insert a pending row, immediately eligible."""
        workspace_id = parse_uuid(workspace_id)
        event_type = check_event_type(event_type)
        payload = check_payload(payload)

        with self.db.cursor() as cur:
            cur.execute(f"""
                INSERT INTO notification_queue
                    (workspace_id, event_type, payload, status, retry_count, max_retries, created_at)
                VALUES (%s, %s, %s, 'pending', 0, %s, clock_timestamp())
                RETURNING {COLUMNS}
            """, (workspace_id, event_type, Json(payload), self.max_retries))
            item = QueueItem.from_row(cur.fetchone())
        logger.debug("Enqueued notification", extra=item.log_context())
        return item

    def get(self, item_id: int) -> QueueItem:
        item_id = check_item_id(item_id)
        with self.db.cursor() as cur:
            cur.execute(f"SELECT {COLUMNS} FROM notification_queue WHERE id = %s", (item_id,))
            row = cur.fetchone()
        if row is None:
            raise NotFoundError(f"notification {item_id} not found")
        return QueueItem.from_row(row)

    def mark_processed(self, item_id: int) -> QueueItem:
        """Mark a row processed outside of any claim (acknowledge path)."""
        item_id = check_item_id(item_id)
        with self.db.cursor() as cur:
            return _mark_processed(cur, item_id)

    def mark_failed(self, item_id: int, error: str) -> QueueItem:
        """Count a failure and schedule the next attempt."""
        item_id = check_item_id(item_id)
        with self.db.cursor() as cur:
            item = _mark_failed(cur, item_id, error)
        logger.warning(f"Notification delivery failed: {error}", extra=item.log_context())
        return item

    @contextmanager
    def claim_batch(self, limit: int) -> Iterator[PostgresClaim]:
        """Lock up to `limit` eligible rows, oldest first, skipping rows locked elsewhere.

        The rows stay locked until the block exits; outcomes recorded on the
        claim commit together when it does.
        """
        limit = check_limit(limit)
        with self.db.transaction() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            try:
                cur.execute(CLAIM_SQL, (limit,))
                items = [QueueItem.from_row(row).claimed() for row in cur.fetchall()]
                yield PostgresClaim(cur, items)
            finally:
                cur.close()

    def list(self, workspace_id, status: Optional[str] = None,
             page_size: Optional[int] = None, page_token: Optional[str] = None) -> NotificationPage:
        """Newest-first page of a workspace's notifications."""
        workspace_id = parse_uuid(workspace_id)
        status = check_status_filter(status)
        size, offset = parse_page(page_size, page_token)

        where = "workspace_id = %s"
        params = [workspace_id]
        if status:
            where += " AND status = %s"
            params.append(status)

        with self.db.snapshot() as cur:
            cur.execute(f"SELECT COUNT(*) AS total FROM notification_queue WHERE {where}", params)
            total = cur.fetchone()["total"]
            cur.execute(f"""
                SELECT {COLUMNS}
                FROM notification_queue
                WHERE {where}
                ORDER BY created_at DESC, id DESC
                LIMIT %s OFFSET %s
            """, params + [size, offset])
            items = [QueueItem.from_row(row) for row in cur.fetchall()]

        return NotificationPage(
            items=items,
            next_page_token=next_page_token(offset, size, total),
            total_count=total,
        )
