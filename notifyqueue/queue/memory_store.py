"""In-process notification queue.

Behaves like the PostgreSQL store, including skip-locked claiming: rows held
by an open claim are invisible to other claimers until that claim closes.
Useful for local development and tests; state is lost on restart.
"""
import copy
import itertools
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Set

from notifyqueue import settings
from notifyqueue.errors import NotFoundError
from notifyqueue.logging_conf import logger
from notifyqueue.queue import backoff
from notifyqueue.queue.models import FAILED, PENDING, PROCESSED, NotificationPage, QueueItem
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


class MemoryClaim(Claim):
    def __init__(self, store: "MemoryQueueStore", items: List[QueueItem]):
        super().__init__(items)
        self._store = store

    def mark_processed(self, item_id: int) -> QueueItem:
        self._check_claimed(item_id)
        return self._store.mark_processed(item_id)

    def mark_failed(self, item_id: int, error: str) -> QueueItem:
        self._check_claimed(item_id)
        return self._store.mark_failed(item_id, error)


class MemoryQueueStore:
    """Thread-safe queue kept in a dict, keyed by row id."""

    def __init__(self, max_retries: Optional[int] = None, clock: Optional[Callable[[], datetime]] = None):
        self.max_retries = settings.MAX_RETRIES if max_retries is None else max_retries
        self.clock = clock or backoff.utcnow
        self._rows: Dict[int, QueueItem] = {}
        self._locked: Set[int] = set()
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def enqueue(self, workspace_id, event_type: str, payload: Optional[Dict[str, Any]] = None) -> QueueItem:
        workspace_id = parse_uuid(workspace_id)
        event_type = check_event_type(event_type)
        payload = check_payload(payload)

        with self._lock:
            item = QueueItem(
                id=next(self._ids),
                workspace_id=workspace_id,
                event_type=event_type,
                payload=payload,
                status=PENDING,
                retry_count=0,
                max_retries=self.max_retries,
                created_at=self.clock(),
            )
            self._rows[item.id] = item
            item = copy.deepcopy(item)
        logger.debug("Enqueued notification", extra=item.log_context())
        return item

    def get(self, item_id: int) -> QueueItem:
        item_id = check_item_id(item_id)
        with self._lock:
            return copy.deepcopy(self._row(item_id))

    def mark_processed(self, item_id: int) -> QueueItem:
        item_id = check_item_id(item_id)
        with self._lock:
            row = self._row(item_id)
            row.status = PROCESSED
            if row.processed_at is None:
                row.processed_at = self.clock()
            return copy.deepcopy(row)

    def mark_failed(self, item_id: int, error: str) -> QueueItem:
        item_id = check_item_id(item_id)
        with self._lock:
            row = self._row(item_id)
            row.retry_count += 1
            row.status = FAILED
            row.last_error = truncate_error(error)
            row.next_retry_at = backoff.next_retry_at(row.retry_count, self.clock())
            item = copy.deepcopy(row)
        logger.warning(f"Notification delivery failed: {error}", extra=item.log_context())
        return item

    @contextmanager
    def claim_batch(self, limit: int) -> Iterator[MemoryClaim]:
        """Reserve up to `limit` eligible rows, oldest first, skipping reserved ones."""
        limit = check_limit(limit)
        with self._lock:
            now = self.clock()
            eligible = sorted(
                (row for row in self._rows.values()
                 if row.id not in self._locked and row.is_eligible(now)),
                key=lambda row: (row.created_at, row.id),
            )[:limit]
            ids = [row.id for row in eligible]
            self._locked.update(ids)
            items = [copy.deepcopy(row).claimed() for row in eligible]
        try:
            yield MemoryClaim(self, items)
        finally:
            with self._lock:
                self._locked.difference_update(ids)

    def list(self, workspace_id, status: Optional[str] = None,
             page_size: Optional[int] = None, page_token: Optional[str] = None) -> NotificationPage:
        workspace_id = parse_uuid(workspace_id)
        status = check_status_filter(status)
        size, offset = parse_page(page_size, page_token)

        with self._lock:
            rows = [
                row for row in self._rows.values()
                if row.workspace_id == workspace_id and (status is None or row.status == status)
            ]
            rows.sort(key=lambda row: (row.created_at, row.id), reverse=True)
            page = [copy.deepcopy(row) for row in rows[offset:offset + size]]

        return NotificationPage(
            items=page,
            next_page_token=next_page_token(offset, size, len(rows)),
            total_count=len(rows),
        )

    def _row(self, item_id: int) -> QueueItem:
        row = self._rows.get(item_id)
        if row is None:
            raise NotFoundError(f"notification {item_id} not found")
        return row
