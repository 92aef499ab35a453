"""Validation and claim plumbing shared by the queue store backends."""
import json
import uuid
from typing import List, Optional, Tuple

from notifyqueue.errors import InvalidInputError
from notifyqueue.queue.models import QueueItem, STATUSES

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
MAX_ERROR_LENGTH = 2000


def parse_uuid(value, name: str = "workspace_id") -> str:
    """Normalize a UUID given as str or uuid.UUID."""
    if isinstance(value, uuid.UUID):
        return str(value)
    try:
        return str(uuid.UUID(str(value)))
    except (TypeError, ValueError, AttributeError):
        raise InvalidInputError(f"invalid {name}: {value!r}")


def check_item_id(item_id) -> int:
    if isinstance(item_id, bool) or not isinstance(item_id, int) or item_id <= 0:
        raise InvalidInputError(f"invalid notification id: {item_id!r}")
    return item_id


def check_event_type(event_type) -> str:
    if not isinstance(event_type, str) or not event_type.strip():
        raise InvalidInputError("event_type is required")
    return event_type


def check_payload(payload) -> dict:
    """Return a detached copy of the payload as JSONB would store it."""
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise InvalidInputError(f"payload must be an object, got {type(payload).__name__}")
    try:
        encoded = json.dumps(payload, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"payload is not JSON-serializable: {e}")
    return json.loads(encoded)


def check_limit(limit) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise InvalidInputError(f"claim limit must be a positive integer: {limit!r}")
    return limit


def check_status_filter(status: Optional[str]) -> Optional[str]:
    if not status:
        return None
    if status not in STATUSES:
        raise InvalidInputError(f"unknown status filter: {status!r}")
    return status


def _page_size(page_size) -> int:
    if page_size is None or page_size == "":
        return 0
    if isinstance(page_size, bool):
        raise InvalidInputError(f"invalid page size: {page_size!r}")
    if isinstance(page_size, int):
        return page_size
    if isinstance(page_size, str) and page_size.strip().lstrip("-").isdigit():
        return int(page_size)
    raise InvalidInputError(f"invalid page size: {page_size!r}")


def parse_page(page_size: Optional[int], page_token: Optional[str]) -> Tuple[int, int]:
    """Return (limit, offset). Out-of-range sizes fall back to the default."""
    size = _page_size(page_size)
    if size <= 0 or size > MAX_PAGE_SIZE:
        size = DEFAULT_PAGE_SIZE
    if not page_token:
        return size, 0
    try:
        offset = int(page_token)
    except (TypeError, ValueError):
        raise InvalidInputError(f"invalid page token: {page_token!r}")
    if offset < 0:
        raise InvalidInputError(f"invalid page token: {page_token!r}")
    return size, offset


def next_page_token(offset: int, size: int, total: int) -> str:
    nxt = offset + size
    return str(nxt) if nxt < total else ""


def truncate_error(error) -> str:
    return str(error)[:MAX_ERROR_LENGTH]


class Claim:
    """Rows handed exclusively to one worker for one processing cycle.

    While the claim is open no other claimer can see its rows. Outcomes are
    recorded through the claim so they land in the same unit of work; rows
    that leave the claim unmarked become claimable again.
    """

    def __init__(self, items: List[QueueItem]):
        self.items = items

    def __len__(self):
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    @property
    def ids(self) -> List[int]:
        return [item.id for item in self.items]

    def mark_processed(self, item_id: int) -> QueueItem:
        raise NotImplementedError

    def mark_failed(self, item_id: int, error: str) -> QueueItem:
        raise NotImplementedError

    def _check_claimed(self, item_id: int):
        if item_id not in self.ids:
            raise InvalidInputError(f"notification {item_id} is not part of this claim")
