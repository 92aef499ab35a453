"""Retry scheduling for failed queue items.

A failed item waits ``2 ** (retry_count + 1)`` seconds, where ``retry_count``
is the value *after* the failure was counted: the first failure waits 4s,
the second 8s, and so on. There is no terminal cutoff; ``max_retries`` is
kept on the row but only reported, never enforced.
"""
from datetime import datetime, timedelta, timezone

from notifyqueue.errors import InvalidInputError

# 2**36 seconds is ~2000 years; much larger offsets overflow datetime.
MAX_BACKOFF_EXPONENT = 36


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def backoff_seconds(retry_count: int) -> int:
    """Delay before an item with this (post-increment) retry count is eligible."""
    if retry_count < 0:
        raise InvalidInputError(f"retry_count must not be negative: {retry_count}")
    return 2 ** min(retry_count + 1, MAX_BACKOFF_EXPONENT)


def next_retry_at(retry_count: int, now: datetime) -> datetime:
    """When an item that has just reached `retry_count` failures may be claimed again."""
    return now + timedelta(seconds=backoff_seconds(retry_count))


def retries_exhausted(retry_count: int, max_retries: int) -> bool:
    """Whether the advisory ceiling has been reached. Informational only."""
    return max_retries > 0 and retry_count >= max_retries
