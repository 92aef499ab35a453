"""Queue data models."""
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Any, List, Optional

# Row statuses. PROCESSING is only ever set on claimed in-memory copies.
PENDING = "pending"
PROCESSING = "processing"
PROCESSED = "processed"
FAILED = "failed"

STATUSES = (PENDING, PROCESSING, PROCESSED, FAILED)
CLAIMABLE_STATUSES = (PENDING, FAILED)

COLUMNS = (
    "id, workspace_id, event_type, payload, status, retry_count, max_retries, "
    "next_retry_at, COALESCE(last_error, '') AS last_error, created_at, processed_at"
)


@dataclass
class QueueItem:
    """One row of the notification queue."""

    id: int
    workspace_id: str
    event_type: str  # e.g. "task.created", "task.imported"
    payload: Dict[str, Any]
    status: str = PENDING
    retry_count: int = 0
    max_retries: int = 0
    next_retry_at: Optional[datetime] = None  # None means eligible now
    last_error: str = ""
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "QueueItem":
        """Build a QueueItem from a RealDictCursor row."""
        return cls(
            id=row["id"],
            workspace_id=str(row["workspace_id"]),
            event_type=row["event_type"],
            payload=row["payload"] if row["payload"] is not None else {},
            status=row["status"],
            retry_count=row["retry_count"],
            max_retries=row["max_retries"],
            next_retry_at=row["next_retry_at"],
            last_error=row["last_error"] or "",
            created_at=row["created_at"],
            processed_at=row["processed_at"],
        )

    def is_eligible(self, now: datetime) -> bool:
        """True when a claimer may pick this row up at `now`."""
        if self.status not in CLAIMABLE_STATUSES:
            return False
        return self.next_retry_at is None or self.next_retry_at <= now

    def claimed(self) -> "QueueItem":
        """Copy handed to a worker for the duration of one claim."""
        return replace(self, status=PROCESSING)

    def log_context(self) -> Dict[str, Any]:
        """Identifiers for `extra=` on log calls about this row."""
        return {
            "notification_id": self.id,
            "event_type": self.event_type,
            "workspace_id": self.workspace_id,
            "retry_count": self.retry_count,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape exposed to RPC handlers."""
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "event_type": self.event_type,
            "payload": self.payload,
            "status": self.status,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "next_retry_at": self.next_retry_at.isoformat() if self.next_retry_at else None,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }


@dataclass
class NotificationPage:
    """One page of a workspace listing."""

    items: List[QueueItem] = field(default_factory=list)
    next_page_token: str = ""
    total_count: int = 0
