"""Task import data models."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from notifyqueue.errors import InvalidInputError

PRIORITIES = ("low", "medium", "high", "critical")


def _parse_due_date(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise InvalidInputError(f"invalid due_date: {value!r}")
    else:
        raise InvalidInputError(f"invalid due_date: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class CreateTaskParams:
    workspace_id: str
    project_id: str
    title: str
    description: str = ""
    priority: str = ""
    assigned_to: str = ""
    due_date: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TaskInput:
    """One entry of a bulk import request, as supplied by the caller."""

    title: Any = ""
    description: Any = ""
    priority: Any = ""
    assigned_to: Any = ""
    due_date: Any = None
    metadata: Any = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskInput":
        """Accepts snake_case or camelCase keys. Field values are checked later, per item."""
        if not isinstance(data, dict):
            raise InvalidInputError(f"task entry must be an object, got {type(data).__name__}")
        return cls(
            title=data.get("title", ""),
            description=data.get("description", ""),
            priority=data.get("priority", ""),
            assigned_to=data.get("assigned_to", data.get("assignedTo", "")),
            due_date=data.get("due_date", data.get("dueDate")),
            metadata=data.get("metadata"),
        )

    def to_params(self, workspace_id: str, project_id: str) -> CreateTaskParams:
        """Validate this entry and turn it into insert parameters."""
        if not isinstance(self.title, str) or not self.title.strip():
            raise InvalidInputError("title is required")

        priority = self.priority or ""
        if priority and priority not in PRIORITIES:
            raise InvalidInputError(f"invalid priority: {priority!r}")

        metadata = self.metadata if self.metadata is not None else {}
        if not isinstance(metadata, dict):
            raise InvalidInputError("metadata must be an object")

        return CreateTaskParams(
            workspace_id=workspace_id,
            project_id=project_id,
            title=self.title.strip(),
            description=str(self.description or ""),
            priority=priority,
            assigned_to=str(self.assigned_to or ""),
            due_date=_parse_due_date(self.due_date),
            metadata=metadata,
        )


@dataclass
class Task:
    id: str
    workspace_id: str
    project_id: str
    title: str
    description: str = ""
    status: str = "todo"
    priority: str = "medium"
    assigned_to: str = ""
    due_date: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Task":
        return cls(
            id=str(row["id"]),
            workspace_id=str(row["workspace_id"]),
            project_id=str(row["project_id"]),
            title=row["title"],
            description=row["description"],
            status=row["status"],
            priority=row["priority"],
            assigned_to=row["assigned_to"],
            due_date=row["due_date"],
            metadata=row["metadata"] or {},
            created_at=row["created_at"],
        )


@dataclass(frozen=True)
class ImportFailure:
    index: int  # position in the caller's input list
    error: str


@dataclass
class ImportResult:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: List[ImportFailure] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errors": [{"index": e.index, "error": e.error} for e in self.errors],
        }
