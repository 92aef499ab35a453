"""Request/response mapping for the RPC layer.

Requests and responses are plain dicts; transport framing lives elsewhere.
Identifiers are validated before anything touches storage.
"""
from typing import Any, Dict

from notifyqueue.errors import InvalidInputError
from notifyqueue.queue.store import parse_uuid


def _parse_id(value) -> int:
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidInputError(f"invalid notification id: {value!r}")
    return value


class NotificationHandler:
    """List and acknowledge queued notifications."""

    def __init__(self, store):
        self.store = store

    def list_notifications(self, request: Dict[str, Any]) -> Dict[str, Any]:
        pagination = request.get("pagination") or {}
        if not isinstance(pagination, dict):
            raise InvalidInputError("pagination must be an object")
        page = self.store.list(
            parse_uuid(request.get("workspace_id")),
            status=request.get("status") or None,
            page_size=pagination.get("page_size"),
            page_token=pagination.get("page_token"),
        )
        return {
            "notifications": [item.to_dict() for item in page.items],
            "pagination": {
                "next_page_token": page.next_page_token,
                "total_count": page.total_count,
            },
        }

    def mark_notification_read(self, request: Dict[str, Any]) -> Dict[str, Any]:
        item = self.store.mark_processed(_parse_id(request.get("id")))
        return {"notification": item.to_dict()}


class ImportHandler:
    """Entry point for bulk task imports."""

    def __init__(self, importer):
        self.importer = importer

    def bulk_import_tasks(self, request: Dict[str, Any]) -> Dict[str, Any]:
        workspace_id = parse_uuid(request.get("workspace_id"))
        project_id = parse_uuid(request.get("project_id"), "project_id")
        tasks = request.get("tasks")
        if tasks is None:
            tasks = []
        if not isinstance(tasks, list):
            raise InvalidInputError("tasks must be a list")
        return self.importer.run(workspace_id, project_id, tasks).to_dict()
