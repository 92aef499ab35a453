"""Task persistence used by the bulk import pipeline."""
from typing import Optional

from psycopg2.extras import Json

from notifyqueue.db import Database
from notifyqueue.models import CreateTaskParams, Task


class TaskRepo:
    """Inserts rows into the tasks table."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or Database()

    def create(self, params: CreateTaskParams) -> Task:
        """Insert a task; status defaults to 'todo', priority to 'medium'."""
        with self.db.cursor() as cur:
            cur.execute("""
                INSERT INTO tasks
                    (workspace_id, project_id, title, description, status, priority,
                     assigned_to, due_date, metadata, created_at, updated_at)
                VALUES (%s, %s, %s, %s, 'todo', COALESCE(NULLIF(%s, ''), 'medium'),
                        NULLIF(%s, ''), %s, %s, NOW(), NOW())
                RETURNING id, workspace_id, project_id, title, description, status, priority,
                          COALESCE(assigned_to, '') AS assigned_to, due_date, metadata, created_at
            """, (
                params.workspace_id,
                params.project_id,
                params.title,
                params.description,
                params.priority,
                params.assigned_to,
                params.due_date,
                Json(params.metadata),
            ))
            return Task.from_row(cur.fetchone())
