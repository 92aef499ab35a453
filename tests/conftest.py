import threading
import time
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from notifyqueue.errors import StorageError
from notifyqueue.models import Task
from notifyqueue.queue.memory_store import MemoryQueueStore

WORKSPACE_ID = "6f1c2b9e-3d4a-4c1b-9a8e-2f5d7c6b1a00"
OTHER_WORKSPACE_ID = "0b7e4f52-8c1d-4e2a-b3f6-9d0a1c2e3f44"
PROJECT_ID = "c3d9a1e7-5b2f-4a6c-8e0d-1f2a3b4c5d66"


class FakeClock:
    """Controllable clock for eligibility and backoff checks."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class FakeTaskRepo:
    """Task storage double that can fail chosen titles and tracks concurrency."""

    def __init__(self, fail_titles=(), delay=0.0):
        self.fail_titles = set(fail_titles)
        self.delay = delay
        self.created = []
        self.in_flight = 0
        self.peak = 0
        self._lock = threading.Lock()

    def create(self, params):
        with self._lock:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if params.title in self.fail_titles:
                raise StorageError(f"insert failed for {params.title}")
            task = Task(
                id=str(uuid.uuid4()),
                workspace_id=params.workspace_id,
                project_id=params.project_id,
                title=params.title,
                description=params.description,
                priority=params.priority or "medium",
                assigned_to=params.assigned_to,
                due_date=params.due_date,
                metadata=params.metadata,
            )
            with self._lock:
                self.created.append((params, task))
            return task
        finally:
            with self._lock:
                self.in_flight -= 1


class RecordingTransport:
    """Transport double that fails for chosen queue ids."""

    def __init__(self, fail_ids=()):
        self.fail_ids = set(fail_ids)
        self.sent = []
        self._lock = threading.Lock()

    def send(self, item):
        with self._lock:
            self.sent.append(item.id)
        if item.id in self.fail_ids:
            raise ConnectionError(f"smtp unavailable for {item.id}")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryQueueStore(max_retries=3, clock=clock)


def enqueue_many(store, clock, count, workspace_id=WORKSPACE_ID, event_type="task.created"):
    items = []
    for n in range(count):
        items.append(store.enqueue(workspace_id, event_type, {"n": n}))
        clock.advance(1)
    return items
