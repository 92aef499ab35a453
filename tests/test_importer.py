import logging
import threading
import time
from datetime import datetime, timezone

import pytest

from conftest import PROJECT_ID, WORKSPACE_ID, FakeTaskRepo
from notifyqueue.errors import InvalidInputError, StorageError
from notifyqueue.importer import CANCELLED_MESSAGE, IMPORTED_EVENT, BulkImporter
from notifyqueue.models import ImportResult, TaskInput


class FailingQueueStore:
    def __init__(self):
        self.calls = 0

    def enqueue(self, workspace_id, event_type, payload=None):
        self.calls += 1
        raise StorageError("notification_queue is read-only")


def _inputs(count, **overrides):
    return [TaskInput(title=f"task {n}", **overrides) for n in range(count)]


def _importer(repo, store=None, concurrency=4, rate=1000.0, burst=100):
    return BulkImporter(repo, store, concurrency=concurrency, rate=rate, burst=burst)


def test_empty_import_does_no_work(store):
    repo = FakeTaskRepo()

    result = _importer(repo, store).run(WORKSPACE_ID, PROJECT_ID, [])

    assert result == ImportResult(total=0, succeeded=0, failed=0, errors=[])
    assert repo.created == []
    assert store.list(WORKSPACE_ID).total_count == 0


def test_one_failing_item_does_not_affect_siblings(store):
    repo = FakeTaskRepo(fail_titles={"task 3"})

    result = _importer(repo, store).run(WORKSPACE_ID, PROJECT_ID, _inputs(8))

    assert (result.total, result.succeeded, result.failed) == (8, 7, 1)
    assert len(result.errors) == 1
    assert result.errors[0].index == 3
    assert "task 3" in result.errors[0].error

    page = store.list(WORKSPACE_ID, page_size=100)
    assert page.total_count == 7
    assert {item.event_type for item in page.items} == {IMPORTED_EVENT}
    created = {task.id: task.title for _, task in repo.created}
    assert {item.payload["task_id"]: item.payload["title"] for item in page.items} == created


def test_failed_item_is_logged_with_its_index(caplog):
    repo = FakeTaskRepo(fail_titles={"task 1"})

    with caplog.at_level(logging.WARNING, logger="notifyqueue"):
        _importer(repo).run(WORKSPACE_ID, PROJECT_ID, _inputs(3))

    [record] = [r for r in caplog.records if getattr(r, "import_index", None) is not None]
    assert record.import_index == 1
    assert record.workspace_id == WORKSPACE_ID


def test_concurrency_ceiling_is_respected():
    repo = FakeTaskRepo(delay=0.02)

    result = _importer(repo, concurrency=2).run(WORKSPACE_ID, PROJECT_ID, _inputs(10))

    assert result.succeeded == 10
    assert len(repo.created) == 10
    assert repo.peak <= 2


def test_invalid_items_fail_by_index(store):
    inputs = [
        {"title": "ok"},
        {"title": "   "},
        {"title": "bad priority", "priority": "urgent"},
        "not an object",
        {"title": "bad date", "dueDate": "next tuesday"},
        {"title": "also ok", "assignedTo": "dana", "dueDate": "2026-05-01T09:00:00Z"},
    ]
    repo = FakeTaskRepo()

    result = _importer(repo, store).run(WORKSPACE_ID, PROJECT_ID, inputs)

    assert (result.succeeded, result.failed) == (2, 4)
    assert [e.index for e in result.errors] == [1, 2, 3, 4]
    params = {p.title: p for p, _ in repo.created}
    assert params["also ok"].assigned_to == "dana"
    assert params["also ok"].due_date == datetime(2026, 5, 1, 9, 0, tzinfo=timezone.utc)
    assert params["ok"].metadata == {}


def test_enqueue_failure_does_not_fail_the_import():
    repo = FakeTaskRepo()
    queue = FailingQueueStore()

    result = _importer(repo, queue).run(WORKSPACE_ID, PROJECT_ID, _inputs(5))

    assert (result.succeeded, result.failed) == (5, 0)
    assert queue.calls == 5


def test_import_without_queue_store_still_creates_tasks():
    repo = FakeTaskRepo()
    result = _importer(repo).run(WORKSPACE_ID, PROJECT_ID, _inputs(3))
    assert result.succeeded == 3


def test_cancel_before_start_schedules_nothing():
    repo = FakeTaskRepo()
    cancel = threading.Event()
    cancel.set()

    result = _importer(repo).run(WORKSPACE_ID, PROJECT_ID, _inputs(4), cancel=cancel)

    assert (result.total, result.succeeded, result.failed) == (4, 0, 4)
    assert [e.index for e in result.errors] == [0, 1, 2, 3]
    assert all(e.error == CANCELLED_MESSAGE for e in result.errors)
    assert repo.created == []


def test_cancel_interrupts_rate_limit_waits(store):
    repo = FakeTaskRepo()
    importer = _importer(repo, store, concurrency=5, rate=0.5, burst=1)
    cancel = threading.Event()
    threading.Timer(0.1, cancel.set).start()

    started = time.monotonic()
    result = importer.run(WORKSPACE_ID, PROJECT_ID, _inputs(5), cancel=cancel)

    assert time.monotonic() - started < 2
    assert (result.total, result.succeeded, result.failed) == (5, 1, 4)
    assert all("cancelled" in e.error for e in result.errors)
    # the task created before cancellation stays created
    assert len(repo.created) == 1
    assert store.list(WORKSPACE_ID).total_count == 1


def test_rate_limit_spaces_out_creations():
    repo = FakeTaskRepo()
    importer = _importer(repo, concurrency=4, rate=20.0, burst=1)

    started = time.monotonic()
    result = importer.run(WORKSPACE_ID, PROJECT_ID, _inputs(5))

    # one token up front, four more at 20/s
    assert time.monotonic() - started >= 0.15
    assert result.succeeded == 5


@pytest.mark.parametrize("workspace_id, project_id", [
    ("nope", PROJECT_ID),
    (WORKSPACE_ID, ""),
])
def test_bad_identifiers_are_rejected_up_front(workspace_id, project_id):
    repo = FakeTaskRepo()
    with pytest.raises(InvalidInputError):
        _importer(repo).run(workspace_id, project_id, _inputs(2))
    assert repo.created == []
