import logging
import time
from contextlib import contextmanager
from datetime import timedelta

from conftest import WORKSPACE_ID, RecordingTransport, enqueue_many
from notifyqueue.errors import StorageError
from notifyqueue.queue.models import FAILED, PENDING, PROCESSED
from notifyqueue.transport import NoopTransport
from notifyqueue.worker import NotificationWorker


class BrokenAckClaim:
    """Claim wrapper whose mark_processed fails for chosen ids."""

    def __init__(self, claim, broken_ids):
        self._claim = claim
        self._broken_ids = broken_ids
        self.items = claim.items

    def __len__(self):
        return len(self._claim)

    def __iter__(self):
        return iter(self._claim)

    def mark_processed(self, item_id):
        if item_id in self._broken_ids:
            raise StorageError("connection reset while updating row")
        return self._claim.mark_processed(item_id)

    def mark_failed(self, item_id, error):
        return self._claim.mark_failed(item_id, error)


class BrokenAckStore:
    def __init__(self, store, broken_ids):
        self.store = store
        self.broken_ids = set(broken_ids)

    @contextmanager
    def claim_batch(self, limit):
        with self.store.claim_batch(limit) as claim:
            yield BrokenAckClaim(claim, self.broken_ids)


class UnavailableStore:
    @contextmanager
    def claim_batch(self, limit):
        raise StorageError("could not connect to server")
        yield  # pragma: no cover


def test_transport_failure_is_isolated_to_its_item(store, clock):
    items = enqueue_many(store, clock, 5)
    transport = RecordingTransport(fail_ids={items[2].id})
    worker = NotificationWorker(store, transport, batch_size=5)

    report = worker.run_batch()

    assert transport.sent == [item.id for item in items]
    assert (report.claimed, report.processed, report.failed) == (5, 4, 1)
    for n, item in enumerate(items):
        expected = FAILED if n == 2 else PROCESSED
        assert store.get(item.id).status == expected

    failed = store.get(items[2].id)
    assert failed.retry_count == 1
    assert "smtp unavailable" in failed.last_error
    assert failed.processed_at is None


def test_failed_ack_falls_back_to_mark_failed(store, clock):
    first, second = enqueue_many(store, clock, 2)
    worker = NotificationWorker(BrokenAckStore(store, {first.id}), RecordingTransport(), batch_size=10)

    report = worker.run_batch()

    assert (report.processed, report.failed) == (1, 1)
    row = store.get(first.id)
    assert row.status == FAILED
    assert row.retry_count == 1
    assert row.last_error == "connection reset while updating row"
    assert store.get(second.id).status == PROCESSED


def test_claim_storage_error_means_nothing_to_do():
    worker = NotificationWorker(UnavailableStore(), RecordingTransport(), batch_size=10)

    report = worker.run_batch()

    assert report.aborted
    assert report.claimed == 0


def test_empty_queue_reports_nothing_claimed(store):
    report = NotificationWorker(store, RecordingTransport()).run_batch(batch_size=3)
    assert report.claimed == 0
    assert not report.aborted


def test_batch_size_bounds_each_run(store, clock):
    enqueue_many(store, clock, 7)
    worker = NotificationWorker(store, RecordingTransport(), batch_size=3)

    assert worker.run_batch().claimed == 3
    assert worker.run_batch().claimed == 3
    assert worker.run_batch().claimed == 1
    assert worker.run_batch().claimed == 0


def test_failed_item_waits_out_its_backoff(store, clock):
    item = store.enqueue(WORKSPACE_ID, "task.created", {})
    transport = RecordingTransport(fail_ids={item.id})
    worker = NotificationWorker(store, transport, batch_size=1)

    worker.run_batch()
    assert store.get(item.id).next_retry_at == clock() + timedelta(seconds=4)

    clock.advance(2)
    assert worker.run_batch().claimed == 0

    clock.advance(2)
    transport.fail_ids.clear()
    report = worker.run_batch()
    assert report.processed == 1
    assert store.get(item.id).status == PROCESSED
    assert store.get(item.id).retry_count == 1


def test_items_past_max_retries_keep_retrying(store, clock, caplog):
    item = store.enqueue(WORKSPACE_ID, "task.created", {})
    worker = NotificationWorker(store, RecordingTransport(fail_ids={item.id}), batch_size=1)

    with caplog.at_level(logging.WARNING):
        for _ in range(4):
            assert worker.run_batch().claimed == 1
            clock.advance(3600)

    row = store.get(item.id)
    assert row.retry_count == 4
    assert row.status == FAILED
    assert "max_retries=3" in caplog.text


def test_background_loop_drains_queue(store, clock):
    items = enqueue_many(store, clock, 6)
    worker = NotificationWorker(store, NoopTransport(delay_ms=0), batch_size=2, poll_interval=0.01)

    worker.start()
    try:
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline:
            if all(store.get(item.id).status == PROCESSED for item in items):
                break
            time.sleep(0.01)
    finally:
        worker.stop()

    assert not worker.running
    assert store.list(WORKSPACE_ID, status=PENDING).total_count == 0
    assert store.list(WORKSPACE_ID, status=PROCESSED).total_count == 6


def test_two_workers_share_a_store_without_double_delivery(store, clock):
    enqueue_many(store, clock, 40)
    transport = RecordingTransport()
    workers = [
        NotificationWorker(store, transport, batch_size=4, poll_interval=0.01, name=f"w{n}")
        for n in range(3)
    ]

    for worker in workers:
        worker.start()
    try:
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline and len(transport.sent) < 40:
            time.sleep(0.01)
    finally:
        for worker in workers:
            worker.stop()

    assert len(transport.sent) == 40
    assert len(set(transport.sent)) == 40


def test_failure_logs_carry_queue_identifiers(store, clock, caplog):
    item = store.enqueue(WORKSPACE_ID, "task.created", {})
    worker = NotificationWorker(store, RecordingTransport(fail_ids={item.id}), batch_size=1)

    with caplog.at_level(logging.ERROR, logger="notifyqueue"):
        worker.run_batch()

    [record] = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert record.notification_id == item.id
    assert record.event_type == "task.created"
    assert record.workspace_id == WORKSPACE_ID
