"""Worker that drains the notification queue."""
import threading
from dataclasses import dataclass
from typing import Optional

from notifyqueue import settings
from notifyqueue.errors import QueueError, StorageError, TransportError
from notifyqueue.logging_conf import logger
from notifyqueue.queue import backoff
from notifyqueue.queue.models import QueueItem
from notifyqueue.transport import NoopTransport


@dataclass
class BatchReport:
    """Outcome of one run_batch call."""

    claimed: int = 0
    processed: int = 0
    failed: int = 0
    aborted: bool = False  # storage failed; unmarked rows went back to the queue


class NotificationWorker:
    """Claims batches of notifications and hands each one to the transport.

    Several workers may share one store; the store's claim guarantees they
    never see the same row at the same time.
    """

    def __init__(self, store, transport=None, batch_size: Optional[int] = None,
                 poll_interval: Optional[float] = None, name: str = "notification-worker"):
        self.store = store
        self.transport = transport or NoopTransport()
        self.batch_size = batch_size or settings.BATCH_SIZE
        self.poll_interval = settings.POLL_INTERVAL if poll_interval is None else poll_interval
        self.name = name
        self.thread = None
        self._stop = threading.Event()

    @property
    def running(self) -> bool:
        return self.thread is not None and self.thread.is_alive() and not self._stop.is_set()

    def start(self):
        """Start the worker in a background thread."""
        if self.running:
            logger.warning(f"{self.name} is already running")
            return

        self._stop.clear()
        self.thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self.thread.start()
        logger.info(f"{self.name} started (batch size: {self.batch_size})")

    def stop(self, timeout: float = 10):
        """Stop the worker and wait for the current batch to finish."""
        self._stop.set()
        if self.thread:
            self.thread.join(timeout=timeout)
            self.thread = None
        logger.info(f"{self.name} stopped")

    def run_batch(self, batch_size: Optional[int] = None) -> BatchReport:
        """Claim up to `batch_size` rows and deliver them one by one.

        A failing item never stops the rest of the batch. A storage failure
        while claiming is treated as "nothing to do this cycle".
        """
        report = BatchReport()
        size = batch_size or self.batch_size

        try:
            with self.store.claim_batch(size) as claim:
                report.claimed = len(claim)
                if not claim:
                    logger.debug("No pending notifications")
                    return report

                logger.info(f"Processing notification batch of {len(claim)}")
                for item in claim:
                    if self._stop.is_set():
                        logger.info(f"Stop requested, releasing {report.claimed - report.processed - report.failed} unhandled rows")
                        break
                    if self._handle(claim, item):
                        report.processed += 1
                    else:
                        report.failed += 1
        except StorageError as e:
            report.aborted = True
            logger.error(f"Notification batch aborted, claimed rows return to the queue: {e}")

        return report

    def _handle(self, claim, item: QueueItem) -> bool:
        """Deliver one item and record the outcome. Returns True on success."""
        try:
            self.transport.send(item)
        except Exception as e:
            error = TransportError(str(e) or e.__class__.__name__)
            logger.error(f"Failed to send notification: {error}", extra=item.log_context())
            self._mark_failed(claim, item, str(error))
            return False

        try:
            claim.mark_processed(item.id)
        except QueueError as e:
            logger.error(f"Failed to mark notification processed: {e}", extra=item.log_context())
            self._mark_failed(claim, item, str(e))
            return False

        logger.info("Notification sent", extra=item.log_context())
        return True

    def _mark_failed(self, claim, item: QueueItem, error: str):
        try:
            updated = claim.mark_failed(item.id, error)
        except QueueError as e:
            logger.error(f"Failed to mark notification failed: {e}", extra=item.log_context())
            return

        if backoff.retries_exhausted(updated.retry_count, updated.max_retries):
            logger.warning(
                f"Notification has failed {updated.retry_count} times "
                f"(max_retries={updated.max_retries}); still retrying, next attempt at "
                f"{updated.next_retry_at.isoformat() if updated.next_retry_at else 'now'}",
                extra=updated.log_context(),
            )

    def _run(self):
        """Main worker loop."""
        logger.info(f"{self.name} thread started")

        while not self._stop.is_set():
            try:
                report = self.run_batch()

                # If no work, sleep before next poll
                if report.claimed == 0 or report.aborted:
                    self._stop.wait(self.poll_interval)

            except Exception as e:
                logger.error(f"{self.name} error: {e}", exc_info=True)
                self._stop.wait(5)

        logger.info(f"{self.name} thread stopped")
