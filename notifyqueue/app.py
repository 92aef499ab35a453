"""Main application - runs worker threads that drain the notification queue."""
import signal
import sys
import threading

from notifyqueue.logging_conf import logger
from notifyqueue import settings
from notifyqueue.db import Database
from notifyqueue.queue.pg_store import PostgresQueueStore
from notifyqueue.transport import NoopTransport
from notifyqueue.worker import NotificationWorker


class Application:
    """Owns the database pool and the notification workers."""

    def __init__(self, db=None, store=None, worker_count=None):
        self.db = db or Database()
        self.store = store or PostgresQueueStore(self.db)
        self.worker_count = worker_count or settings.WORKER_THREADS
        self.workers = []
        self.running = False
        self._stopped = threading.Event()

    def start(self):
        """Start the application."""
        logger.info("=" * 50)
        logger.info("Notification Queue Worker")
        logger.info("=" * 50)
        logger.info(f"Workers: {self.worker_count}")
        logger.info(f"Batch size: {settings.BATCH_SIZE}")
        logger.info(f"Poll interval: {settings.POLL_INTERVAL}s")
        logger.info("=" * 50)

        settings.validate_config()
        self.running = True
        transport = NoopTransport()
        for n in range(self.worker_count):
            worker = NotificationWorker(self.store, transport, name=f"notification-worker-{n + 1}")
            worker.start()
            self.workers.append(worker)
        logger.info("Started - watching for pending notifications")

    def stop(self):
        """Stop the application."""
        if not self.running:
            return
        self.running = False
        for worker in self.workers:
            worker.stop()
        self.workers = []
        self.db.close()
        self._stopped.set()
        logger.info("Stopped")

    def run(self):
        """Start workers and block until stopped."""
        self.start()
        try:
            while not self._stopped.wait(1):
                pass
        except KeyboardInterrupt:
            pass
        self.stop()


def main():
    """Entry point."""
    app = Application()

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}")
        app.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        app.run()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
