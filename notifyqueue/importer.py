"""Bulk task import with bounded concurrency and a global rate limit."""
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Optional

from notifyqueue import settings
from notifyqueue.errors import ImportCancelledError
from notifyqueue.limits import ConcurrencyLimiter, TokenBucket
from notifyqueue.logging_conf import logger
from notifyqueue.models import ImportFailure, ImportResult, Task, TaskInput
from notifyqueue.queue.store import parse_uuid

IMPORTED_EVENT = "task.imported"
CANCELLED_MESSAGE = "import cancelled"


class ImportTally:
    """Per-index outcomes collected from many import threads."""

    def __init__(self, total: int):
        self._lock = threading.Lock()
        self._result = ImportResult(total=total)

    def success(self):
        with self._lock:
            self._result.succeeded += 1

    def failure(self, index: int, error: str):
        with self._lock:
            self._result.failed += 1
            self._result.errors.append(ImportFailure(index=index, error=error))

    def result(self) -> ImportResult:
        with self._lock:
            return ImportResult(
                total=self._result.total,
                succeeded=self._result.succeeded,
                failed=self._result.failed,
                errors=sorted(self._result.errors, key=lambda e: e.index),
            )


class BulkImporter:
    """Creates tasks from an ordered input list.

    Every input is attempted; one bad item never cancels its siblings. The
    concurrency limiter and the token bucket belong to the importer, so
    concurrent imports through the same instance share both budgets.
    """

    def __init__(self, task_repo, queue_store=None, concurrency: Optional[int] = None,
                 rate: Optional[float] = None, burst: Optional[int] = None,
                 rate_limiter: Optional[TokenBucket] = None):
        self.task_repo = task_repo
        self.queue_store = queue_store
        self.concurrency = concurrency or settings.IMPORT_CONCURRENCY
        self.slots = ConcurrencyLimiter(self.concurrency)
        self.rate_limiter = rate_limiter or TokenBucket(
            rate=rate or settings.IMPORT_RATE_LIMIT,
            burst=burst or settings.IMPORT_RATE_BURST,
        )

    def run(self, workspace_id, project_id, inputs: Iterable,
            cancel: Optional[threading.Event] = None) -> ImportResult:
        """Import `inputs` (TaskInput objects or plain dicts) and report per-index outcomes.

        Setting `cancel` stops scheduling new items and interrupts rate-limit
        waits; items not attempted are reported as failed. Tasks already
        created stay created.
        """
        workspace_id = parse_uuid(workspace_id)
        project_id = parse_uuid(project_id, "project_id")
        inputs = list(inputs)
        if not inputs:
            return ImportResult()

        logger.info(
            f"Starting bulk import: workspace={workspace_id} project={project_id} "
            f"total={len(inputs)} concurrency={self.concurrency}"
        )

        tally = ImportTally(len(inputs))
        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="import") as pool:
            for index, task_input in enumerate(inputs):
                if not self.slots.acquire(cancel):
                    logger.warning(f"Bulk import cancelled, {len(inputs) - index} items not scheduled")
                    for skipped in range(index, len(inputs)):
                        tally.failure(skipped, CANCELLED_MESSAGE)
                    break
                future = pool.submit(self._import_one, workspace_id, project_id, index, task_input, tally, cancel)
                future.add_done_callback(lambda _: self.slots.release())

        result = tally.result()
        logger.info(
            f"Bulk import completed: total={result.total} "
            f"succeeded={result.succeeded} failed={result.failed}"
        )
        return result

    def _import_one(self, workspace_id: str, project_id: str, index: int, task_input,
                    tally: ImportTally, cancel: Optional[threading.Event]):
        try:
            if not isinstance(task_input, TaskInput):
                task_input = TaskInput.from_dict(task_input)
            params = task_input.to_params(workspace_id, project_id)
            self.rate_limiter.acquire(cancel)
            task = self.task_repo.create(params)
        except ImportCancelledError as e:
            tally.failure(index, str(e))
            return
        except Exception as e:
            logger.warning(f"Import task failed: {e}", extra={"workspace_id": workspace_id, "import_index": index})
            tally.failure(index, str(e) or e.__class__.__name__)
            return

        self._notify_imported(workspace_id, task)
        tally.success()

    def _notify_imported(self, workspace_id: str, task: Task):
        """Best effort: a failed enqueue does not fail the import."""
        if self.queue_store is None:
            return
        try:
            self.queue_store.enqueue(workspace_id, IMPORTED_EVENT, {"task_id": task.id, "title": task.title})
        except Exception as e:
            logger.warning(
                f"Could not enqueue notification for task {task.id}: {e}",
                extra={"workspace_id": workspace_id, "event_type": IMPORTED_EVENT},
            )
