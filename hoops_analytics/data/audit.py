"""Fire-and-forget audit log for chat requests.

The route hands a finished AuditRecord to the dispatcher after the response
body is built. The write runs on a background thread with its own error
boundary, so a failing sink can never change or delay a response.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditRecord:
    """One completed chat request."""

    user_id: str
    question: str
    thought: str
    final_sql: Optional[str]
    answer: str
    num_iterations: int
    result_type: str


AuditSink = Callable[[AuditRecord], None]


class AuditDispatcher:
    """Runs audit writes on a small background thread pool.

    Attributes:
        sink: Callable that persists one record (may raise)
        max_workers: Number of background threads
    """

    def __init__(self, sink: AuditSink, max_workers: int = 2) -> None:
        self.sink = sink
        self.max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()
        self._pending: set[Future] = set()

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            with self._lock:
                if self._executor is None:
                    self._executor = ThreadPoolExecutor(
                        max_workers=self.max_workers, thread_name_prefix="hoops-audit"
                    )
        return self._executor

    def dispatch(self, record: AuditRecord) -> Future:
        """Schedule a record for writing and return immediately."""
        future = self._get_executor().submit(self._write, record)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _write(self, record: AuditRecord) -> bool:
        """Write one record; errors are logged and swallowed."""
        try:
            self.sink(record)
        except Exception:
            logger.exception(
                f"Failed to save chat audit log for user {record.user_id}"
            )
            return False
        logger.debug(f"Saved chat audit log for user {record.user_id}")
        return True

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for pending writes.

        Returns:
            True if every pending write finished within the timeout
        """
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        """Stop the thread pool (pending writes finish when wait is True)."""
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
            logger.info("Audit dispatcher shut down")
