"""
VCP Watch - Task Scheduler

Owns a table of cancellable recurring tasks keyed by id, plus a worker pool
for one-off background work.

- Each recurring task gets a TaskHandle with a unique token. Replacing or
  cancelling a key invalidates the old handle, so work still in flight for
  it can detect that it no longer owns the key.
- Runs of one handle never overlap: the timer thread and run_now() share
  the handle's run lock.
- Exceptions escaping a task are logged here and never stop the schedule.
"""

import itertools
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)


class TaskHandle:
    """Handle to one recurring task."""

    def __init__(
        self,
        key: str,
        token: int,
        interval_seconds: float,
        callback: Callable[["TaskHandle"], Any],
    ):
        self.key = key
        self.token = token
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._stop = threading.Event()
        self._run_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self.run_count = 0

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def cancel(self) -> None:
        """Stop future runs. A run already in progress completes."""
        self._stop.set()

    def run_now(self) -> Any:
        """
        Run the task synchronously in the calling thread.

        Waits for an in-progress run of the same handle to finish first.

        Returns:
            The callback's result, or None if cancelled or it failed
        """
        with self._run_lock:
            if self.cancelled:
                return None
            return self._invoke()

    def _invoke(self) -> Any:
        self.run_count += 1
        try:
            return self._callback(self)
        except Exception:
            logger.exception(f"Task {self.key} (token {self.token}) failed")
            return None

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            with self._run_lock:
                if self.cancelled:
                    break
                self._invoke()
        logger.debug(f"Task {self.key} (token {self.token}) finished")

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "active"
        return f"TaskHandle(key={self.key!r}, token={self.token}, {state})"


class TaskScheduler:
    """
    Recurring-task table and background worker pool.

    Usage:
        scheduler = TaskScheduler()
        handle = scheduler.schedule_recurring("AAPL", 900, check)
        scheduler.cancel("AAPL")
        future = scheduler.submit(send_alert, payload, description="alert")
    """

    def __init__(self, max_workers: int = 4, thread_name_prefix: str = "vcpwatch"):
        """
        Initialize the scheduler.

        Args:
            max_workers: Worker threads for one-off submissions
            thread_name_prefix: Prefix for timer and worker thread names
        """
        self._tasks: Dict[str, TaskHandle] = {}
        self._lock = threading.Lock()
        self._tokens = itertools.count(1)
        self._prefix = thread_name_prefix
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=f"{thread_name_prefix}-worker",
        )

    def schedule_recurring(
        self,
        key: str,
        interval_seconds: float,
        callback: Callable[[TaskHandle], Any],
    ) -> TaskHandle:
        """
        Run callback(handle) every interval_seconds until cancelled.

        The first run happens one interval from now. An existing task for
        the same key is cancelled and replaced.
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")

        handle = TaskHandle(key, next(self._tokens), interval_seconds, callback)
        with self._lock:
            previous = self._tasks.get(key)
            self._tasks[key] = handle
        if previous is not None:
            previous.cancel()

        thread = threading.Thread(
            target=handle._loop,
            name=f"{self._prefix}-{key}",
            daemon=True,
        )
        handle._thread = thread
        thread.start()
        return handle

    def cancel(self, key: str, handle: Optional[TaskHandle] = None) -> bool:
        """
        Cancel the task for a key.

        Args:
            key: Task key
            handle: If given, only cancel when it is still the key's handle

        Returns:
            True if a task was cancelled
        """
        with self._lock:
            current = self._tasks.get(key)
            if current is None or (handle is not None and current is not handle):
                return False
            del self._tasks[key]
        current.cancel()
        return True

    def cancel_all(self) -> int:
        """Cancel every recurring task. Returns the number cancelled."""
        with self._lock:
            handles = list(self._tasks.values())
            self._tasks.clear()
        for handle in handles:
            handle.cancel()
        return len(handles)

    def get(self, key: str) -> Optional[TaskHandle]:
        with self._lock:
            return self._tasks.get(key)

    def is_current(self, handle: TaskHandle) -> bool:
        """Whether the handle still owns its key and is not cancelled."""
        with self._lock:
            return self._tasks.get(handle.key) is handle and not handle.cancelled

    @property
    def keys(self) -> List[str]:
        with self._lock:
            return list(self._tasks.keys())

    def submit(
        self,
        fn: Callable[..., Any],
        *args: Any,
        description: Optional[str] = None,
        **kwargs: Any,
    ) -> Future:
        """
        Run fn in the background and return its Future.

        Failures are logged when the future completes; callers may still
        inspect the future for the result or the exception.
        """
        label = description or getattr(fn, "__name__", "task")
        future = self._executor.submit(fn, *args, **kwargs)
        future.add_done_callback(lambda f: self._log_failure(label, f))
        return future

    @staticmethod
    def _log_failure(label: str, future: Future) -> None:
        if future.cancelled():
            logger.debug(f"Background task {label} was cancelled")
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Background task {label} failed: {error}")

    def shutdown(self, wait: bool = False) -> None:
        """Cancel all recurring tasks and stop the worker pool."""
        self.cancel_all()
        self._executor.shutdown(wait=wait)
