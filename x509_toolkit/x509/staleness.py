"""
Run-id guard for re-triggered work.

Every new run gets a higher id. Results from a run that has since been
superseded are dropped instead of applied.
"""
import logging
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class RunGuard:
    """Last-started-wins guard around result application."""

    def __init__(self):
        self._lock = threading.RLock()
        self._current = 0

    @property
    def current(self) -> int:
        with self._lock:
            return self._current

    def begin(self) -> int:
        with self._lock:
            self._current += 1
            return self._current

    def is_current(self, run_id: int) -> bool:
        with self._lock:
            return run_id == self._current

    def commit(self, run_id: int, apply: Callable[[], Any]) -> bool:
        """Call ``apply`` only if ``run_id`` is still the latest run."""
        with self._lock:
            if run_id != self._current:
                logger.debug(f"Dropping result of stale run {run_id} (current {self._current})")
                return False
            apply()
            return True

    def submit(self, executor, fn: Callable, *args, on_result: Optional[Callable[[Any], Any]] = None):
        """
        Run ``fn(*args)`` on ``executor`` as a new run.

        ``on_result`` receives the return value only if no newer run was
        started in the meantime. Returns the executor's future.
        """
        run_id = self.begin()

        def _done(future):
            if future.cancelled() or future.exception() is not None:
                return
            if on_result is not None:
                value = future.result()
                self.commit(run_id, lambda: on_result(value))

        future = executor.submit(fn, *args)
        future.add_done_callback(_done)
        return future
