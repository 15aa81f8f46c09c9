# core/background.py

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskOutcome:
    """
    Result channel of a background task.

    Attributes:
        key: Caller-chosen identifier, usually the owner id being embedded
        ok: False when the task raised or returned an error value
        value: Return value of the task function when ok
        error: Exception or error value when not ok
    """
    key: str
    ok: bool
    value: Any = None
    error: Any = None


def log_failure(outcome: TaskOutcome):
    """Default failure sink"""
    logger.error(f"Background task {outcome.key} failed: {outcome.error}")


class BackgroundTaskRunner:
    """
    Fire-and-forget execution of embedding work off the request path.

    submit() returns immediately. Failures never propagate to the caller
    that triggered the work; they are delivered to `failure_sink`.
    """

    def __init__(self,
                 n_workers: int = 2,
                 failure_sink: Callable[[TaskOutcome], None] = log_failure,
                 is_failure: Optional[Callable[[Any], bool]] = None):
        self.n_workers = n_workers
        self.failure_sink = failure_sink
        self.is_failure = is_failure or (lambda value: False)
        self.executor = ThreadPoolExecutor(max_workers=n_workers,
                                           thread_name_prefix="embedding")
        self._lock = threading.Lock()
        self._shutdown = False

    def submit(self, key: str, func: Callable, *args, **kwargs) -> Future:
        """
        Schedule `func(*args, **kwargs)`.

        Returns:
            Future resolving to a TaskOutcome; it never raises
        """
        with self._lock:
            if self._shutdown:
                raise RuntimeError("BackgroundTaskRunner has been shut down")
            return self.executor.submit(self._run, key, func, *args, **kwargs)

    def _run(self, key: str, func: Callable, *args, **kwargs) -> TaskOutcome:
        try:
            value = func(*args, **kwargs)
        except Exception as e:
            logger.debug(f"Task {key} raised", exc_info=True)
            outcome = TaskOutcome(key=key, ok=False, error=e)
        else:
            if self.is_failure(value):
                outcome = TaskOutcome(key=key, ok=False, value=value, error=value)
            else:
                return TaskOutcome(key=key, ok=True, value=value)

        try:
            self.failure_sink(outcome)
        except Exception:
            logger.exception(f"Failure sink raised while handling task {key}")
        return outcome

    def shutdown(self, wait: bool = True):
        """Stop accepting work; safe to call more than once"""
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
        self.executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown(wait=True)
