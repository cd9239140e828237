"""
Best-effort background side effects.

Stats updates, last-seen touches and downstream forwarding must never
change the response a feeder gets. They are submitted here, run on a
small thread pool, and their failures land on the runner's own error
channel (a bounded list plus the log) instead of propagating.
"""

import logging
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Deque, List, Optional, Set

logger = logging.getLogger(__name__)


@dataclass
class TaskFailure:
    name: str
    error: str
    failed_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {'task': self.name, 'error': self.error, 'failed_at': self.failed_at}


class BestEffortRunner:
    """
    Fire-and-forget task runner.

    inline=True runs each task synchronously in the caller's thread,
    which keeps tests deterministic. Failures are still captured rather
    than raised.
    """

    def __init__(self, max_workers: int = 2, inline: bool = False, max_failures: int = 100):
        self.inline = inline
        self._executor = None if inline else ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix='best-effort',
        )
        self._pending: Set[Future] = set()
        self._failures: Deque[TaskFailure] = deque(maxlen=max_failures)
        self._lock = threading.Lock()
        self._completed = 0
        self._failed = 0

    def submit(self, name: str, fn: Callable, *args, **kwargs) -> None:
        """Schedule fn(*args, **kwargs); never raises because of fn."""
        if self._executor is None:
            self._run(name, fn, args, kwargs)
            return

        future = self._executor.submit(self._run, name, fn, args, kwargs)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)

    def _run(self, name: str, fn: Callable, args: tuple, kwargs: dict) -> None:
        try:
            fn(*args, **kwargs)
        except Exception as e:
            logger.warning(f'Best-effort task {name} failed: {e}')
            with self._lock:
                self._failed += 1
                self._failures.append(TaskFailure(name=name, error=str(e)))
            return

        with self._lock:
            self._completed += 1

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for submitted tasks; True if none are still running."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    @property
    def errors(self) -> List[TaskFailure]:
        with self._lock:
            return list(self._failures)

    def shutdown(self, wait_for_tasks: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait_for_tasks)

    @property
    def stats(self) -> dict:
        with self._lock:
            return {
                'pending': len(self._pending),
                'completed': self._completed,
                'failed': self._failed,
                'inline': self.inline,
            }
