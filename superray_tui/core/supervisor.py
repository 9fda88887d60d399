"""
Task supervisor: the single entry point for concurrent work
"""

import threading
import traceback
import logging
from collections import deque
from concurrent.futures import Future
from typing import Callable, Optional, List, Any

from .errors import TaskFailure

logger = logging.getLogger(__name__)


class TaskSupervisor:
    """
    Launch units of work behind a failure boundary

    An exception escaping a unit is logged with its traceback and recorded
    as a TaskFailure; it never reaches the caller's thread, the UI loop or
    sibling tasks.
    """

    def __init__(self, max_failures: int = 100):
        self._failures = deque(maxlen=max_failures)
        self._lock = threading.Lock()
        self._threads: List[threading.Thread] = []
        self._callbacks: List[Callable[[TaskFailure], None]] = []

    def register_callback(self, callback: Callable[[TaskFailure], None]):
        """Register a listener invoked for every recorded failure"""
        self._callbacks.append(callback)

    @property
    def failures(self) -> List[TaskFailure]:
        with self._lock:
            return list(self._failures)

    def guard(self, name: str, fn: Callable, *args, **kwargs) -> Any:
        """Run ``fn`` in the current thread; failures are recorded, not raised"""
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            self._record(name, e)
            return None

    def spawn(self, name: str, fn: Callable, *args, **kwargs) -> threading.Thread:
        """Run ``fn`` in a daemon thread (fire-and-forget)"""
        thread = threading.Thread(
            target=self.guard,
            args=(name, fn) + args,
            kwargs=kwargs,
            daemon=True,
            name=name
        )
        self._track(thread)
        thread.start()
        return thread

    def submit(self, name: str, fn: Callable, *args, **kwargs) -> Future:
        """
        Run ``fn`` in a daemon thread and hand its outcome to a Future

        Each call gets its own thread so that a hung engine call can never
        starve a shared pool. The waiter decides how long to wait; an
        exception is delivered through the Future instead of being recorded.
        """
        future: Future = Future()

        def runner():
            if not future.set_running_or_notify_cancel():
                return
            try:
                result = fn(*args, **kwargs)
            except BaseException as e:
                future.set_exception(e)
            else:
                future.set_result(result)

        thread = threading.Thread(target=runner, daemon=True, name=name)
        self._track(thread)
        thread.start()
        return future

    def join(self, timeout: Optional[float] = None):
        """Wait for tracked threads (used on shutdown and in tests)"""
        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            if thread is not threading.current_thread():
                thread.join(timeout=timeout)

    def _track(self, thread: threading.Thread):
        with self._lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)

    def _record(self, name: str, error: Exception):
        trace = traceback.format_exc()
        failure = TaskFailure(name, error, trace)
        logger.error(f"Task '{name}' crashed: {error}", exc_info=True)

        with self._lock:
            self._failures.append(failure)

        for callback in self._callbacks:
            try:
                callback(failure)
            except Exception as e:
                logger.error(f"Failure callback error: {e}")
