"""Bounded, cancellable fan-out of extraction tasks over a thread pool."""

from __future__ import annotations

import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Callable, List, Optional

from .errors import ExtractionTimeoutError, GenerationCancelled
from .utils.logging import get_logger

logger = get_logger(__name__)

GATE_POLL_SECONDS = 0.05


class TaskGroup:
    """Run callables concurrently; the first failure cancels the rest.

    Every task gets its own thread.  With ``max_concurrency`` set, tasks
    queue at a counting gate and leave it early once the group is cancelled.
    Tasks observe cancellation through :attr:`cancel_event`.

    Example::

        group = TaskGroup(max_concurrency=4, timeout=30)
        for batch in batches:
            group.go(lambda b=batch: run(b, group.cancel_event))
        group.wait()  # raises the first error, if any
    """

    def __init__(
        self,
        max_concurrency: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.max_concurrency = max_concurrency
        self.timeout = timeout
        self.cancel_event = threading.Event()
        self._gate = threading.BoundedSemaphore(max_concurrency) if max_concurrency else None
        self._tasks: List[Callable[[], None]] = []
        self._lock = threading.Lock()
        self._error: Optional[BaseException] = None

    def go(self, fn: Callable[[], None]) -> None:
        self._tasks.append(fn)

    @property
    def error(self) -> Optional[BaseException]:
        with self._lock:
            return self._error

    def _record(self, exc: BaseException) -> None:
        with self._lock:
            if self._error is None:
                self._error = exc
            else:
                logger.debug(f"Suppressed follow-up task error: {type(exc).__name__}: {exc}")
        self.cancel_event.set()

    def _enter_gate(self) -> None:
        if self._gate is None:
            return
        while not self._gate.acquire(timeout=GATE_POLL_SECONDS):
            if self.cancel_event.is_set():
                raise GenerationCancelled("cancelled while waiting for a concurrency slot")
        if self.cancel_event.is_set():
            self._gate.release()
            raise GenerationCancelled("cancelled while waiting for a concurrency slot")

    def _run(self, fn: Callable[[], None]) -> None:
        try:
            if self.cancel_event.is_set():
                raise GenerationCancelled("cancelled before start")
            self._enter_gate()
            try:
                fn()
            finally:
                if self._gate is not None:
                    self._gate.release()
        except BaseException as exc:
            self._record(exc)
            raise

    def wait(self) -> None:
        """Run every queued task and block until all finish, one fails, or the timeout expires.

        Raises:
            The first task error, or :class:`ExtractionTimeoutError`.
        """
        tasks, self._tasks = self._tasks, []
        if not tasks:
            return

        pool = ThreadPoolExecutor(max_workers=len(tasks), thread_name_prefix="unstruct")
        try:
            futures = [pool.submit(self._run, fn) for fn in tasks]
            _, pending = wait(futures, timeout=self.timeout, return_when=FIRST_EXCEPTION)
            if pending:
                with self._lock:
                    if self._error is None:
                        self._error = ExtractionTimeoutError(
                            f"extraction timed out after {self.timeout}s"
                        )
                self.cancel_event.set()
        finally:
            # Only a timeout leaves tasks behind; after a task failure every sibling
            # has seen the cancel event and is joined before the error is raised.
            pool.shutdown(
                wait=not isinstance(self.error, ExtractionTimeoutError),
                cancel_futures=True,
            )

        error = self.error
        if error is not None:
            raise error


__all__ = ["TaskGroup"]
