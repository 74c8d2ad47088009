"""Run many independent tasks with bounded concurrency and ordered results."""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

from entityfinder.errors import BatchError, EmptyBatchError, StateError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(slots=True)
class BatchItem(Generic[R]):
    """Outcome of one task, stored in the slot matching its input position."""

    took_ms: int
    result: Optional[R] = None
    error: Optional[BaseException] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(slots=True)
class BatchResult(Generic[R]):
    took_ms: int
    items: List[BatchItem[R]] = field(default_factory=list)
    error: Optional[BatchError] = None

    @property
    def errors(self) -> bool:
        return any(item.failed for item in self.items)


CompletionCallback = Callable[[Optional[BatchResult], Optional[BaseException]], None]


class BatchRunner(Generic[T, R]):
    """Execute ``runner`` over ``items`` on at most ``concurrency`` worker threads.

    Workers pull indexed items from a shared queue, so a new task starts as
    soon as any running task finishes. Each outcome lands in its input-order
    slot. Completion is signalled exactly once: either when every slot is
    filled, or, with ``fail_fast``, on the first failure. In fail-fast mode
    no new tasks start after a failure and results of tasks already running
    are discarded.
    """

    def __init__(
        self,
        items: Sequence[T],
        runner: Callable[[T], R],
        concurrency: int = 1,
        *,
        fail_fast: bool = False,
        on_complete: CompletionCallback | None = None,
    ) -> None:
        if not items:
            raise EmptyBatchError()
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.items = list(items)
        self.runner = runner
        self.concurrency = min(concurrency, len(self.items))
        self.fail_fast = fail_fast
        self.on_complete = on_complete

        self._queue: "queue.Queue[Tuple[int, T]]" = queue.Queue()
        self._slots: List[Optional[BatchItem[R]]] = [None] * len(self.items)
        self._remaining = len(self.items)
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._finished = False
        self._started_at = 0.0
        self._result: Optional[BatchResult[R]] = None
        self._failure: Optional[BaseException] = None

    def run(self) -> BatchResult[R]:
        """Block until the batch completes and return its result.

        ``on_complete`` is called from here, on the calling thread, so an
        error it raises propagates to the caller. In fail-fast mode the first
        task error is raised instead of returning a result.
        """
        if self._started_at:
            raise RuntimeError("BatchRunner instances can only run once")
        self._started_at = time.perf_counter()
        for position, item in enumerate(self.items):
            self._queue.put((position, item))

        executor = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="entityfinder-batch")
        for _ in range(self.concurrency):
            executor.submit(self._work)
        self._done.wait()
        # Tasks still running after a fail-fast completion finish on their own.
        executor.shutdown(wait=not self.fail_fast)

        if self.on_complete is not None:
            self.on_complete(self._result, self._failure)
        if self._failure is not None:
            raise self._failure
        if self._result is None:
            raise StateError("Batch completed without a result.")
        return self._result

    def _work(self) -> None:
        while not self._finished:
            try:
                position, item = self._queue.get_nowait()
            except queue.Empty:
                return
            started = time.perf_counter()
            try:
                result = self.runner(item)
            except BaseException as exc:
                # Anything escaping the runner fills the slot so run() is released.
                LOGGER.debug("Batch item %d failed: %s", position, exc)
                outcome: BatchItem[R] = BatchItem(_elapsed_ms(started), error=exc)
            else:
                outcome = BatchItem(_elapsed_ms(started), result=result)
            self._fill(position, outcome)

    def _fill(self, position: int, outcome: BatchItem[R]) -> None:
        with self._lock:
            if self._finished:
                return
            if outcome.failed and self.fail_fast:
                self._finished = True
                self._failure = outcome.error
            else:
                self._slots[position] = outcome
                self._remaining -= 1
                if self._remaining > 0:
                    return
                self._finished = True
                items = [slot for slot in self._slots if slot is not None]
                errors = [slot.error for slot in items if slot.error is not None]
                self._result = BatchResult(
                    took_ms=_elapsed_ms(self._started_at),
                    items=items,
                    error=BatchError(errors) if errors else None,
                )
        self._done.set()


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
