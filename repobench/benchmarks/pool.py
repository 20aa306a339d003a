from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable

from .retry import RetryPolicy

LOGGER = logging.getLogger("repobench.benchmark.pool")

POLL_INTERVAL_S = 0.05


class WorkQueueClosed(Exception):
    """Raised when an item is put on a queue that has already been closed."""


@dataclass
class PhaseResult:
    phase: str
    failed: int
    processed: int
    started_at: float
    finished_at: float
    cancelled: bool = False

    @property
    def succeeded(self) -> int:
        return self.processed - self.failed

    @property
    def duration_s(self) -> float:
        return max(self.finished_at - self.started_at, 0.0)

    @property
    def throughput_per_second(self) -> float:
        if self.duration_s == 0:
            return 0.0
        return self.processed / self.duration_s


class WorkQueue:
    """Bounded single-producer, many-consumer queue of work item identifiers.

    Consumers keep draining buffered items after ``close``; once the buffer is
    empty ``get`` reports the end of work instead of blocking.
    """

    def __init__(self, capacity: int, poll_interval_s: float = POLL_INTERVAL_S) -> None:
        if capacity < 1:
            raise ValueError("WorkQueue capacity must be >= 1")
        self._queue: queue.Queue[str] = queue.Queue(maxsize=capacity)
        self._closed = threading.Event()
        self._poll_interval_s = poll_interval_s

    @property
    def capacity(self) -> int:
        return self._queue.maxsize

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def put(self, item: str, cancel_event: threading.Event | None = None) -> bool:
        if self._closed.is_set():
            raise WorkQueueClosed(f"cannot enqueue {item!r}: queue is closed")
        while True:
            if cancel_event is not None and cancel_event.is_set():
                return False
            try:
                self._queue.put(item, timeout=self._poll_interval_s)
                return True
            except queue.Full:
                continue

    def close(self) -> None:
        self._closed.set()

    def get(self, cancel_event: threading.Event | None = None) -> str | None:
        while True:
            if cancel_event is not None and cancel_event.is_set():
                return None
            try:
                return self._queue.get(timeout=self._poll_interval_s)
            except queue.Empty:
                pass
            if self._closed.is_set():
                # the last put may have landed between the timeout and the check
                try:
                    return self._queue.get_nowait()
                except queue.Empty:
                    return None


def produce_sequence(
    work_queue: WorkQueue,
    amount: int,
    cancel_event: threading.Event | None = None,
) -> int:
    """Enqueue "1".."amount" in order, then close the queue."""

    produced = 0
    try:
        for number in range(1, amount + 1):
            if not work_queue.put(str(number), cancel_event):
                break
            produced += 1
    finally:
        work_queue.close()
    return produced


class WorkerPool:
    """Fan a phase of work items out to a fixed number of worker threads."""

    def __init__(
        self,
        workers: int,
        retry_policy: RetryPolicy,
        cancel_event: threading.Event,
        phase: str,
        logger: logging.Logger | None = None,
        action: str | None = None,
    ) -> None:
        if workers < 1:
            raise ValueError("WorkerPool workers must be >= 1")
        self._workers = workers
        self._retry_policy = retry_policy
        self._cancel_event = cancel_event
        self._phase = phase
        self._action = action or phase
        self._logger = logger or LOGGER

    @property
    def phase(self) -> str:
        return self._phase

    def run(self, amount: int, operation: Callable[[str], object]) -> PhaseResult:
        if amount < 0:
            raise ValueError("work item amount must be >= 0")

        work_queue = WorkQueue(capacity=self._workers)
        started_at = time.time()

        with ThreadPoolExecutor(
            max_workers=self._workers,
            thread_name_prefix=f"repobench-{self._phase}",
        ) as executor:
            # every worker is scheduled before the first item is produced
            futures = [
                executor.submit(self._worker, work_queue, operation)
                for _ in range(self._workers)
            ]
            produced = produce_sequence(work_queue, amount, self._cancel_event)
            outcomes = [future.result() for future in futures]

        finished_at = time.time()
        failed = sum(local_failed for local_failed, _ in outcomes)
        processed = sum(local_processed for _, local_processed in outcomes)
        cancelled = self._cancel_event.is_set() and processed < amount

        if cancelled:
            self._logger.warning(
                "Phase %s cancelled after %d/%d items (%d enqueued)",
                self._phase,
                processed,
                amount,
                produced,
            )

        return PhaseResult(
            phase=self._phase,
            failed=failed,
            processed=processed,
            started_at=started_at,
            finished_at=finished_at,
            cancelled=cancelled,
        )

    def _worker(
        self,
        work_queue: WorkQueue,
        operation: Callable[[str], object],
    ) -> tuple[int, int]:
        failed = 0
        processed = 0
        while True:
            file_num = work_queue.get(self._cancel_event)
            if file_num is None:
                return failed, processed

            try:
                self._retry_policy.call(lambda: operation(file_num))
            except Exception:  # noqa: BLE001
                failed += 1
                self._logger.error(
                    "Failed %s file %s",
                    self._action,
                    file_num,
                    extra={"file_num": file_num, "phase": self._phase},
                )
            processed += 1
