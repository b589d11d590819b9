"""Bounded worker pool with caller-runs backpressure."""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable


class CallerRunsExecutor:
    """Thread pool that never rejects work.

    At most `max_workers` tasks run and `queue_capacity` more wait. When both are
    full, `submit` runs the task on the calling thread and returns an already
    completed future, trading caller latency for guaranteed admission.
    """

    def __init__(
        self,
        max_workers: int,
        queue_capacity: int,
        thread_name_prefix: str = "notification",
        on_caller_runs: Callable[[], None] | None = None,
    ) -> None:
        if max_workers < 1 or queue_capacity < 0:
            raise ValueError("max_workers must be >= 1 and queue_capacity >= 0")
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=thread_name_prefix)
        self._slots = threading.BoundedSemaphore(max_workers + queue_capacity)
        self._on_caller_runs = on_caller_runs
        self.max_workers = max_workers
        self.queue_capacity = queue_capacity

    def submit(self, fn: Callable, *args, **kwargs) -> Future:
        if not self._slots.acquire(blocking=False):
            if self._on_caller_runs is not None:
                self._on_caller_runs()
            return self._run_inline(fn, *args, **kwargs)
        try:
            future = self._pool.submit(fn, *args, **kwargs)
        except BaseException:
            self._slots.release()
            raise
        future.add_done_callback(lambda _: self._slots.release())
        return future

    @staticmethod
    def _run_inline(fn: Callable, *args, **kwargs) -> Future:
        future: Future = Future()
        future.set_running_or_notify_cancel()
        try:
            result = fn(*args, **kwargs)
        except Exception as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
