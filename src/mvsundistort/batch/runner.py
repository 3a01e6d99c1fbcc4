"""
Fan-out / ordered-drain batch execution.

All jobs are submitted to a fixed-size thread pool up front. The calling thread
then waits on the completion handles strictly in submission order, so progress
lines are deterministic even though execution order is not. A cooperative stop
event is checked before each wait.
"""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from mvsundistort.errors import ImageReadError

logger = logging.getLogger(__name__)

Job = Callable[[], Any]


@dataclass
class BatchResult:
    num_jobs: int
    completed: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    results: dict[int, Any] = field(default_factory=dict)
    stopped: bool = False

    @property
    def num_completed(self) -> int:
        return len(self.completed)

    @property
    def num_skipped(self) -> int:
        return len(self.skipped)


class ParallelBatchRunner:
    """
    Run independent jobs on `num_workers` threads.

    - A job raising `ImageReadError` is logged and skipped.
    - Any other exception aborts the batch: queued jobs are cancelled and the
      exception is re-raised in the caller.
    - Once `stop_event` is set the drain loop stops waiting. With
      `halt_on_stop`, jobs that have not started yet are discarded; otherwise
      they are left to finish in the background.
    """

    def __init__(
        self,
        num_workers: int | None = None,
        stop_event: threading.Event | None = None,
        halt_on_stop: bool = False,
    ) -> None:
        if num_workers is None:
            num_workers = os.cpu_count() or 1
        if int(num_workers) < 1:
            raise ValueError("num_workers must be >= 1")
        self.num_workers = int(num_workers)
        self.stop_event = stop_event if stop_event is not None else threading.Event()
        self.halt_on_stop = bool(halt_on_stop)

    def stop(self) -> None:
        self.stop_event.set()

    def is_stopped(self) -> bool:
        return self.stop_event.is_set()

    def run(self, jobs: Sequence[Job], progress_message: str = "Processing job [%d/%d]") -> BatchResult:
        result = BatchResult(num_jobs=len(jobs))
        executor = ThreadPoolExecutor(max_workers=self.num_workers, thread_name_prefix="mvsundistort")
        futures: list[Future] = [executor.submit(job) for job in jobs]
        try:
            for i, future in enumerate(futures):
                if self.is_stopped():
                    result.stopped = True
                    break

                logger.info(progress_message, i + 1, len(futures))

                try:
                    result.results[i] = future.result()
                except ImageReadError as e:
                    logger.error("%s", e)
                    result.skipped.append(i)
                else:
                    result.completed.append(i)
        except BaseException:
            executor.shutdown(wait=False, cancel_futures=True)
            raise

        if result.stopped:
            executor.shutdown(wait=False, cancel_futures=self.halt_on_stop)
        else:
            executor.shutdown(wait=True)
        return result
