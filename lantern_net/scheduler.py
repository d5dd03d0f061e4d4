from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List


logger = logging.getLogger(__name__)


@dataclass
class PeriodicTask:
    name: str
    interval: float
    compute: Callable[[Any], Any]
    apply: Callable[[Any], None]
    capture: Callable[[], Any] = lambda: None
    next_due: float = 0.0
    in_flight: bool = False
    runs: int = 0
    failures: int = 0


@dataclass
class _Completion:
    task: PeriodicTask
    result: Any = None
    error: BaseException | None = None


class Scheduler:
    """Cooperative periodic scheduler backed by a worker pool.

    `capture` runs on the owner thread and produces the snapshot handed to
    `compute`, which runs on a worker. Results come back through a queue and
    `apply` runs on the owner thread inside `drain`. A task is not dispatched
    again until its previous result has been applied, and its next due time
    is counted from that moment.
    """

    def __init__(self, max_workers: int = 4, clock: Callable[[], float] = time.monotonic) -> None:
        self.clock = clock
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="lantern")
        self._results: "queue.Queue[_Completion]" = queue.Queue()
        self._tasks: Dict[str, PeriodicTask] = {}

    def add(
        self,
        name: str,
        interval: float,
        compute: Callable[[Any], Any],
        apply: Callable[[Any], None],
        capture: Callable[[], Any] | None = None,
        initial_delay: float = 0.0,
    ) -> PeriodicTask:
        task = PeriodicTask(
            name=name,
            interval=interval,
            compute=compute,
            apply=apply,
            capture=capture or (lambda: None),
            next_due=self.clock() + initial_delay,
        )
        self._tasks[name] = task
        return task

    def tasks(self) -> List[PeriodicTask]:
        return list(self._tasks.values())

    def submit(self, task: PeriodicTask) -> Future:
        snapshot = task.capture()
        task.in_flight = True
        future = self._executor.submit(task.compute, snapshot)
        future.add_done_callback(lambda done: self._complete(task, done))
        return future

    def _complete(self, task: PeriodicTask, future: Future) -> None:
        error = future.exception()
        if error is not None:
            self._results.put(_Completion(task=task, error=error))
        else:
            self._results.put(_Completion(task=task, result=future.result()))

    def tick(self) -> int:
        """Dispatch every task that is due and idle; returns how many were dispatched."""
        now = self.clock()
        dispatched = 0
        for task in self._tasks.values():
            if task.in_flight or task.next_due > now:
                continue
            self.submit(task)
            dispatched += 1
        return dispatched

    def drain(self, timeout: float | None = None) -> int:
        """Apply completed results on the calling thread."""
        applied = 0
        block = timeout is not None
        while True:
            try:
                completion = self._results.get(block=block, timeout=timeout)
            except queue.Empty:
                return applied
            block = False
            task = completion.task
            task.in_flight = False
            task.runs += 1
            if completion.error is not None:
                task.failures += 1
                logger.warning("task %s failed: %s", task.name, completion.error)
            else:
                try:
                    task.apply(completion.result)
                except Exception:
                    task.failures += 1
                    logger.exception("applying %s result failed", task.name)
            task.next_due = self.clock() + task.interval
            applied += 1

    def run_until(self, stop: threading.Event, poll: float = 0.1) -> None:
        while not stop.is_set():
            self.tick()
            self.drain(timeout=poll)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
