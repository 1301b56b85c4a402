"""
=============================================================================
FIXED-SIZE THREAD POOL
=============================================================================

A fixed set of worker threads pulling connection-handling tasks from a
shared FIFO queue. The pool size is the ceiling on requests handled at the
same time.

=============================================================================
ADMISSION CONTROL
=============================================================================

    accept loop ──submit()──►  ┌──────────────────────────┐
                               │  Task queue (unbounded)  │
                               │  [conn7][conn8][conn9]   │
                               └────────────┬─────────────┘
                                            │ get()
                     ┌──────────────────────┼──────────────────────┐
                     ▼                      ▼                      ▼
                 Worker-0               Worker-1               Worker-N-1
                 (conn4)                (conn5)                (conn6)

When every worker is busy, new connections simply wait in the queue. There
is no shedding: submit() never blocks the accept loop and never refuses.

=============================================================================
POISON PILLS
=============================================================================

shutdown() puts one None per worker on the queue. A worker that gets None
exits its loop. Tasks queued before the pills still run first (FIFO).

=============================================================================
"""

import threading
import queue
import time
import logging
from typing import Callable, Optional, Any
from dataclasses import dataclass, field
from enum import Enum


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    """Worker thread states, for monitoring."""
    IDLE = "idle"        # Waiting for a task
    BUSY = "busy"        # Running a task
    STOPPED = "stopped"  # Thread exited


@dataclass
class Task:
    """
    A deferred function call.

    Attributes:
        func: The function to execute.
        args: Positional arguments.
        kwargs: Keyword arguments.
        submitted_at: When the task was queued (to measure queue wait).
    """
    func: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)
    submitted_at: float = field(default_factory=time.time)


class Worker(threading.Thread):
    """
    Worker thread that runs tasks from the queue until it gets a poison pill.

    A failing task is logged and counted; the worker keeps going.
    """

    def __init__(self, task_queue: "queue.Queue[Optional[Task]]", worker_id: int):
        # daemon=True: a stuck client never keeps the process alive
        super().__init__(name=f"Worker-{worker_id}", daemon=True)

        self.task_queue = task_queue
        self.worker_id = worker_id

        self.state = WorkerState.IDLE
        self.tasks_completed = 0
        self.tasks_failed = 0

    def run(self):
        logger.debug(f"Worker {self.worker_id} started")

        while True:
            task = self.task_queue.get()
            try:
                if task is None:
                    break  # Poison pill
                self._execute_task(task)
            finally:
                # Keeps queue.join() accurate, pills included
                self.task_queue.task_done()

        self.state = WorkerState.STOPPED
        logger.debug(f"Worker {self.worker_id} stopped")

    def _execute_task(self, task: Task):
        self.state = WorkerState.BUSY
        start_time = time.time()
        waited = start_time - task.submitted_at

        try:
            task.func(*task.args, **task.kwargs)

            elapsed = time.time() - start_time
            logger.debug(
                f"Worker {self.worker_id} completed task in {elapsed:.3f}s "
                f"(queued {waited:.3f}s)"
            )
            self.tasks_completed += 1

        except Exception as e:
            # One bad task must not take the worker down with it
            elapsed = time.time() - start_time
            logger.exception(
                f"Worker {self.worker_id} task failed after {elapsed:.3f}s: {e}"
            )
            self.tasks_failed += 1

        finally:
            self.state = WorkerState.IDLE


class ThreadPool:
    """
    Fixed-size thread pool.

    Usage:
        pool = ThreadPool(pool_size=8)
        pool.start()
        pool.submit(handle, args=(conn,))
        ...
        pool.shutdown()
    """

    def __init__(self, pool_size: int = 64):
        """
        Args:
            pool_size: Number of worker threads. Must be at least 1.
        """
        if pool_size < 1:
            raise ValueError("pool_size must be >= 1")

        self.pool_size = pool_size

        # maxsize=0: unbounded, submit() never blocks
        self._task_queue: "queue.Queue[Optional[Task]]" = queue.Queue()

        self._workers: list[Worker] = []
        self._lock = threading.Lock()  # Guards start/shutdown transitions
        self._started = False
        self._shutdown = False

    @property
    def is_running(self) -> bool:
        return self._started and not self._shutdown

    def start(self):
        """Start all workers. Calling it again is a no-op."""
        with self._lock:
            if self._started:
                return

            logger.info(f"Starting thread pool with {self.pool_size} workers")

            for worker_id in range(self.pool_size):
                worker = Worker(self._task_queue, worker_id)
                self._workers.append(worker)
                worker.start()

            self._started = True
            self._shutdown = False

    def submit(self, func: Callable[..., Any], args: tuple = (), kwargs: Optional[dict] = None) -> None:
        """
        Queue a task for execution.

        Raises:
            RuntimeError: If the pool is not started or is shutting down.
        """
        if not self._started:
            raise RuntimeError("Thread pool not started")

        if self._shutdown:
            raise RuntimeError("Thread pool is shutting down")

        self._task_queue.put(Task(func=func, args=args, kwargs=kwargs or {}))

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None):
        """
        Stop the pool.

        Args:
            wait: Let queued tasks finish before stopping workers. If False,
                  queued tasks that no worker has picked up are dropped.
            timeout: Upper bound in seconds on waiting for the queue to
                     drain and for each worker to exit.
        """
        with self._lock:
            if not self._started or self._shutdown:
                return

            logger.info("Shutting down thread pool...")
            self._shutdown = True

        if wait:
            deadline = time.time() + timeout if timeout else None
            while self._task_queue.unfinished_tasks:
                if deadline and time.time() > deadline:
                    logger.warning("Shutdown timeout, abandoning queued tasks")
                    break
                time.sleep(0.05)
        else:
            self._drain_queue()

        for _ in self._workers:
            self._task_queue.put(None)

        for worker in self._workers:
            worker.join(timeout=timeout if timeout else 2.0)

        self._workers.clear()
        self._started = False

        logger.info("Thread pool shutdown complete")

    def _drain_queue(self):
        while True:
            try:
                task = self._task_queue.get_nowait()
            except queue.Empty:
                return
            self._task_queue.task_done()
            if task is not None:
                logger.debug("Dropping queued task on shutdown")

    # =========================================================================
    # MONITORING
    # =========================================================================

    @property
    def busy_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.BUSY)

    @property
    def idle_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.IDLE)

    @property
    def queued_tasks(self) -> int:
        return self._task_queue.qsize()

    @property
    def stats(self) -> dict:
        """Worker and task counts, for logs and health reporting."""
        return {
            "workers": {
                "total": len(self._workers),
                "busy": self.busy_workers,
                "idle": self.idle_workers,
            },
            "tasks": {
                "queued": self.queued_tasks,
                "completed": sum(w.tasks_completed for w in self._workers),
                "failed": sum(w.tasks_failed for w in self._workers),
            },
        }
