"""
Unit tests for the fixed-size worker pool.
"""

import threading
import time

import pytest

from httplistener.core.thread_pool import ThreadPool, WorkerState


@pytest.fixture
def pool():
    pool = ThreadPool(pool_size=2)
    pool.start()
    yield pool
    pool.shutdown(wait=False, timeout=2.0)


class TestLifecycle:

    def test_pool_size_must_be_positive(self):
        with pytest.raises(ValueError):
            ThreadPool(pool_size=0)

    def test_submit_before_start(self):
        with pytest.raises(RuntimeError):
            ThreadPool(pool_size=1).submit(print)

    def test_start_is_idempotent(self, pool):
        pool.start()
        assert pool.stats["workers"]["total"] == 2

    def test_submit_after_shutdown(self):
        pool = ThreadPool(pool_size=1)
        pool.start()
        pool.shutdown()

        assert not pool.is_running
        with pytest.raises(RuntimeError):
            pool.submit(print)

    def test_shutdown_waits_for_queued_tasks(self):
        pool = ThreadPool(pool_size=1)
        pool.start()
        done = []

        for i in range(5):
            pool.submit(lambda n: (time.sleep(0.01), done.append(n)), args=(i,))

        pool.shutdown(wait=True, timeout=5.0)

        # FIFO with a single worker
        assert done == [0, 1, 2, 3, 4]


class TestExecution:

    def test_runs_task_with_arguments(self, pool):
        result = {}
        finished = threading.Event()

        def task(a, b=None):
            result["value"] = (a, b)
            finished.set()

        pool.submit(task, args=(1,), kwargs={"b": 2})

        assert finished.wait(2.0)
        assert result["value"] == (1, 2)

    def test_concurrency_capped_at_pool_size(self, pool):
        """Never more than pool_size tasks run at once; the rest queue."""
        lock = threading.Lock()
        running = 0
        peak = 0
        release = threading.Event()
        all_done = threading.Semaphore(0)

        def task():
            nonlocal running, peak
            with lock:
                running += 1
                peak = max(peak, running)
            release.wait(2.0)
            with lock:
                running -= 1
            all_done.release()

        for _ in range(6):
            pool.submit(task)

        time.sleep(0.2)
        assert pool.busy_workers == 2
        assert pool.queued_tasks == 4

        release.set()
        for _ in range(6):
            assert all_done.acquire(timeout=2.0)

        assert peak == 2

    def test_failing_task_does_not_kill_worker(self):
        pool = ThreadPool(pool_size=1)
        pool.start()
        finished = threading.Event()

        def explode():
            raise RuntimeError("task failure")

        pool.submit(explode)
        pool.submit(finished.set)

        assert finished.wait(2.0)
        time.sleep(0.05)

        stats = pool.stats
        assert stats["tasks"]["failed"] == 1
        assert stats["tasks"]["completed"] == 1

        pool.shutdown()

    def test_workers_stop_after_shutdown(self):
        pool = ThreadPool(pool_size=3)
        pool.start()
        workers = list(pool._workers)

        pool.shutdown(timeout=2.0)

        for worker in workers:
            assert not worker.is_alive()
            assert worker.state == WorkerState.STOPPED
