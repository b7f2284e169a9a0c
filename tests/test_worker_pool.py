"""
Memory Engine - CompactionWorkerPool 테스트

Event 로 워커를 붙잡아 큐 포화 상황을 재현
"""
import threading

import pytest

from memory_engine.errors import CompactionRejected
from memory_engine.services.worker_pool import CompactionWorkerPool


@pytest.fixture
def blocked_pool():
    """워커 1개가 작업 중이고 큐(용량 1)도 찬 풀을 만드는 헬퍼"""
    pools = []
    release = threading.Event()

    def build(policy):
        pool = CompactionWorkerPool(worker_count=1, queue_capacity=1, rejection_policy=policy)
        pools.append(pool)
        started = threading.Event()

        def blocker():
            started.set()
            release.wait(5)
            return "blocked"

        first = pool.submit("s1", blocker)
        assert started.wait(5)
        second = pool.submit("s2", lambda: "queued")
        return pool, first, second, release

    yield build

    release.set()
    for pool in pools:
        pool.stop()


class TestWorkerPool:
    """워커 풀 기본 동작"""

    def test_submit_returns_future(self):
        pool = CompactionWorkerPool(worker_count=2).start()
        try:
            assert pool.submit("s1", lambda: 42).result(timeout=5) == 42
        finally:
            pool.stop()

    def test_job_exception_on_future(self):
        pool = CompactionWorkerPool()
        try:
            future = pool.submit("s1", lambda: 1 / 0)
            assert isinstance(future.exception(timeout=5), ZeroDivisionError)
            assert pool.get_stats()["failed"] == 1
        finally:
            pool.stop()

    def test_invalid_policy(self):
        with pytest.raises(ValueError):
            CompactionWorkerPool(rejection_policy="drop")

    def test_stop_is_idempotent(self):
        pool = CompactionWorkerPool().start()
        pool.stop()
        pool.stop()
        assert pool.get_stats()["running"] is False


class TestRejectionPolicy:
    """큐 포화 시 정책"""

    def test_reject_sets_exception(self, blocked_pool, caplog):
        pool, _, _, _ = blocked_pool("reject")

        with caplog.at_level("ERROR", logger="memory_engine"):
            future = pool.submit("s3", lambda: "never")

        assert future.done()
        with pytest.raises(CompactionRejected) as exc_info:
            future.result()
        assert exc_info.value.session_id == "s3"
        assert pool.get_stats()["rejected"] == 1
        assert any("s3" in r.getMessage() for r in caplog.records)

    def test_caller_runs_executes_inline(self, blocked_pool):
        pool, _, _, _ = blocked_pool("caller_runs")
        caller = threading.current_thread().name

        future = pool.submit("s3", lambda: threading.current_thread().name)

        assert future.result(timeout=1) == caller
        assert pool.get_stats()["caller_runs"] == 1

    def test_queued_jobs_finish_after_release(self, blocked_pool):
        pool, first, second, release = blocked_pool("reject")
        assert not second.done()

        release.set()

        assert first.result(timeout=5) == "blocked"
        assert second.result(timeout=5) == "queued"
        assert pool.get_stats()["completed"] == 2
