"""
Memory Engine - Compaction Worker Pool

압축 전용 백그라운드 워커 풀

- 고정 크기 워커 스레드 + 용량 제한 큐
- submit() → concurrent.futures.Future
- 큐가 가득 차면 rejection_policy 적용
  - "reject":      Future 에 CompactionRejected 설정 + 에러 로그
  - "caller_runs": 호출 스레드에서 즉시 실행
"""
import logging
import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..errors import CompactionRejected
from ..utils.server_logger import log_error

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass
class _Job:
    """작업 단위"""
    key: str
    fn: Callable[[], Any]
    future: Future


class CompactionWorkerPool:
    """압축 워커 풀"""

    def __init__(
        self,
        worker_count: int = 2,
        queue_capacity: int = 100,
        rejection_policy: str = "reject",
        name: str = "compaction",
    ):
        """
        Args:
            worker_count: 워커 스레드 수
            queue_capacity: 대기 큐 최대 길이
            rejection_policy: "reject" | "caller_runs"
            name: 스레드 이름 접두사
        """
        if rejection_policy not in ("reject", "caller_runs"):
            raise ValueError(f"Unknown rejection policy: {rejection_policy}")

        self.worker_count = worker_count
        self.queue_capacity = queue_capacity
        self.rejection_policy = rejection_policy
        self.name = name

        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=queue_capacity)
        self._workers: List[threading.Thread] = []
        self._running = False
        self._lock = threading.Lock()
        self._stats = {
            "submitted": 0,
            "completed": 0,
            "failed": 0,
            "rejected": 0,
            "caller_runs": 0,
        }

    def start(self) -> "CompactionWorkerPool":
        """워커 스레드 시작"""
        with self._lock:
            if self._running:
                logger.warning("[WorkerPool] Workers already running")
                return self

            self._running = True
            for i in range(self.worker_count):
                worker = threading.Thread(
                    target=self._worker_loop,
                    name=f"{self.name}-{i}",
                    daemon=True,
                )
                worker.start()
                self._workers.append(worker)

        logger.info(f"[WorkerPool] Started {self.worker_count} workers (queue={self.queue_capacity})")
        return self

    def stop(self, timeout: float = 5.0) -> None:
        """워커 스레드 중지 (대기 중 작업은 처리 후 종료)"""
        with self._lock:
            if not self._running:
                return
            self._running = False
            workers = list(self._workers)
            self._workers.clear()

        for _ in workers:
            self._queue.put(_STOP)
        for worker in workers:
            worker.join(timeout=timeout)
        logger.info("[WorkerPool] Workers stopped")

    def submit(self, key: str, fn: Callable[[], Any]) -> Future:
        """
        작업 제출

        Args:
            key: 작업 식별자 (세션 ID, 로그용)
            fn: 실행할 함수

        Returns:
            Future. reject 정책에서 큐가 가득 차면 CompactionRejected 가 설정된 Future
        """
        future: Future = Future()
        job = _Job(key=key, fn=fn, future=future)

        if not self._running:
            self.start()

        try:
            self._queue.put_nowait(job)
        except queue.Full:
            return self._reject(job)

        self._bump("submitted")
        logger.debug(f"[WorkerPool] Enqueued job for {key} (pending={self._queue.qsize()})")
        return future

    def pending(self) -> int:
        return self._queue.qsize()

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            stats = dict(self._stats)
        stats["pending"] = self.pending()
        stats["running"] = self._running
        return stats

    # =========================================================================
    # Internal
    # =========================================================================

    def _reject(self, job: _Job) -> Future:
        if self.rejection_policy == "caller_runs":
            self._bump("caller_runs")
            logger.warning(f"[WorkerPool] Queue full, running job for {job.key} on caller thread")
            self._run(job)
            return job.future

        self._bump("rejected")
        error = CompactionRejected(job.key, self.queue_capacity)
        log_error(f"[WorkerPool] {error}", session_id=job.key, error_type="QUEUE_FULL", exc_info=False)
        job.future.set_exception(error)
        return job.future

    def _worker_loop(self):
        while True:
            job = self._queue.get()
            try:
                if job is _STOP:
                    return
                self._run(job)
            finally:
                self._queue.task_done()

    def _run(self, job: _Job) -> None:
        if not job.future.set_running_or_notify_cancel():
            return
        try:
            result = job.fn()
        except Exception as e:
            self._bump("failed")
            job.future.set_exception(e)
        else:
            self._bump("completed")
            job.future.set_result(result)

    def _bump(self, name: str) -> None:
        with self._lock:
            self._stats[name] += 1
