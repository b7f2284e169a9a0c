"""
Memory Engine - Short-Term Memory Store

세션별 대화 히스토리 + 압축 정책

세션 상태: ACTIVE → COMPACTING → ACTIVE (성공/실패 무관)

동시성:
- 세션마다 독립 락. 레지스트리 락은 세션 생성 시에만 사용
- 압축 중 append 는 pending 큐에 쌓였다가 압축 종료 직후 순서대로 반영
- 세션당 압축은 동시에 하나만 (COMPACTING 상태에서는 재트리거 없음)
- summarize 호출은 락 밖에서 실행
"""
from __future__ import annotations
import logging
import threading
import time
from concurrent.futures import Future, TimeoutError as FutureTimeout
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..config import MemorySettings
from ..context.budget import TokenBudget, TokenBudgetManager
from ..context.counter import TokenCounter
from ..errors import CompactionError, CompactionRejected
from ..services.worker_pool import CompactionWorkerPool
from ..utils.server_logger import log_compaction, log_error
from .boundary import evaluate_trigger, find_compression_boundary
from .compactor import CompressionEngine
from .types import Message

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    ACTIVE = "active"
    COMPACTING = "compacting"


@dataclass
class CompactionRecord:
    """세션 압축 기록 (첫 압축 시도 때 생성)"""
    last_compacted_at: Optional[float] = None
    last_attempt_at: Optional[float] = None
    pending_compaction: bool = False
    compaction_count: int = 0
    last_error: Optional[str] = None


@dataclass
class _Session:
    lock: threading.Lock = field(default_factory=threading.Lock)
    messages: List[Message] = field(default_factory=list)
    pending: List[Message] = field(default_factory=list)
    state: SessionState = SessionState.ACTIVE
    record: Optional[CompactionRecord] = None
    model: Optional[str] = None
    inflight: Optional[Future] = None


class ShortTermMemoryStore:
    """단기 기억 저장소"""

    def __init__(
        self,
        counter: TokenCounter,
        budget_manager: TokenBudgetManager,
        engine: CompressionEngine,
        settings: MemorySettings,
        pool: Optional[CompactionWorkerPool] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            counter: TokenCounter
            budget_manager: 트리거/경계 계산용 예산
            engine: 압축 엔진
            settings: 전체 설정 (short_term, default_model)
            pool: 비동기 압축 워커 풀. None 이면 호출 스레드에서 압축
            clock: 간격 계산용 시계 (테스트 주입)
        """
        self.counter = counter
        self.budget_manager = budget_manager
        self.engine = engine
        self.settings = settings
        self.policy = settings.short_term.compression
        self.pool = pool
        self.clock = clock

        self._sessions: Dict[str, _Session] = {}
        self._registry_lock = threading.Lock()

    # =========================================================================
    # History
    # =========================================================================

    def append(self, session_id: str, message: Message, model: Optional[str] = None) -> Message:
        """
        메시지 추가 후 압축 트리거 평가

        압축 진행 중이면 pending 큐에 추가 (압축 종료 후 반영)
        """
        session = self._get_session(session_id, create=True)

        with session.lock:
            if model or message.model:
                session.model = model or message.model
            if session.state == SessionState.COMPACTING:
                session.pending.append(message)
            else:
                session.messages.append(message)

        self._maybe_compact(session_id, session)
        return message

    def get_history(self, session_id: str) -> List[Message]:
        """현재 히스토리 (확정 + 대기, append 순서)"""
        session = self._get_session(session_id)
        if session is None:
            return []
        with session.lock:
            return list(session.messages) + list(session.pending)

    def get_compacted_history(self, session_id: str, model: Optional[str] = None) -> List[Message]:
        """압축 트리거 평가 후 히스토리 반환"""
        session = self._get_session(session_id)
        if session is None:
            return []
        self._maybe_compact(session_id, session, model)
        return self.get_history(session_id)

    def clear(self, session_id: str) -> bool:
        """세션 히스토리 삭제"""
        with self._registry_lock:
            removed = self._sessions.pop(session_id, None)
        if removed is not None:
            logger.info(f"[ShortTermStore] Cleared session {session_id}")
        return removed is not None

    def session_ids(self) -> List[str]:
        return list(self._sessions.keys())

    def get_state(self, session_id: str) -> Optional[SessionState]:
        session = self._get_session(session_id)
        return session.state if session else None

    def get_record(self, session_id: str) -> Optional[CompactionRecord]:
        """압축 기록 사본"""
        session = self._get_session(session_id)
        if session is None:
            return None
        with session.lock:
            return replace(session.record) if session.record else None

    def wait_for_compaction(self, session_id: str, timeout: Optional[float] = None) -> bool:
        """
        진행 중 압축 완료 대기

        Returns:
            대기 종료 시 압축이 끝났으면 True
        """
        session = self._get_session(session_id)
        if session is None or session.inflight is None:
            return True
        future = session.inflight
        try:
            future.result(timeout=timeout)
        except CompactionRejected:
            pass
        except FutureTimeout:
            return False
        return future.done()

    # =========================================================================
    # Compaction
    # =========================================================================

    def compact_now(self, session_id: str, model: Optional[str] = None) -> bool:
        """
        트리거/간격 조건 없이 즉시 동기 압축 (관리용)

        Returns:
            압축 성공 여부
        """
        session = self._get_session(session_id)
        if session is None:
            return False
        with session.lock:
            if session.state == SessionState.COMPACTING:
                return False
            model = model or session.model or self.settings.default_model
            session.state = SessionState.COMPACTING
            self._record(session).pending_compaction = True
        return self._compact(session_id, session, model, self.budget_manager.calculate_budget(model))

    def _maybe_compact(self, session_id: str, session: _Session, model: Optional[str] = None) -> Optional[Future]:
        if not (self.settings.short_term.enabled and self.policy.enabled):
            return None

        with session.lock:
            if session.state == SessionState.COMPACTING:
                return None
            if not self._interval_elapsed(session):
                return None

            model = model or session.model or self.settings.default_model
            budget = self.budget_manager.calculate_budget(model)
            history_tokens = self.counter.count_message_tokens(session.messages, model)
            decision = evaluate_trigger(history_tokens, len(session.messages), budget, self.policy)

            logger.debug(
                f"[ShortTermStore] Session {session_id} check: {decision.message_count} messages, "
                f"{history_tokens}/{decision.threshold_tokens:.0f} tokens -> {decision.should_compact}"
            )
            if not decision.should_compact:
                return None

            session.state = SessionState.COMPACTING
            self._record(session).pending_compaction = True

        logger.info(f"[ShortTermStore] Session {session_id} triggering compaction due to: {decision.reason}")

        if self.pool is None or not self.policy.async_compression:
            self._compact(session_id, session, model, budget)
            return None

        future = self.pool.submit(session_id, lambda: self._compact(session_id, session, model, budget))
        session.inflight = future
        if future.done() and isinstance(future.exception(), CompactionRejected):
            self._on_rejected(session_id, session)
        return future

    def _compact(self, session_id: str, session: _Session, model: str, budget: TokenBudget) -> bool:
        started = time.time()
        with session.lock:
            snapshot = list(session.messages)

        summary_message: Optional[Message] = None
        boundary = 0
        error: Optional[str] = None

        try:
            boundary = find_compression_boundary(
                snapshot, self.counter, budget, self.policy.preserve_threshold, model
            )
            if boundary <= 0:
                logger.info(f"[ShortTermStore] No valid compression boundary for session {session_id}")
            else:
                summary = self.engine.compress(snapshot[:boundary], session_id)
                summary_message = self.engine.build_summary_message(summary)
        except CompactionError as e:
            error = e.reason
            log_error(f"[ShortTermStore] {e}", session_id=session_id, model=model,
                      error_type="COMPACTION_FAILED", exc_info=False)
        except Exception as e:
            error = str(e)
            log_error(f"[ShortTermStore] Unexpected compaction error for session {session_id}",
                      session_id=session_id, model=model, error_type="COMPACTION_FAILED")

        with session.lock:
            record = self._record(session)
            record.last_attempt_at = self.clock()
            record.last_error = error

            if summary_message is not None:
                session.messages = [summary_message] + session.messages[boundary:]
                record.last_compacted_at = record.last_attempt_at
                record.compaction_count += 1

            self._finish(session)
            after = len(session.messages)

        if summary_message is not None:
            log_compaction(
                session_id,
                before=len(snapshot),
                after=after,
                tokens_before=self.counter.count_message_tokens(snapshot, model),
                tokens_after=self.counter.count_message_tokens(session.messages, model),
                duration_ms=int((time.time() - started) * 1000),
                model=model,
            )
        return summary_message is not None

    def _on_rejected(self, session_id: str, session: _Session) -> None:
        """큐 포화로 거부됨 → 시도 기록 없이 ACTIVE 복귀 (다음 트리거에서 재시도)"""
        with session.lock:
            if session.state == SessionState.COMPACTING:
                self._finish(session)
        logger.warning(f"[ShortTermStore] Compaction for session {session_id} deferred (queue full)")

    def _finish(self, session: _Session) -> None:
        """락 보유 상태에서 호출: ACTIVE 복귀 + pending 반영"""
        session.state = SessionState.ACTIVE
        self._record(session).pending_compaction = False
        if session.pending:
            session.messages.extend(session.pending)
            session.pending.clear()

    def _interval_elapsed(self, session: _Session) -> bool:
        record = session.record
        if record is None or record.last_attempt_at is None:
            return True
        return self.clock() - record.last_attempt_at >= self.policy.min_interval_seconds

    @staticmethod
    def _record(session: _Session) -> CompactionRecord:
        if session.record is None:
            session.record = CompactionRecord()
        return session.record

    def _get_session(self, session_id: str, create: bool = False) -> Optional[_Session]:
        session = self._sessions.get(session_id)
        if session is not None or not create:
            return session
        with self._registry_lock:
            return self._sessions.setdefault(session_id, _Session())
