"""
Memory Engine - Errors

- ConfigurationError: 시작 시점 치명적 설정 오류
- CompactionError: 요약 실패 (재시도 대상, 대화는 계속)
- CompactionRejected: 워커 큐 포화로 압축 작업 거부
"""


class ConfigurationError(Exception):
    """설정 오류 (startup fatal)"""
    pass


class CompactionError(Exception):
    """압축 실패 예외"""
    def __init__(self, session_id: str, reason: str):
        self.session_id = session_id
        self.reason = reason
        super().__init__(f"Compaction failed for session {session_id}: {reason}")


class CompactionRejected(CompactionError):
    """워커 큐가 가득 차 작업이 거부됨"""
    def __init__(self, session_id: str, queue_capacity: int):
        self.queue_capacity = queue_capacity
        super().__init__(session_id, f"worker queue full (capacity={queue_capacity})")
