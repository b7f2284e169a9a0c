"""
Memory Engine - Token Counter

기능:
1. 텍스트/메시지 토큰 추정 (결정적, 길이에 단조 증가)
2. 모델별 컨텍스트 윈도우 조회 (미지의 모델은 기본값으로 soft fallback)
3. 내용 기반 LRU 캐시 + 적중률 통계
"""
from __future__ import annotations
import logging
import threading
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Dict, Iterable, Mapping, Optional, Tuple

if TYPE_CHECKING:
    from ..memory.types import Message

logger = logging.getLogger(__name__)

# 메시지 1개당 포맷 오버헤드 (role 구분자 등)
MESSAGE_OVERHEAD_TOKENS = 4

CACHE_SIZE = 10000

# 설정에 없는 모델의 패밀리 추론 (먼저 매칭되는 것 우선)
MODEL_FAMILY_LIMITS: Tuple[Tuple[str, int], ...] = (
    ("gpt-4o", 128000),
    ("gpt-4-turbo", 128000),
    ("gpt-4", 8192),
    ("claude", 200000),
    ("deepseek", 32768),
    ("qwen-max", 8192),
    ("qwen-plus", 32768),
    ("qwen", 8192),
)


def _is_cjk(c: str) -> bool:
    return (
        '가' <= c <= '힣'      # 한글 음절
        or '一' <= c <= '鿿'   # CJK 통합 한자
        or '぀' <= c <= 'ヿ'   # 히라가나/가타카나
    )


@lru_cache(maxsize=CACHE_SIZE)
def estimate_tokens(text: str) -> int:
    """
    토큰 수 추정 (간단한 휴리스틱)

    - 영문/코드: 4글자 ≈ 1토큰
    - 한글/CJK: 1.5글자 ≈ 1토큰

    글자가 늘어나면 합이 줄지 않으므로 floor 결과도 단조 증가.
    """
    if not text:
        return 0

    cjk_chars = sum(1 for c in text if _is_cjk(c))
    other_chars = len(text) - cjk_chars

    return int(cjk_chars / 1.5 + other_chars / 4)


class TokenCounter:
    """
    토큰 카운터

    모델 이름은 현재 추정식에 영향을 주지 않지만 인터페이스에 유지
    (토크나이저 교체 시 모델별 분기 지점)
    """

    def __init__(
        self,
        model_limits: Optional[Mapping[str, int]] = None,
        default_limit: int = 8192,
    ):
        """
        Args:
            model_limits: 모델명 → 컨텍스트 윈도우 크기
            default_limit: 알 수 없는 모델의 기본값
        """
        self.model_limits: Dict[str, int] = dict(model_limits or {})
        self.default_limit = default_limit

        self._stats_lock = threading.Lock()
        self._calls = 0
        self._unknown_models: set = set()

    def count_tokens(self, text: Optional[str], model: Optional[str] = None) -> int:
        """텍스트 토큰 수"""
        with self._stats_lock:
            self._calls += 1
        return estimate_tokens(text or "")

    def count_message_tokens(self, messages: Iterable[Message], model: Optional[str] = None) -> int:
        """메시지 목록 토큰 수 (내용 + 메시지당 오버헤드)"""
        total = 0
        for message in messages:
            total += self.count_tokens(message.content, model) + MESSAGE_OVERHEAD_TOKENS
        return total

    def get_model_token_limit(self, model: Optional[str]) -> int:
        """
        모델 컨텍스트 윈도우

        1. 설정 테이블 정확 일치
        2. 패밀리 추론 (gpt-4o, deepseek ...)
        3. 기본값 (경고 로그, 예외 없음)
        """
        if model and model in self.model_limits:
            return self.model_limits[model]

        if model:
            lowered = model.lower()
            for family, limit in MODEL_FAMILY_LIMITS:
                if family in lowered:
                    return limit

        with self._stats_lock:
            first_time = model not in self._unknown_models
            self._unknown_models.add(model)
        if first_time:
            logger.warning(f"[TokenCounter] Unknown model '{model}', using default limit {self.default_limit}")
        return self.default_limit

    def get_stats(self) -> Dict[str, Any]:
        """통계 반환"""
        info = estimate_tokens.cache_info()
        lookups = info.hits + info.misses
        return {
            "calls": self._calls,
            "cache_hits": info.hits,
            "cache_misses": info.misses,
            "cache_size": info.currsize,
            "hit_ratio": round(info.hits / lookups, 4) if lookups else 0.0,
            "unknown_models": sorted(m for m in self._unknown_models if m),
        }
