"""
Memory Engine - Token Budget

모델 컨텍스트 윈도우를 5개 구간으로 분배:
┌───────────────────────────────────────────────┐
│ system_prompt      기본 지시문                 │
│ long_term_memory   장기 기억 (MEMORY.md)       │
│ compressed_history 압축 요약                   │
│ preserved_history  원문 유지 꼬리              │
│ response_buffer    모델 응답 여유분            │
└───────────────────────────────────────────────┘
각 구간 = floor(total * ratio). 비율 합계는 시작 시점에 검증.
"""
from __future__ import annotations
import logging
import math
from dataclasses import dataclass, asdict
from typing import Dict

from ..config import RATIO_EPSILON, TokenBudgetSettings
from ..errors import ConfigurationError
from .counter import TokenCounter

logger = logging.getLogger(__name__)

# 0.29 * 100 = 28.999999999999996 같은 부동소수 오차 보정
_FLOOR_EPSILON = 1e-9


def _portion(total: int, ratio: float) -> int:
    return math.floor(total * ratio + _FLOOR_EPSILON)


@dataclass(frozen=True)
class TokenBudget:
    """토큰 예산"""
    system_prompt: int
    long_term_memory: int
    compressed_history: int
    preserved_history: int
    response_buffer: int
    total: int

    @property
    def history_budget(self) -> int:
        """단기 기억이 쓸 수 있는 예산 (압축 + 원문)"""
        return self.compressed_history + self.preserved_history

    @property
    def prompt_limit(self) -> int:
        """프롬프트 상한 (응답 여유분 제외)"""
        return self.total - self.response_buffer

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class TokenBudgetManager:
    """토큰 예산 계산기 (순수 함수, 동시 호출 안전)"""

    def __init__(self, counter: TokenCounter, ratios: TokenBudgetSettings):
        """
        Raises:
            ConfigurationError: 비율 합계가 1.0 이 아님
        """
        total = ratios.ratio_sum()
        if abs(total - 1.0) > RATIO_EPSILON:
            raise ConfigurationError(f"Token budget ratios must sum to 1.0, got {total:.6f}")

        self.counter = counter
        self.ratios = ratios

    def calculate_budget(self, model: str) -> TokenBudget:
        """모델별 토큰 예산"""
        total = self.counter.get_model_token_limit(model)
        r = self.ratios

        budget = TokenBudget(
            system_prompt=_portion(total, r.system_prompt_ratio),
            long_term_memory=_portion(total, r.long_term_memory_ratio),
            compressed_history=_portion(total, r.compressed_history_ratio),
            preserved_history=_portion(total, r.preserved_history_ratio),
            response_buffer=_portion(total, r.response_buffer_ratio),
            total=total,
        )
        logger.debug(f"[TokenBudget] {model}: {budget}")
        return budget
