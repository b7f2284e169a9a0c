"""
Memory Engine - Compaction Policy

1. 트리거: tokens >= trigger_threshold * history_budget  또는  메시지 수 >= min_message_count
2. 경계: 최신 메시지부터 거꾸로 누적해 preserve 목표에 도달한 지점,
         단 꼬리는 항상 user 메시지에서 시작 (assistant 응답을 질문과 분리하지 않음)
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import List, Optional

from ..config import CompressionSettings
from ..context.budget import TokenBudget
from ..context.counter import TokenCounter
from .types import Message, Role

logger = logging.getLogger(__name__)


@dataclass
class TriggerDecision:
    """압축 트리거 판정"""
    should_compact: bool
    token_threshold_met: bool
    message_count_met: bool
    history_tokens: int
    threshold_tokens: float
    message_count: int

    @property
    def reason(self) -> str:
        if self.token_threshold_met and self.message_count_met:
            return "token and message count thresholds"
        if self.token_threshold_met:
            return "token threshold"
        if self.message_count_met:
            return "message count threshold"
        return "none"


def evaluate_trigger(
    history_tokens: int,
    message_count: int,
    budget: TokenBudget,
    policy: CompressionSettings,
) -> TriggerDecision:
    """
    트리거 조건 평가 (enabled / 간격 검사는 호출자 책임)
    """
    threshold_tokens = policy.trigger_threshold * budget.history_budget
    token_met = message_count > 0 and history_tokens >= threshold_tokens
    count_met = message_count >= policy.min_message_count

    return TriggerDecision(
        should_compact=token_met or count_met,
        token_threshold_met=token_met,
        message_count_met=count_met,
        history_tokens=history_tokens,
        threshold_tokens=threshold_tokens,
        message_count=message_count,
    )


def find_compression_boundary(
    messages: List[Message],
    counter: TokenCounter,
    budget: TokenBudget,
    preserve_threshold: float,
    model: Optional[str] = None,
) -> int:
    """
    압축 경계 탐색

    Returns:
        보존 꼬리 시작 인덱스. messages[:idx] 가 압축 범위.
        0 이면 압축할 것이 없음 (user 메시지가 없거나 꼬리가 전체)
    """
    if not messages:
        return 0

    sizes = [counter.count_message_tokens([m], model) for m in messages]
    total = sum(sizes)

    target = preserve_threshold * budget.history_budget
    if target >= total:
        # 예산 기준 꼬리가 전체를 삼키면 현재 히스토리 비율로 자른다
        target = preserve_threshold * total

    split = 0
    accumulated = 0
    for i in range(len(messages) - 1, -1, -1):
        accumulated += sizes[i]
        if accumulated >= target:
            split = i
            break

    # 앞으로(최신 방향) 이동해 user 메시지 찾기
    idx = split
    while idx < len(messages) and messages[idx].role != Role.USER:
        idx += 1
    if idx < len(messages):
        return idx

    # 뒤쪽에 user 가 없으면 이전 user 메시지로 확장
    idx = split - 1
    while idx > 0 and messages[idx].role != Role.USER:
        idx -= 1
    if idx > 0:
        return idx

    logger.debug("[Boundary] No user message boundary found, nothing to compact")
    return 0
