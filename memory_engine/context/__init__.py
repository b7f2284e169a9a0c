"""
Memory Engine - Context Package

토큰 추정, 예산 분할, 최종 컨텍스트 조립
"""

from .counter import TokenCounter, estimate_tokens
from .budget import TokenBudget, TokenBudgetManager
from .assembler import AssembledContext, ContextAssembler, build_system_prompt

__all__ = [
    # Counter
    "TokenCounter",
    "estimate_tokens",
    # Budget
    "TokenBudget",
    "TokenBudgetManager",
    # Assembler
    "ContextAssembler",
    "AssembledContext",
    "build_system_prompt",
]
