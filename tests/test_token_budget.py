"""
Memory Engine - TokenBudgetManager 테스트
"""
import pytest

from memory_engine.config import TokenBudgetSettings
from memory_engine.context.budget import TokenBudgetManager
from memory_engine.context.counter import TokenCounter
from memory_engine.errors import ConfigurationError


class TestTokenBudget:
    """예산 분할"""

    def test_default_ratios_8000(self):
        """8000 토큰 모델 → 400/400/800/2400/4000"""
        manager = TokenBudgetManager(TokenCounter({"m": 8000}), TokenBudgetSettings())
        budget = manager.calculate_budget("m")

        assert budget.system_prompt == 400
        assert budget.long_term_memory == 400
        assert budget.compressed_history == 800
        assert budget.preserved_history == 2400
        assert budget.response_buffer == 4000
        assert budget.total == 8000
        assert budget.history_budget == 3200
        assert budget.prompt_limit == 4000

    @pytest.mark.parametrize("total", [1, 7, 999, 8192, 32768, 128000, 200000])
    def test_sum_never_exceeds_total(self, total):
        manager = TokenBudgetManager(TokenCounter({"m": total}), TokenBudgetSettings())
        b = manager.calculate_budget("m")
        parts = [b.system_prompt, b.long_term_memory, b.compressed_history, b.preserved_history, b.response_buffer]
        assert all(p >= 0 for p in parts)
        assert sum(parts) <= total

    def test_unknown_model_uses_default_limit(self):
        manager = TokenBudgetManager(TokenCounter(default_limit=8192), TokenBudgetSettings())
        assert manager.calculate_budget("nope").total == 8192

    def test_invalid_ratio_sum_rejected(self):
        """비율 합계 ≠ 1 → ConfigurationError"""
        ratios = TokenBudgetSettings.model_construct(
            system_prompt_ratio=0.5,
            long_term_memory_ratio=0.5,
            compressed_history_ratio=0.5,
            preserved_history_ratio=0.0,
            response_buffer_ratio=0.0,
        )
        with pytest.raises(ConfigurationError):
            TokenBudgetManager(TokenCounter(), ratios)

    def test_to_dict(self):
        manager = TokenBudgetManager(TokenCounter({"m": 8000}), TokenBudgetSettings())
        assert manager.calculate_budget("m").to_dict()["response_buffer"] == 4000
