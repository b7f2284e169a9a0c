"""
Memory Engine - 공용 테스트 픽스처
"""
import pytest

from memory_engine.config import build_settings
from memory_engine.context.budget import TokenBudgetManager
from memory_engine.context.counter import TokenCounter
from memory_engine.memory.types import Message


def make_settings(compression=None, long_term=None, **extra):
    """camelCase dict 로 MemorySettings 생성 (기본: 동기 압축, 간격 0)"""
    comp = {"minIntervalSeconds": 0, "asyncCompression": False, "summarizeTimeoutSeconds": None}
    comp.update(compression or {})
    data = {
        "shortTerm": {"compression": comp},
        "longTerm": long_term or {},
        "modelLimits": {"test-model": 8000},
        "defaultModel": "test-model",
    }
    data.update(extra)
    return build_settings(data)


def conversation(n, text="hello world"):
    """user/assistant 교대 메시지 n개"""
    return [
        Message.user(f"{text} {i}") if i % 2 == 0 else Message.assistant(f"{text} {i}")
        for i in range(n)
    ]


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def counter(settings):
    return TokenCounter(settings.model_limits, settings.default_model_limit)


@pytest.fixture
def budget_manager(counter, settings):
    return TokenBudgetManager(counter, settings.token_budget)
