"""
Memory Engine - 계층형 대화 메모리

컴포넌트:
┌──────────────────────────────────────────────────────────────┐
│  TokenCounter          토큰 추정 + 모델 윈도우 조회          │
│  TokenBudgetManager    윈도우 → 5개 영역 예산                │
├──────────────────────────────────────────────────────────────┤
│  LongTermMemoryLoader  MEMORY.md 탐색 / 병합 / 캐시          │
│  ShortTermMemoryStore  세션 히스토리 + 압축 트리거           │
│  CompressionEngine     압축 범위 → summary 메시지            │
├──────────────────────────────────────────────────────────────┤
│  ContextAssembler      [system] + history + [new_message]    │
└──────────────────────────────────────────────────────────────┘

진입점: create_memory_system()
"""

from .config import MemorySettings, build_settings, load_settings
from .context import (
    AssembledContext,
    ContextAssembler,
    TokenBudget,
    TokenBudgetManager,
    TokenCounter,
)
from .errors import CompactionError, CompactionRejected, ConfigurationError
from .factory import MemorySystem, create_memory_system
from .memory import (
    CompressedSummary,
    CompressionEngine,
    LongTermMemoryLoader,
    MemoryFile,
    MemorySaveService,
    MemoryScope,
    Message,
    Role,
    ShortTermMemoryStore,
)

__version__ = "1.0.0"

__all__ = [
    # Config
    "MemorySettings",
    "build_settings",
    "load_settings",
    # Context
    "TokenCounter",
    "TokenBudget",
    "TokenBudgetManager",
    "ContextAssembler",
    "AssembledContext",
    # Memory
    "Message",
    "Role",
    "MemoryScope",
    "MemoryFile",
    "LongTermMemoryLoader",
    "MemorySaveService",
    "ShortTermMemoryStore",
    "CompressionEngine",
    "CompressedSummary",
    # Errors
    "ConfigurationError",
    "CompactionError",
    "CompactionRejected",
    # Factory
    "MemorySystem",
    "create_memory_system",
]
