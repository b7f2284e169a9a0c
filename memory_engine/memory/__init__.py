"""
Memory Engine - Memory Package

장기 기억 (MEMORY.md 파일) + 단기 기억 (세션 히스토리, 압축)
"""

from .types import MemoryFile, MemoryScope, Message, Role
from .loader import LongTermMemoryLoader, merge_memory_files
from .saver import MemorySaveService
from .boundary import TriggerDecision, evaluate_trigger, find_compression_boundary
from .compactor import CompressedSummary, CompressionEngine
from .store import CompactionRecord, SessionState, ShortTermMemoryStore

__all__ = [
    # Types
    "Message",
    "Role",
    "MemoryScope",
    "MemoryFile",
    # Long-term
    "LongTermMemoryLoader",
    "MemorySaveService",
    "merge_memory_files",
    # Short-term
    "ShortTermMemoryStore",
    "SessionState",
    "CompactionRecord",
    "TriggerDecision",
    "evaluate_trigger",
    "find_compression_boundary",
    # Compression
    "CompressionEngine",
    "CompressedSummary",
]
