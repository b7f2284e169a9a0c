"""
Memory Engine - Factory

설정 → 전체 컴포넌트 조립

    system = create_memory_system(summarizer=my_llm_summarize)
    ctx = system.assembler.assemble_context(session_id, user_id, msg, cwd, "gpt-4o")
    ...
    system.shutdown()
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

from .config import MemorySettings, load_settings
from .context.assembler import ContextAssembler
from .context.budget import TokenBudgetManager
from .context.counter import TokenCounter
from .memory.compactor import CompressionEngine, Summarizer
from .memory.loader import LongTermMemoryLoader, MemoryFileReader
from .memory.saver import MemorySaveService
from .memory.store import ShortTermMemoryStore
from .services.worker_pool import CompactionWorkerPool
from .utils.server_logger import setup_logger

logger = logging.getLogger(__name__)


@dataclass
class MemorySystem:
    """조립된 메모리 시스템"""
    settings: MemorySettings
    counter: TokenCounter
    budget_manager: TokenBudgetManager
    loader: LongTermMemoryLoader
    saver: MemorySaveService
    engine: CompressionEngine
    store: ShortTermMemoryStore
    assembler: ContextAssembler
    pool: Optional[CompactionWorkerPool] = None

    def shutdown(self, timeout: float = 5.0) -> None:
        """워커 풀 / summarize executor 정리"""
        if self.pool is not None:
            self.pool.stop(timeout=timeout)
        self.engine.shutdown()
        logger.info("[MemorySystem] Shutdown complete")


def create_memory_system(
    settings: Optional[MemorySettings] = None,
    summarizer: Optional[Summarizer] = None,
    reader: Optional[MemoryFileReader] = None,
    configure_logging: bool = True,
) -> MemorySystem:
    """
    메모리 시스템 생성

    Args:
        settings: 설정 (없으면 load_settings())
        summarizer: 외부 요약 함수 (prompt → summary). 압축 활성화 시 필수
        reader: 장기 기억 파일 reader (없으면 파일시스템)
        configure_logging: setup_logger() 호출 여부

    Raises:
        ConfigurationError: 설정 오류 (비율 합계 등)
        ValueError: 압축 활성화인데 summarizer 없음
    """
    if configure_logging:
        setup_logger()

    settings = settings or load_settings()
    compression = settings.compression

    compression_on = settings.short_term.enabled and compression.enabled
    if summarizer is None:
        if compression_on:
            raise ValueError("summarizer is required when compression is enabled")
        summarizer = _no_summarizer

    counter = TokenCounter(settings.model_limits, settings.default_model_limit)
    budget_manager = TokenBudgetManager(counter, settings.token_budget)
    loader = LongTermMemoryLoader(settings.long_term, reader=reader)
    engine = CompressionEngine(counter, summarizer, compression)

    pool = None
    if compression_on and compression.async_compression:
        pool = CompactionWorkerPool(
            worker_count=compression.worker_count,
            queue_capacity=compression.queue_capacity,
            rejection_policy=compression.rejection_policy,
        ).start()

    store = ShortTermMemoryStore(counter, budget_manager, engine, settings, pool=pool)
    assembler = ContextAssembler(loader, store, counter, budget_manager, settings.default_model)

    logger.info(
        f"[MemorySystem] Created (shortTerm={settings.short_term.enabled}, "
        f"compression={compression_on}, longTerm={settings.long_term.enabled}, async={pool is not None})"
    )

    return MemorySystem(
        settings=settings,
        counter=counter,
        budget_manager=budget_manager,
        loader=loader,
        saver=MemorySaveService(loader),
        engine=engine,
        store=store,
        assembler=assembler,
        pool=pool,
    )


def _no_summarizer(prompt: str) -> str:
    raise RuntimeError("No summarizer configured")
