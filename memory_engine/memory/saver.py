"""
Memory Engine - Memory Save Service

장기 기억 파일에 내용 저장 + 로더 캐시 무효화

- section 지정 시 "## section" 블록을 교체하거나 끝에 추가
- section 없으면 파일 끝에 추가
"""
from __future__ import annotations
import logging
import re
from pathlib import Path
from typing import Optional, Union

from .loader import LongTermMemoryLoader
from .types import MemoryScope

logger = logging.getLogger(__name__)

NEXT_SECTION = re.compile(r"^## ", re.MULTILINE)


def upsert_section(existing: str, section: str, content: str) -> str:
    """섹션 교체 또는 추가"""
    header = f"## {section}"
    pattern = re.compile(r"^## " + re.escape(section) + r"\s*$", re.MULTILINE)

    match = pattern.search(existing)
    if not match:
        return existing + f"\n\n{header}\n{content}\n"

    nxt = NEXT_SECTION.search(existing, match.end())
    end = nxt.start() if nxt else len(existing)
    return existing[:match.start()] + f"{header}\n{content}\n" + existing[end:]


class MemorySaveService:
    """장기 기억 저장 서비스"""

    def __init__(self, loader: LongTermMemoryLoader):
        self.loader = loader
        self.settings = loader.settings

    def resolve_memory_file(self, scope: MemoryScope, target_path: Union[str, Path, None] = None) -> Path:
        """
        범위별 기억 파일 경로

        Raises:
            ValueError: PROJECT 범위인데 target_path 없음
        """
        if scope == MemoryScope.GLOBAL:
            return self.settings.global_memory_path()

        if target_path is None:
            raise ValueError("Project scope requires target_path")
        root = self.loader.find_project_root(target_path)
        return root / self.settings.filename

    def save_memory(
        self,
        content: str,
        scope: MemoryScope,
        section: Optional[str] = None,
        target_path: Union[str, Path, None] = None,
    ) -> Path:
        """
        기억 저장

        Args:
            content: 저장할 내용
            scope: GLOBAL / PROJECT
            section: 섹션명 (없으면 파일 끝에 추가)
            target_path: PROJECT 범위일 때 프로젝트 내부 경로

        Returns:
            저장된 파일 경로
        """
        memory_file = self.resolve_memory_file(scope, target_path)
        existing = memory_file.read_text(encoding="utf-8") if memory_file.exists() else ""

        if section:
            updated = upsert_section(existing, section, content)
        else:
            updated = existing + f"\n\n{content}\n"

        memory_file.parent.mkdir(parents=True, exist_ok=True)
        memory_file.write_text(updated, encoding="utf-8")

        self.loader.invalidate(memory_file)
        logger.info(f"[MemorySave] Memory saved to {memory_file} (scope={scope.value}, section={section})")
        return memory_file
